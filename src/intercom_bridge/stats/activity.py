"""Activity tracking: monotonic counters and hourly aggregates.

Usage::

    tracker = ActivityTracker()
    tracker.record(ActivityKind.MESSAGE_RECEIVED, agent_id="abc", channel="alpha")
    tracker.snapshot({"peers": 3, "agents": 5, "channels": 2, "sessions": 1})

Hourly buckets are keyed ``YYYY-MM-DDTHH`` (UTC) and created on the first
event in that hour. They are kept for the life of the process unless
``prune_buckets`` is called.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping

logger = logging.getLogger(__name__)


class ActivityKind(str, Enum):
    MESSAGE_RECEIVED = "message-received"
    MESSAGE_SENT = "message-sent"
    AGENT_DISCOVERED = "agent-discovered"
    CHANNEL_DISCOVERED = "channel-discovered"


_MESSAGE_KINDS = frozenset({ActivityKind.MESSAGE_RECEIVED, ActivityKind.MESSAGE_SENT})


def hour_key(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%dT%H")


@dataclass
class HourBucket:
    messages: int = 0
    agents: set[str] = field(default_factory=set)
    channels: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": self.messages,
            "agents": sorted(self.agents),
            "channels": sorted(self.channels),
        }


class ActivityTracker:
    """Counters and hour buckets derived from bridge events."""

    def __init__(self) -> None:
        self.start_time = time.time()
        self.counters: dict[ActivityKind, int] = {kind: 0 for kind in ActivityKind}
        self._hours: dict[str, HourBucket] = {}

    def record(
        self,
        kind: ActivityKind,
        *,
        timestamp: float | None = None,
        agent_id: str | None = None,
        channel: str | None = None,
    ) -> None:
        self.counters[kind] += 1
        key = hour_key(timestamp if timestamp is not None else time.time())
        bucket = self._hours.get(key)
        if bucket is None:
            bucket = self._hours[key] = HourBucket()
        if kind in _MESSAGE_KINDS:
            bucket.messages += 1
        if agent_id:
            bucket.agents.add(agent_id)
        if channel:
            bucket.channels.add(channel)

    def snapshot(self, live: Mapping[str, int] | None = None) -> dict[str, Any]:
        """Uptime, counters, receive rate and live cardinalities."""
        elapsed = time.time() - self.start_time
        received = self.counters[ActivityKind.MESSAGE_RECEIVED]
        return {
            "uptime": round(elapsed, 3),
            "messagesReceived": received,
            "messagesSent": self.counters[ActivityKind.MESSAGE_SENT],
            "agentsDiscovered": self.counters[ActivityKind.AGENT_DISCOVERED],
            "channelsDiscovered": self.counters[ActivityKind.CHANNEL_DISCOVERED],
            "messageRate": received / elapsed if elapsed > 0 else 0,
            "active": dict(live or {}),
        }

    def hourly(self) -> dict[str, dict[str, Any]]:
        return {k: b.to_dict() for k, b in sorted(self._hours.items())}

    def prune_buckets(self, keep_hours: int) -> int:
        """Drop buckets older than *keep_hours* hours. Returns how many."""
        cutoff = hour_key(
            (datetime.now(timezone.utc) - timedelta(hours=keep_hours)).timestamp()
        )
        old = [k for k in self._hours if k < cutoff]
        for k in old:
            del self._hours[k]
        if old:
            logger.debug("Pruned %d hourly buckets", len(old))
        return len(old)
