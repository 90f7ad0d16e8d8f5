"""Message archive: a bounded, queryable window of recent messages."""

from __future__ import annotations

import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from intercom_bridge.network.topics import TopicTable
from intercom_bridge.protocol.messages import to_iso

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


@dataclass
class MessageRecord:
    """One observed message, from either transport."""

    sender: str
    content: Any
    channel: str | None = None
    kind: str = "message"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"msg-{secrets.token_hex(8)}")
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp),
            "channel": self.channel,
            "sender": self.sender,
            "kind": self.kind,
            "content": self.content,
            "metadata": self.metadata,
        }


@dataclass
class ArchiveQueryResult:
    messages: list[MessageRecord]
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "count": len(self.messages),
            "messages": [m.to_dict() for m in self.messages],
        }


class MessageArchive:
    """FIFO of at most ``capacity`` records, oldest first.

    When a record's channel is a joined channel, that channel's message
    counter and last activity are updated through the topic table.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        topics: TopicTable | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("archive capacity must be at least 1")
        self.capacity = capacity
        self.topics = topics
        self._records: deque[MessageRecord] = deque()

    def __len__(self) -> int:
        return len(self._records)

    def archive(self, record: MessageRecord) -> MessageRecord | None:
        """Append *record*; returns the evicted oldest record, if any."""
        self._records.append(record)
        evicted = None
        if len(self._records) > self.capacity:
            evicted = self._records.popleft()
        if record.channel is not None and self.topics is not None:
            self.topics.record_message(record.channel, record.timestamp)
        return evicted

    def query(
        self,
        channel: str | None = None,
        sender: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> ArchiveQueryResult:
        """Filter by exact channel and/or sender, then page chronologically."""
        if limit < 0 or offset < 0:
            raise ValueError("limit and offset must be non-negative")
        matched = [
            r for r in self._records
            if (channel is None or r.channel == channel)
            and (sender is None or r.sender == sender)
        ]
        return ArchiveQueryResult(
            messages=matched[offset:offset + limit],
            total=len(matched),
        )
