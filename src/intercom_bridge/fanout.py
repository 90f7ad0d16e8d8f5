"""Event fan-out to local clients.

Delivery contract: at-most-once, no retry, independent per session. Each
event is serialized once and queued on every open session's outbox; a
closed session is skipped and nothing is ever re-sent. A slow client only
backs up its own outbox.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from intercom_bridge.protocol.messages import EventEnvelope, EventType
from intercom_bridge.relay.sessions import LocalSession, SessionTable

logger = logging.getLogger(__name__)


class EventFanout:
    """Builds event envelopes and pushes them to local-client sessions."""

    def __init__(self, sessions: SessionTable) -> None:
        self.sessions = sessions

    def publish(self, event_type: EventType, payload: Any) -> EventEnvelope:
        """Send a typed event envelope to every open session."""
        envelope = EventEnvelope(type=event_type.value, payload=payload)
        delivered = self.broadcast(envelope.model_dump_json())
        logger.debug("Event %s delivered to %d sessions", event_type.value, delivered)
        return envelope

    def broadcast(self, data: str | dict[str, Any]) -> int:
        return self._deliver(list(self.sessions), data)

    def send_to_channel(
        self,
        channel: str,
        data: str | dict[str, Any],
        exclude: LocalSession | None = None,
    ) -> int:
        """Send to relay sessions joined to *channel*."""
        targets = [s for s in self.sessions.members(channel) if s is not exclude]
        return self._deliver(targets, data)

    @staticmethod
    def _deliver(targets: list[LocalSession], data: str | dict[str, Any]) -> int:
        if not isinstance(data, str):
            data = json.dumps(data, default=str)
        delivered = 0
        for session in targets:
            if session.deliver(data):
                delivered += 1
            else:
                logger.debug("Skipping closed session %s", session.session_id)
        return delivered
