"""Cross-transport relay: moves allow-listed channel traffic between transports.

Inbound (network → local clients) traffic on a channel that is unknown or
not allow-listed is dropped with a log line only. Outbound (local client →
network) traffic on such a channel is refused with ``PolicyViolationError``
so the sender learns its message stayed local.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from intercom_bridge.errors import PolicyViolationError
from intercom_bridge.fanout import EventFanout
from intercom_bridge.network.peer import PeerTable
from intercom_bridge.protocol.messages import EventEnvelope, now_ms
from intercom_bridge.registry.archive import MessageRecord
from intercom_bridge.relay.policy import RelayPolicy
from intercom_bridge.stats.activity import ActivityKind, ActivityTracker

logger = logging.getLogger(__name__)

RELAY_MESSAGE = "sidechannel_message"


def relay_envelope(channel: str, message: Any, origin: str) -> dict[str, Any]:
    """The relay-protocol shape local clients receive for channel traffic."""
    return {
        "type": RELAY_MESSAGE,
        "channel": channel,
        "from": origin,
        "message": message,
        "timestamp": now_ms(),
    }


class CrossTransportRelay:
    """Applies the channel-isolation policy in both directions."""

    def __init__(
        self,
        policy: RelayPolicy,
        peers: PeerTable,
        fanout: EventFanout,
        activity: ActivityTracker,
        record: Callable[..., None],
        bridge_key: str,
    ) -> None:
        self.policy = policy
        self.peers = peers
        self.fanout = fanout
        self.activity = activity
        self._record = record
        self.bridge_key = bridge_key

    def relay_inbound(self, channel: str | None, message: Any, origin_id: str | None) -> int:
        """Forward network traffic to relay sessions on *channel*.

        Returns:
            Number of sessions the message was queued for.
        """
        if channel is None:
            logger.debug("Inbound from %s has no channel, not relayed", (origin_id or "?")[:12])
            return 0
        if not self.policy.allows(channel):
            logger.info("Blocked inbound: %s is not a public channel", channel)
            return 0
        delivered = self.fanout.send_to_channel(
            channel, relay_envelope(channel, message, origin_id or self.bridge_key),
        )
        logger.debug("Network -> clients on %s: %d sessions", channel, delivered)
        return delivered

    def relay_outbound(self, channel: str, message: Any, origin_id: str | None) -> MessageRecord:
        """Forward a local-client message on *channel* to every connected peer.

        Raises:
            PolicyViolationError: If *channel* is not allow-listed.
        """
        if not self.policy.allows(channel):
            logger.info("Blocked outbound: %s is not a public channel", channel)
            raise PolicyViolationError(channel)

        body = message if isinstance(message, dict) else {"content": message}
        source = origin_id or "relay"
        envelope = EventEnvelope(
            type=str(body.get("type") or "message"),
            payload={**body, "source": source, "channel": channel},
        )
        sent = self.peers.broadcast(envelope.model_dump_json())
        self.activity.record(ActivityKind.MESSAGE_SENT, agent_id=source, channel=channel)
        logger.info("Clients -> network on %s: %d peers", channel, sent)

        record = MessageRecord(
            sender=source,
            content=message,
            channel=channel,
            kind="relay-outbound",
            metadata={"envelopeId": envelope.id, "peers": sent},
        )
        self._record(record, received=False)
        return record
