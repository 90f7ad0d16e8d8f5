"""Channels: named topics, their routing keys and current peer membership."""

from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from intercom_bridge.network.swarm import Swarm, TopicSubscription
from intercom_bridge.protocol.messages import to_iso

logger = logging.getLogger(__name__)

# Namespace so channel keys never collide with other SHA-256 uses of a name
TOPIC_NAMESPACE = b"intercom-bridge/topic\x00"


def derive_topic_key(name: str) -> bytes:
    """Map a channel name to its 32-byte routing key.

    One-way and collision resistant; identical names always give identical
    keys and the empty string is a valid name.
    """
    return hashlib.sha256(TOPIC_NAMESPACE + name.encode("utf-8")).digest()


def topic_key_hex(name: str) -> str:
    return derive_topic_key(name).hex()


@dataclass
class Channel:
    """A joined channel."""

    name: str
    key: str
    announce: bool = True
    discover: bool = True
    joined_at: float = field(default_factory=time.time)
    message_count: int = 0
    last_activity: float = field(default_factory=time.time)
    peers: set[str] = field(default_factory=set)
    subscription: TopicSubscription | None = None

    def touch(self, ts: float | None = None) -> None:
        self.last_activity = ts if ts is not None else time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "key": self.key,
            "peers": sorted(self.peers),
            "peerCount": len(self.peers),
            "joinedAt": to_iso(self.joined_at),
            "announce": self.announce,
            "discover": self.discover,
            "messageCount": self.message_count,
            "lastActivity": to_iso(self.last_activity),
        }


class TopicTable:
    """Joined channels keyed by routing key.

    ``listener`` is called with ``("joined" | "left", channel)`` after each
    effective join or leave.
    """

    def __init__(
        self,
        swarm: Swarm,
        listener: Callable[[str, Channel], None] | None = None,
    ) -> None:
        self.swarm = swarm
        self._listener = listener
        self._channels: dict[str, Channel] = {}

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, key: str) -> bool:
        return key in self._channels

    def join(self, name: str, announce: bool = True, discover: bool = True) -> str:
        """Join *name*; re-joining returns the existing key untouched."""
        key = topic_key_hex(name)
        if key in self._channels:
            logger.debug("Already joined: %s", name)
            return key

        subscription = self.swarm.join(
            derive_topic_key(name), announce=announce, discover=discover,
        )
        channel = Channel(
            name=name,
            key=key,
            announce=announce,
            discover=discover,
            subscription=subscription,
        )
        self._channels[key] = channel
        logger.info("Joined channel %s (key: %s...)", name, key[:16])
        self._notify("joined", channel)
        return key

    def leave(self, name: str) -> bool:
        """Leave *name*; False if it was not joined."""
        channel = self._channels.pop(topic_key_hex(name), None)
        if channel is None:
            logger.debug("Not joined: %s", name)
            return False
        if channel.subscription:
            channel.subscription.destroy()
        logger.info("Left channel %s", name)
        self._notify("left", channel)
        return True

    def record_peer_join(self, key: str, peer_id: str) -> bool:
        channel = self._channels.get(key)
        if channel is None:
            return False
        channel.peers.add(peer_id)
        channel.touch()
        return True

    def record_peer_leave(self, key: str, peer_id: str) -> bool:
        channel = self._channels.get(key)
        if channel is None:
            return False
        channel.peers.discard(peer_id)
        channel.touch()
        return True

    def record_message(self, name: str, ts: float | None = None) -> bool:
        """Count a message on *name* if it is a joined channel."""
        channel = self.get_by_name(name)
        if channel is None:
            return False
        channel.message_count += 1
        channel.touch(ts)
        return True

    def get(self, key: str) -> Channel | None:
        return self._channels.get(key)

    def get_by_name(self, name: str) -> Channel | None:
        return self._channels.get(topic_key_hex(name))

    def list(self) -> list[Channel]:
        return list(self._channels.values())

    def names(self) -> list[str]:
        return [c.name for c in self._channels.values()]

    def _notify(self, event: str, channel: Channel) -> None:
        if self._listener:
            self._listener(event, channel)
