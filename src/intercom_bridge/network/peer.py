"""Peer management: tracking live swarm connections and their channels."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

from intercom_bridge.network.swarm import PeerConnection
from intercom_bridge.protocol.messages import to_iso

logger = logging.getLogger(__name__)


@dataclass
class Peer:
    """A live connection on the peer-to-peer transport."""

    public_key: str
    connection: PeerConnection
    is_initiator: bool = False
    is_responder: bool = False
    connected_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)
    topics: set[str] = field(default_factory=set)

    def mark_seen(self) -> None:
        """Update last seen timestamp."""
        self.last_seen = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "publicKey": self.public_key,
            "connectedAt": to_iso(self.connected_at),
            "lastSeen": to_iso(self.last_seen),
            "isInitiator": self.is_initiator,
            "isResponder": self.is_responder,
            "topics": sorted(self.topics),
        }


class PeerTable:
    """Live peers keyed by public key.

    Each entry owns its connection: replacing an entry closes the
    connection it held.
    """

    def __init__(self) -> None:
        self._peers: dict[str, Peer] = {}

    def __len__(self) -> int:
        return len(self._peers)

    def __contains__(self, public_key: str) -> bool:
        return public_key in self._peers

    def __iter__(self) -> Iterator[Peer]:
        return iter(list(self._peers.values()))

    def add(self, conn: PeerConnection) -> Peer:
        """Insert or refresh the entry for ``conn.remote_public_key``."""
        key = conn.remote_public_key
        existing = self._peers.get(key)
        if existing is not None and existing.connection is not conn:
            logger.info("Peer %s reconnected, replacing connection", key[:12])
            existing.connection.close()
        peer = Peer(
            public_key=key,
            connection=conn,
            is_initiator=conn.is_initiator,
            is_responder=not conn.is_initiator,
            topics=set(existing.topics) if existing else set(),
        )
        self._peers[key] = peer
        return peer

    def remove(self, public_key: str, conn: PeerConnection | None = None) -> Peer | None:
        """Remove a peer.

        When *conn* is given the entry is only removed if it still owns that
        connection, so a late close of a replaced connection is a no-op.
        """
        peer = self._peers.get(public_key)
        if peer is None:
            return None
        if conn is not None and peer.connection is not conn:
            return None
        return self._peers.pop(public_key)

    def get(self, public_key: str) -> Peer | None:
        return self._peers.get(public_key)

    def broadcast(self, data: str) -> int:
        """Write *data* to every open connection; returns how many accepted it."""
        sent = 0
        for peer in self:
            if peer.connection.destroyed:
                continue
            if peer.connection.write(data):
                sent += 1
        return sent
