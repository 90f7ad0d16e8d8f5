"""Networking layer: swarm substrate, peers and channels."""

from intercom_bridge.network.peer import Peer, PeerTable
from intercom_bridge.network.swarm import PeerConnection, Swarm, TopicSubscription
from intercom_bridge.network.topics import Channel, TopicTable, derive_topic_key
from intercom_bridge.network.transport import Transport

__all__ = [
    "Channel",
    "Peer",
    "PeerConnection",
    "PeerTable",
    "Swarm",
    "TopicSubscription",
    "TopicTable",
    "Transport",
    "derive_topic_key",
]
