"""Shared fixtures: an in-memory swarm substrate and session helpers."""

from __future__ import annotations

import json
from typing import Any

import pytest

from intercom_bridge.bridge import Bridge, BridgeConfig
from intercom_bridge.network.swarm import PeerConnection, Swarm, TopicSubscription
from intercom_bridge.relay.sessions import LocalSession


class FakeConnection(PeerConnection):
    """Peer connection that records what the bridge writes to it."""

    def __init__(self, remote_public_key: str, is_initiator: bool = False) -> None:
        self.remote_public_key = remote_public_key
        self.is_initiator = is_initiator
        self.written: list[str] = []
        self.closed = False

    @property
    def destroyed(self) -> bool:
        return self.closed

    def write(self, data: str) -> bool:
        if self.closed:
            return False
        self.written.append(data)
        return True

    def close(self) -> None:
        self.closed = True

    def sent(self) -> list[dict[str, Any]]:
        return [json.loads(d) for d in self.written]


class FakeSwarm(Swarm):
    """Swarm that only records topic subscriptions."""

    def __init__(self, public_key: str = "b" * 64) -> None:
        super().__init__()
        self.public_key = public_key
        self.subscriptions: dict[str, TopicSubscription] = {}
        self.join_calls: list[bytes] = []

    def join(self, key: bytes, *, announce: bool = True, discover: bool = True) -> TopicSubscription:
        self.join_calls.append(key)
        sub = TopicSubscription(key, announce, discover, on_destroy=self._release)
        self.subscriptions[sub.key_hex] = sub
        return sub

    def _release(self, sub: TopicSubscription) -> None:
        self.subscriptions.pop(sub.key_hex, None)


def drain(session: LocalSession) -> list[dict[str, Any]]:
    """Pop everything queued for *session*, decoded."""
    out = []
    while not session._outbox.empty():
        data = session._outbox.get_nowait()
        if data is not None:
            out.append(json.loads(data))
    return out


def send(bridge: Bridge, session: LocalSession, message: Any) -> list[dict[str, Any]]:
    """Feed one client message to the bridge and return the replies."""
    bridge.handle_session_message(session, json.dumps(message))
    return drain(session)


def make_bridge(**kwargs: Any) -> Bridge:
    kwargs.setdefault("auto_join_channels", [])
    return Bridge(BridgeConfig(**kwargs), swarm=FakeSwarm())


@pytest.fixture
def swarm() -> FakeSwarm:
    return FakeSwarm()


@pytest.fixture
def bridge() -> Bridge:
    return make_bridge()
