"""Tests for the swarm substrate interface and its WebSocket implementation."""

from __future__ import annotations

import asyncio

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from intercom_bridge.bridge import Bridge, BridgeConfig
from intercom_bridge.network.swarm import (
    HELLO,
    TOPICS,
    SwarmHandler,
    TopicSubscription,
    WebSocketSwarm,
    _control_frame,
    _topic_set,
)
from intercom_bridge.network.topics import derive_topic_key
from intercom_bridge.network.transport import Transport

from conftest import FakeConnection, FakeSwarm

LOCAL = "a" * 64
REMOTE = "c" * 64


class RecordingHandler(SwarmHandler):
    def __init__(self):
        self.connected = []
        self.topics = []
        self.data = []
        self.closed = []

    def peer_connected(self, conn):
        self.connected.append(conn)

    def peer_topics(self, conn, topic_keys):
        self.topics.append(topic_keys)

    def peer_data(self, conn, data):
        self.data.append(data)

    def peer_closed(self, conn):
        self.closed.append(conn)


class ExplodingHandler(RecordingHandler):
    def peer_connected(self, conn):
        raise RuntimeError("boom")


async def wait_for(predicate, timeout: float = 1.0) -> None:
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met")


# ── Interface pieces ─────────────────────────────────────────────

class TestTopicSubscription:
    def test_destroy_once(self):
        released = []
        sub = TopicSubscription(b"\x01" * 32, on_destroy=released.append)
        sub.destroy()
        sub.destroy()
        assert sub.destroyed is True
        assert released == [sub]

    def test_key_hex(self):
        assert TopicSubscription(b"\x01" * 32).key_hex == "01" * 32


class TestDispatch:
    def test_handler_errors_contained(self):
        swarm = FakeSwarm()
        swarm.set_handler(ExplodingHandler())
        swarm._dispatch("peer_connected", FakeConnection(REMOTE))

    def test_no_handler(self):
        FakeSwarm()._dispatch("peer_connected", FakeConnection(REMOTE))


class TestFrames:
    def test_control_frame(self):
        assert _control_frame('{"type": "x"}') == {"type": "x"}
        assert _control_frame("[1]") is None
        assert _control_frame("nope") is None

    def test_topic_set(self):
        assert _topic_set({"topics": ["k1", 2, "k2"]}) == {"k1", "k2"}
        assert _topic_set({"topics": "k1"}) == set()
        assert _topic_set({}) == set()


# ── WebSocket swarm ──────────────────────────────────────────────

class TestWebSocketSwarm:
    @pytest.fixture
    def setup(self):
        transport = Transport()
        swarm = WebSocketSwarm(transport, LOCAL)
        handler = RecordingHandler()
        swarm.set_handler(handler)
        return transport, swarm, handler

    @pytest.mark.asyncio
    async def test_inbound_peer(self, setup):
        transport, swarm, handler = setup
        alpha = derive_topic_key("alpha")
        swarm.join(alpha)
        client = TestClient(TestServer(transport.app))
        await client.start_server()
        try:
            ws = await client.ws_connect("/swarm")
            hello = await ws.receive_json()
            assert hello["type"] == HELLO
            assert hello["publicKey"] == LOCAL
            assert hello["topics"] == [alpha.hex()]

            await ws.send_json({"type": HELLO, "publicKey": REMOTE, "topics": [alpha.hex()]})
            await ws.send_str('{"type": "chat"}')
            await wait_for(lambda: handler.data)

            [conn] = handler.connected
            assert conn.remote_public_key == REMOTE
            assert conn.is_initiator is False
            assert handler.topics[0] == {alpha.hex()}
            assert handler.data == ['{"type": "chat"}']

            conn.write("to-peer")
            assert await ws.receive_str() == "to-peer"

            await ws.send_json({"type": TOPICS, "topics": []})
            await wait_for(lambda: len(handler.topics) == 2)
            assert handler.topics[-1] == set()

            swarm.join(derive_topic_key("beta"))
            frame = await ws.receive_json()
            assert frame["type"] == TOPICS
            assert len(frame["topics"]) == 2

            await ws.close()
            await wait_for(lambda: handler.closed)
            assert handler.closed == [conn]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rejects_own_key(self, setup):
        transport, swarm, handler = setup
        client = TestClient(TestServer(transport.app))
        await client.start_server()
        try:
            ws = await client.ws_connect("/swarm")
            await ws.receive_json()
            await ws.send_json({"type": HELLO, "publicKey": LOCAL, "topics": []})
            msg = await ws.receive()
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)
            assert handler.connected == []
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rejects_non_hello(self, setup):
        transport, swarm, handler = setup
        client = TestClient(TestServer(transport.app))
        await client.start_server()
        try:
            ws = await client.ws_connect("/swarm")
            await ws.receive_json()
            await ws.send_str("garbage")
            msg = await ws.receive()
            assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)
            assert handler.connected == []
        finally:
            await client.close()

    def test_leave_releases_topic(self, setup):
        _, swarm, _ = setup
        sub = swarm.join(derive_topic_key("alpha"))
        assert swarm.topic_keys == {sub.key_hex}
        sub.destroy()
        assert swarm.topic_keys == set()

    @pytest.mark.asyncio
    async def test_remote_close_reports_closed(self, setup):
        transport, swarm, handler = setup
        client = TestClient(TestServer(transport.app))
        await client.start_server()
        try:
            ws = await client.ws_connect("/swarm")
            await ws.receive_json()
            await ws.send_json({"type": HELLO, "publicKey": REMOTE, "topics": []})
            await wait_for(lambda: handler.connected)
            await ws.close()
            await wait_for(lambda: handler.closed)
            assert handler.closed == handler.connected
        finally:
            await client.close()


# ── Bridge over the WebSocket swarm ──────────────────────────────

class TestBridgeOverWebSocketSwarm:
    @pytest.mark.asyncio
    async def test_peer_leaves_live_table_on_remote_close(self):
        transport = Transport()
        bridge = Bridge(
            BridgeConfig(public_key=LOCAL, auto_join_channels=[]),
            swarm=WebSocketSwarm(transport, LOCAL),
            transport=transport,
        )
        client = TestClient(TestServer(transport.app))
        await client.start_server()
        try:
            ws = await client.ws_connect("/swarm")
            await ws.receive_json()
            await ws.send_json({"type": HELLO, "publicKey": REMOTE, "topics": []})
            await wait_for(lambda: REMOTE in bridge.peers)
            await ws.close()
            await wait_for(lambda: REMOTE not in bridge.peers)
            assert bridge.peers_view() == []
            assert REMOTE in bridge.agents
        finally:
            await client.close()
