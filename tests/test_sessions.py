"""Tests for local-client sessions, the session table and event fan-out."""

from __future__ import annotations

import json

import pytest

from intercom_bridge.fanout import EventFanout
from intercom_bridge.protocol.messages import EventType
from intercom_bridge.relay.sessions import LocalSession, SessionKind, SessionTable

from conftest import drain


@pytest.fixture
def table():
    return SessionTable()


# ── Sessions ─────────────────────────────────────────────────────

class TestLocalSession:
    def test_detect_kind(self):
        assert SessionKind.detect({"action": "join"}) is SessionKind.RELAY
        assert SessionKind.detect({"type": "ping"}) is SessionKind.COMMAND
        assert SessionKind.detect({}) is SessionKind.COMMAND

    def test_bind_once(self):
        session = LocalSession()
        assert session.bind(SessionKind.RELAY) is SessionKind.RELAY
        assert session.bind(SessionKind.COMMAND) is SessionKind.RELAY

    def test_session_id_format(self):
        assert LocalSession().session_id.startswith("ws-")

    def test_display_id_prefers_agent(self):
        session = LocalSession("ws-1")
        assert session.display_id == "ws-1"
        session.agent_id = "agent-7"
        assert session.display_id == "agent-7"

    def test_deliver_serializes(self):
        session = LocalSession()
        assert session.deliver({"type": "pong"}) is True
        assert drain(session) == [{"type": "pong"}]

    def test_deliver_after_close(self):
        session = LocalSession()
        session.close()
        assert session.deliver("x") is False

    @pytest.mark.asyncio
    async def test_pump_preserves_order(self):
        session = LocalSession()
        sent = []

        async def send(data):
            sent.append(data)

        session.deliver("a")
        session.deliver({"b": 1})
        session.close()
        await session.pump(send)
        assert sent == ["a", json.dumps({"b": 1})]

    @pytest.mark.asyncio
    async def test_pump_stops_on_write_failure(self):
        session = LocalSession()

        async def send(data):
            raise ConnectionResetError

        session.deliver("a")
        session.deliver("b")
        await session.pump(send)
        assert session.closed is True
        assert session.deliver("c") is False


# ── Session table ────────────────────────────────────────────────

class TestSessionTable:
    def test_add(self, table):
        session = LocalSession("ws-1")
        table.add(session)
        assert list(table) == [session]
        assert len(table) == 1

    def test_channel_members(self, table):
        a, b = LocalSession("a"), LocalSession("b")
        table.add(a)
        table.add(b)
        table.join_channel(a, "alpha")
        table.join_channel(b, "alpha")
        table.join_channel(b, "beta")
        assert {s.session_id for s in table.members("alpha")} == {"a", "b"}
        assert [s.session_id for s in table.members("beta")] == ["b"]

    def test_leave_channel(self, table):
        a = LocalSession("a")
        table.add(a)
        table.join_channel(a, "alpha")
        table.leave_channel(a, "alpha")
        assert table.members("alpha") == []
        assert a.channels == set()

    def test_remove_drops_memberships(self, table):
        a = LocalSession("a")
        table.add(a)
        table.join_channel(a, "alpha")
        table.remove(a)
        assert table.members("alpha") == []
        assert list(table) == []


# ── Fan-out ──────────────────────────────────────────────────────

class TestEventFanout:
    def test_publish_to_every_open_session(self, table):
        a, b = LocalSession("a"), LocalSession("b")
        table.add(a)
        table.add(b)
        envelope = EventFanout(table).publish(EventType.AGENT_JOIN, {"agentId": "x"})
        for session in (a, b):
            [event] = drain(session)
            assert event["type"] == "agent-join"
            assert event["id"] == envelope.id
            assert event["payload"] == {"agentId": "x"}
            assert "timestamp" in event

    def test_closed_session_skipped(self, table):
        a, b = LocalSession("a"), LocalSession("b")
        table.add(a)
        table.add(b)
        b.close()
        assert EventFanout(table).broadcast({"type": "x"}) == 1

    def test_send_to_channel_excludes_sender(self, table):
        a, b, c = LocalSession("a"), LocalSession("b"), LocalSession("c")
        for s in (a, b, c):
            table.add(s)
        table.join_channel(a, "alpha")
        table.join_channel(b, "alpha")
        fanout = EventFanout(table)
        assert fanout.send_to_channel("alpha", {"type": "x"}, exclude=a) == 1
        assert drain(a) == []
        assert drain(b) == [{"type": "x"}]
        assert drain(c) == []
