"""Tests for the bounded message archive."""

from __future__ import annotations

import pytest

from intercom_bridge.network.topics import TopicTable
from intercom_bridge.registry.archive import MessageArchive, MessageRecord


def make_record(i: int = 0, channel: str | None = "alpha", sender: str = "s1") -> MessageRecord:
    return MessageRecord(sender=sender, content={"n": i}, channel=channel)


@pytest.fixture
def archive():
    return MessageArchive(capacity=5)


# ── Capacity ─────────────────────────────────────────────────────

class TestCapacity:
    def test_never_exceeds_capacity(self, archive):
        for i in range(12):
            archive.archive(make_record(i))
            assert len(archive) <= 5
        assert len(archive) == 5

    def test_keeps_latest(self, archive):
        for i in range(12):
            archive.archive(make_record(i))
        result = archive.query()
        assert [m.content["n"] for m in result.messages] == [7, 8, 9, 10, 11]

    def test_evicts_exactly_one(self, archive):
        records = [make_record(i) for i in range(6)]
        evicted = [archive.archive(r) for r in records]
        assert evicted[:5] == [None] * 5
        assert evicted[5] is records[0]

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            MessageArchive(capacity=0)


# ── Queries ──────────────────────────────────────────────────────

class TestQuery:
    def test_filter_channel_and_sender(self, archive):
        archive.archive(make_record(1, "alpha", "s1"))
        archive.archive(make_record(2, "beta", "s1"))
        archive.archive(make_record(3, "alpha", "s2"))
        result = archive.query(channel="alpha", sender="s1")
        assert result.total == 1
        assert result.messages[0].content == {"n": 1}

    def test_chronological_paging(self, archive):
        for i in range(5):
            archive.archive(make_record(i))
        result = archive.query(limit=2, offset=1)
        assert [m.content["n"] for m in result.messages] == [1, 2]
        assert result.total == 5

    def test_offset_past_end(self, archive):
        for i in range(3):
            archive.archive(make_record(i))
        result = archive.query(offset=10)
        assert result.messages == []
        assert result.total == 3

    def test_zero_limit(self, archive):
        archive.archive(make_record())
        result = archive.query(limit=0)
        assert result.messages == []
        assert result.total == 1

    @pytest.mark.parametrize("limit,offset", [(-1, 0), (10, -1)])
    def test_negative_rejected(self, archive, limit, offset):
        with pytest.raises(ValueError):
            archive.query(limit=limit, offset=offset)

    def test_to_dict(self, archive):
        archive.archive(make_record(1))
        d = archive.query().to_dict()
        assert d["total"] == 1
        assert d["count"] == 1
        assert d["messages"][0]["channel"] == "alpha"
        assert d["messages"][0]["id"].startswith("msg-")


class TestChannelCounters:
    def test_joined_channel_counted(self, swarm):
        topics = TopicTable(swarm)
        topics.join("alpha")
        archive = MessageArchive(capacity=10, topics=topics)
        archive.archive(make_record(1, "alpha"))
        archive.archive(make_record(2, "beta"))
        archive.archive(make_record(3, None))
        assert topics.get_by_name("alpha").message_count == 1
        assert len(archive) == 3
