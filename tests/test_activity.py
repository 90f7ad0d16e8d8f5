"""Tests for activity counters and hourly buckets."""

from __future__ import annotations

import time
from unittest.mock import patch

import pytest

from intercom_bridge.stats.activity import ActivityKind, ActivityTracker, hour_key


@pytest.fixture
def tracker():
    return ActivityTracker()


class TestCounters:
    def test_record_bumps_counter(self, tracker):
        tracker.record(ActivityKind.MESSAGE_RECEIVED)
        tracker.record(ActivityKind.MESSAGE_RECEIVED)
        tracker.record(ActivityKind.AGENT_DISCOVERED, agent_id="a")
        snap = tracker.snapshot()
        assert snap["messagesReceived"] == 2
        assert snap["agentsDiscovered"] == 1
        assert snap["messagesSent"] == 0

    def test_rate_zero_when_no_time_elapsed(self, tracker):
        tracker.record(ActivityKind.MESSAGE_RECEIVED)
        with patch("intercom_bridge.stats.activity.time.time", return_value=tracker.start_time):
            assert tracker.snapshot()["messageRate"] == 0

    def test_rate(self, tracker):
        for _ in range(10):
            tracker.record(ActivityKind.MESSAGE_RECEIVED)
        with patch(
            "intercom_bridge.stats.activity.time.time",
            return_value=tracker.start_time + 5,
        ):
            assert tracker.snapshot()["messageRate"] == pytest.approx(2.0)

    def test_live_counts_passed_through(self, tracker):
        snap = tracker.snapshot({"peers": 3, "agents": 1})
        assert snap["active"] == {"peers": 3, "agents": 1}


class TestHourlyBuckets:
    def test_bucket_key_format(self):
        assert hour_key(0) == "1970-01-01T00"

    def test_lazy_bucket(self, tracker):
        assert tracker.hourly() == {}
        tracker.record(ActivityKind.MESSAGE_RECEIVED, agent_id="a", channel="alpha")
        hourly = tracker.hourly()
        assert len(hourly) == 1
        bucket = next(iter(hourly.values()))
        assert bucket == {"messages": 1, "agents": ["a"], "channels": ["alpha"]}

    def test_only_message_kinds_count_messages(self, tracker):
        tracker.record(ActivityKind.CHANNEL_DISCOVERED, channel="alpha")
        tracker.record(ActivityKind.MESSAGE_SENT, channel="alpha")
        bucket = next(iter(tracker.hourly().values()))
        assert bucket["messages"] == 1

    def test_explicit_timestamp(self, tracker):
        tracker.record(ActivityKind.MESSAGE_RECEIVED, timestamp=3600.0)
        assert "1970-01-01T01" in tracker.hourly()

    def test_prune(self, tracker):
        tracker.record(ActivityKind.MESSAGE_RECEIVED, timestamp=0.0)
        tracker.record(ActivityKind.MESSAGE_RECEIVED, timestamp=time.time())
        assert tracker.prune_buckets(24) == 1
        assert len(tracker.hourly()) == 1
