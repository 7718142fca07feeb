"""
Unit tests for the usage monitor.
"""

import logging
from datetime import timedelta

import pytest

from ai_request_guard.core.anomaly import AnomalyRule
from ai_request_guard.core.usage import EndpointKind, UsageMonitor, UsageStats


class TestUsageMonitor:
    """Test the bounded outcome log, statistics and anomaly hook."""

    def test_record_prepends_newest_first(self, wall_clock):
        """Test outcomes are stored newest first with their metadata."""
        monitor = UsageMonitor(clock=wall_clock)
        monitor.record(EndpointKind.CHAT, "gpt-5", True)
        monitor.record(EndpointKind.CHAT, "gpt-4o-mini", False, 503)

        newest, oldest = monitor.entries
        assert newest.model == "gpt-4o-mini"
        assert newest.succeeded is False
        assert newest.error_code == 503
        assert oldest.model == "gpt-5"
        assert newest.timestamp > oldest.timestamp

    def test_capacity_evicts_oldest(self, wall_clock):
        """Test the log never exceeds capacity and drops the oldest entry."""
        monitor = UsageMonitor(capacity=3, clock=wall_clock)
        for index in range(5):
            monitor.record(EndpointKind.CHAT, f"model-{index}", True)

        assert len(monitor) == 3
        assert [entry.model for entry in monitor.entries] == ["model-4", "model-3", "model-2"]

    def test_outcomes_are_immutable(self, wall_clock):
        """Test logged outcomes cannot be modified."""
        monitor = UsageMonitor(clock=wall_clock)
        monitor.record(EndpointKind.CHAT, "gpt-5", True)

        with pytest.raises(AttributeError):
            monitor.entries[0].succeeded = False

    def test_stats(self, wall_clock):
        """Test aggregate counts and success rate."""
        monitor = UsageMonitor(clock=wall_clock)
        for succeeded in (True, True, False):
            monitor.record(EndpointKind.CHAT, "gpt-5", succeeded)

        stats = monitor.stats()
        assert stats == UsageStats(total=3, succeeded=2, failed=1)
        assert stats.success_rate_percent == 66.7

    def test_stats_empty_log(self):
        """Test stats on an empty log report no success rate."""
        stats = UsageMonitor().stats()

        assert stats.total == 0
        assert stats.success_rate_percent is None

    def test_recent(self, wall_clock):
        """Test recent() returns the newest entries only."""
        monitor = UsageMonitor(clock=wall_clock)
        for index in range(4):
            monitor.record(EndpointKind.TRANSCRIPTION, f"m{index}", True)

        assert [entry.model for entry in monitor.recent(2)] == ["m3", "m2"]

    def test_record_returns_failure_rate_signal(self, wall_clock, caplog):
        """Test a burst of failures is signalled and logged, not enforced."""
        monitor = UsageMonitor(clock=wall_clock)

        with caplog.at_level(logging.WARNING, logger="ai_request_guard.core.usage"):
            signals = []
            for _ in range(5):
                signals = monitor.record(EndpointKind.CHAT, "gpt-5", False, 401)

        assert [signal.rule for signal in signals] == [AnomalyRule.HIGH_FAILURE_RATE]
        assert "Security Alert" in caplog.text
        assert len(monitor) == 5

    def test_rapid_calls_signalled(self):
        """Test sub-500ms cadence is signalled."""
        from conftest import FakeWallClock

        monitor = UsageMonitor(clock=FakeWallClock(step=timedelta(milliseconds=100)))
        signals = []
        for _ in range(5):
            signals = monitor.record(EndpointKind.CHAT, "gpt-5", True)

        assert [signal.rule for signal in signals] == [AnomalyRule.RAPID_CALLS]

    def test_anomaly_window_limits_sample(self, wall_clock):
        """Test only the most recent anomaly_window calls are inspected."""
        monitor = UsageMonitor(anomaly_window=5, clock=wall_clock)
        for _ in range(10):
            monitor.record(EndpointKind.CHAT, "gpt-5", False)
        for _ in range(4):
            signals = monitor.record(EndpointKind.CHAT, "gpt-5", True)

        # 1 failure in the last 5 calls
        assert signals == []

    def test_invalid_sizes(self):
        """Test non-positive capacity or window raises."""
        with pytest.raises(ValueError, match="capacity"):
            UsageMonitor(capacity=0)
        with pytest.raises(ValueError, match="anomaly_window"):
            UsageMonitor(anomaly_window=0)
