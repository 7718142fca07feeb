"""
Unit tests for anomaly detection.

Tests the failure-rate and call-cadence heuristics, including the exact
threshold boundaries.
"""

from datetime import datetime, timedelta

import pytest

from ai_request_guard.core.anomaly import AnomalyRule, detect_anomalies
from ai_request_guard.core.usage import CallOutcome, EndpointKind


class TestAnomalyDetection:
    """Test anomaly detection rules and boundaries."""

    def create_calls(self, outcomes, gap_ms: int = 2000):
        """Build newest-first outcomes spaced ``gap_ms`` apart.

        Args:
            outcomes: Success flags, newest first
            gap_ms: Milliseconds between consecutive calls
        """
        newest = datetime(2024, 1, 1, 12, 0, 0)
        return [
            CallOutcome(
                timestamp=newest - timedelta(milliseconds=gap_ms * index),
                endpoint_kind=EndpointKind.CHAT,
                model="gpt-4o",
                succeeded=succeeded,
                error_code=None if succeeded else 500,
            )
            for index, succeeded in enumerate(outcomes)
        ]

    def rules(self, anomalies):
        return {anomaly.rule for anomaly in anomalies}

    def test_no_anomalies_for_normal_behavior(self):
        """Test healthy, human-paced calls produce no anomalies."""
        calls = self.create_calls([True] * 10)

        assert detect_anomalies(calls) == []

    def test_needs_minimum_sample(self):
        """Test fewer than five calls never trigger, even all failing and fast."""
        calls = self.create_calls([False] * 4, gap_ms=10)

        assert detect_anomalies(calls) == []

    def test_high_failure_rate_triggers(self):
        """Test a failure ratio above 0.7 triggers the failure-rate rule."""
        calls = self.create_calls([False] * 8 + [True] * 2)

        anomalies = detect_anomalies(calls)
        failure = [a for a in anomalies if a.rule is AnomalyRule.HIGH_FAILURE_RATE]

        assert len(failure) == 1
        assert failure[0].observed_value == 0.8
        assert failure[0].threshold == 0.7
        assert failure[0].sample_count == 10
        assert "failure rate" in failure[0].message

    def test_failure_rate_exactly_at_threshold_does_not_trigger(self):
        """Test a failure ratio of exactly 0.7 is not anomalous."""
        calls = self.create_calls([False] * 7 + [True] * 3)

        assert AnomalyRule.HIGH_FAILURE_RATE not in self.rules(detect_anomalies(calls))

    def test_rapid_calls_trigger(self):
        """Test a mean gap under 500ms triggers the cadence rule."""
        calls = self.create_calls([True] * 6, gap_ms=100)

        anomalies = detect_anomalies(calls)
        rapid = [a for a in anomalies if a.rule is AnomalyRule.RAPID_CALLS]

        assert len(rapid) == 1
        assert rapid[0].observed_value == pytest.approx(0.1)
        assert "rapid" in rapid[0].message.lower()

    def test_mean_gap_exactly_500ms_does_not_trigger(self):
        """Test a mean gap of exactly 500ms is not anomalous."""
        calls = self.create_calls([True] * 6, gap_ms=500)

        assert AnomalyRule.RAPID_CALLS not in self.rules(detect_anomalies(calls))

    def test_mean_gap_uses_absolute_deltas(self):
        """Test out-of-order timestamps still count by magnitude."""
        calls = self.create_calls([True] * 5, gap_ms=1000)
        calls[1], calls[2] = calls[2], calls[1]

        assert detect_anomalies(calls) == []

    def test_both_rules_can_fire_together(self):
        """Test bursty, failing calls raise both signals."""
        calls = self.create_calls([False] * 5, gap_ms=50)

        assert self.rules(detect_anomalies(calls)) == {
            AnomalyRule.HIGH_FAILURE_RATE,
            AnomalyRule.RAPID_CALLS,
        }
