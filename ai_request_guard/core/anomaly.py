"""
Anomaly detection for call patterns.

Flags bursty failures and inhumanly fast call cadence. Signals are advisory:
they are logged and returned, never enforced.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, Sequence

if TYPE_CHECKING:
    from .usage import CallOutcome


MIN_CALLS = 5
FAILURE_RATIO_THRESHOLD = 0.7
MIN_MEAN_GAP_SECONDS = 0.5


class AnomalyRule(Enum):
    """Heuristics run over the most recent calls."""
    HIGH_FAILURE_RATE = "high_failure_rate"
    RAPID_CALLS = "rapid_automated_calls"


@dataclass(frozen=True)
class AnomalyEvent:
    """Detected anomaly with details and explanation."""
    rule: AnomalyRule
    observed_value: float
    threshold: float
    sample_count: int
    message: str


def detect_anomalies(
    recent_calls: Sequence["CallOutcome"],
    min_calls: int = MIN_CALLS,
    failure_ratio_threshold: float = FAILURE_RATIO_THRESHOLD,
    min_mean_gap: float = MIN_MEAN_GAP_SECONDS,
) -> List[AnomalyEvent]:
    """Detect anomalies in a window of recent calls.

    Rules:
    - High failure rate: at least ``min_calls`` calls and failures/total
      strictly above ``failure_ratio_threshold``
    - Rapid calls: at least ``min_calls`` calls and the mean absolute gap
      between consecutive calls strictly below ``min_mean_gap`` seconds

    Args:
        recent_calls: Call outcomes, newest first
        min_calls: Minimum sample size before any rule applies
        failure_ratio_threshold: Failure ratio that must be exceeded
        min_mean_gap: Mean gap in seconds that must be undercut

    Returns:
        List of detected anomalies (empty if none)
    """
    total = len(recent_calls)
    if total < min_calls:
        return []

    anomalies = []

    failures = sum(1 for call in recent_calls if not call.succeeded)
    failure_ratio = failures / total
    if failure_ratio > failure_ratio_threshold:
        anomalies.append(AnomalyEvent(
            rule=AnomalyRule.HIGH_FAILURE_RATE,
            observed_value=failure_ratio,
            threshold=failure_ratio_threshold,
            sample_count=total,
            message=(
                f"High API failure rate detected: {failures}/{total} recent calls failed. "
                "Possible API abuse or invalid credentials."
            ),
        ))

    gaps = [
        abs((newer.timestamp - older.timestamp).total_seconds())
        for newer, older in zip(recent_calls, recent_calls[1:])
    ]
    mean_gap = sum(gaps) / len(gaps)
    if mean_gap < min_mean_gap:
        anomalies.append(AnomalyEvent(
            rule=AnomalyRule.RAPID_CALLS,
            observed_value=mean_gap,
            threshold=min_mean_gap,
            sample_count=total,
            message=(
                f"Unusually rapid API calls detected: {mean_gap * 1000:.0f}ms mean gap "
                f"over {total} calls. Possible automated abuse."
            ),
        ))

    return anomalies
