"""
Usage monitoring for outbound calls.

Keeps a bounded, newest-first log of call outcomes and derives success
statistics from it.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional, Tuple

from .anomaly import AnomalyEvent, detect_anomalies

logger = logging.getLogger(__name__)


class EndpointKind(Enum):
    """Kind of remote endpoint a call targets."""
    CHAT = "chat"
    TRANSCRIPTION = "transcription"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CallOutcome:
    """Immutable record of one physical attempt."""
    timestamp: datetime
    endpoint_kind: EndpointKind
    model: str
    succeeded: bool
    error_code: Optional[int] = None


@dataclass(frozen=True)
class UsageStats:
    """Aggregate outcome counts over the usage log."""
    total: int
    succeeded: int
    failed: int

    @property
    def success_rate_percent(self) -> Optional[float]:
        """Success rate rounded to one decimal, or None with no calls."""
        if self.total == 0:
            return None
        return round(self.succeeded / self.total * 100, 1)


class UsageMonitor:
    """Append-only bounded log of call outcomes.

    New outcomes are prepended; once the log exceeds ``capacity`` the oldest
    entry is evicted. Every ``record`` runs the anomaly heuristics over the
    most recent ``anomaly_window`` entries.
    """

    def __init__(
        self,
        capacity: int = 100,
        anomaly_window: int = 20,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if anomaly_window < 1:
            raise ValueError("anomaly_window must be >= 1")

        self.capacity = capacity
        self.anomaly_window = anomaly_window
        self._clock = clock
        self._log: Deque[CallOutcome] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(
        self,
        endpoint_kind: EndpointKind,
        model: str,
        succeeded: bool,
        error_code: Optional[int] = None,
    ) -> List[AnomalyEvent]:
        """Log one call outcome and run the anomaly heuristics.

        Args:
            endpoint_kind: Endpoint the attempt targeted
            model: Model identifier used by the attempt
            succeeded: Whether the attempt succeeded
            error_code: HTTP status of a failed attempt, if known

        Returns:
            Anomalies signalled after this call (advisory only)
        """
        outcome = CallOutcome(
            timestamp=self._clock(),
            endpoint_kind=endpoint_kind,
            model=model,
            succeeded=succeeded,
            error_code=error_code,
        )
        with self._lock:
            # deque(maxlen) drops from the right, which holds the oldest entry
            self._log.appendleft(outcome)
            recent = list(self._log)[:self.anomaly_window]

        logger.info(
            "API Call: %s | Model: %s | Success: %s | %s",
            endpoint_kind.value, model, succeeded, outcome.timestamp.isoformat(),
        )

        anomalies = detect_anomalies(recent)
        for anomaly in anomalies:
            logger.warning("Security Alert: %s", anomaly.message)
        return anomalies

    @property
    def entries(self) -> Tuple[CallOutcome, ...]:
        """Snapshot of the log, newest first."""
        with self._lock:
            return tuple(self._log)

    def recent(self, count: int) -> Tuple[CallOutcome, ...]:
        """The ``count`` most recent outcomes, newest first."""
        return self.entries[:count]

    def stats(self) -> UsageStats:
        """Aggregate counts over the whole log."""
        entries = self.entries
        succeeded = sum(1 for entry in entries if entry.succeeded)
        return UsageStats(
            total=len(entries),
            succeeded=succeeded,
            failed=len(entries) - succeeded,
        )

    def __len__(self) -> int:
        return len(self.entries)
