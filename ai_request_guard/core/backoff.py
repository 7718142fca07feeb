"""
Exponential backoff with jitter.
"""

import random
from dataclasses import dataclass, field


@dataclass(frozen=True)
class BackoffPolicy:
    """Maps a retry count to a delay in seconds.

    ``delay(n) = min(max_delay, base_delay * 2**n) + uniform(0, max_jitter)``
    """
    base_delay: float = 1.0
    max_delay: float = 10.0
    max_jitter: float = 1.0
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self):
        """Validate delay bounds."""
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.max_jitter < 0:
            raise ValueError("max_jitter must be >= 0")

    def base(self, retry_count: int) -> float:
        """Deterministic part of the delay, capped at ``max_delay``."""
        if retry_count < 0:
            raise ValueError("retry_count must be >= 0")
        # 2**64 seconds exceeds any max_delay
        exponent = min(retry_count, 64)
        return min(self.max_delay, self.base_delay * (2 ** exponent))

    def delay(self, retry_count: int) -> float:
        """Full delay including jitter."""
        jitter = self.rng.uniform(0, self.max_jitter) if self.max_jitter else 0.0
        return self.base(retry_count) + jitter
