"""
Retry and fallback cascade for one logical request.

A logical request starts on its primary target. Failed attempts are retried
on the same target with backoff until the per-target attempt budget is
spent, then the request is promoted to the next fallback target. Running
out of targets is terminal.

States: PRIMARY -> FALLBACK(0) -> ... -> FALLBACK(n-1) -> EXHAUSTED, with
SUCCEEDED reachable from any non-terminal state.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from .backoff import BackoffPolicy
from .errors import (
    ExhaustedError,
    FailureKind,
    RequestCancelled,
    classify_failure,
    strip_failure_prefix,
)
from .usage import EndpointKind, UsageMonitor

logger = logging.getLogger(__name__)

Executable = Callable[[], Any]
FallbackFactory = Callable[[str, int], Executable]
Notifier = Callable[[int, str], Any]
AttemptRunner = Callable[[Executable], Awaitable[Any]]
Waiter = Callable[[float], Awaitable[None]]


class CascadeState(Enum):
    """Where a logical request currently stands."""
    PRIMARY = "primary"
    FALLBACK = "fallback"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class CallDescriptor:
    """Explicit metadata for a call: which endpoint, which model."""
    endpoint_kind: EndpointKind
    model: str

    def __post_init__(self):
        """Validate the model identifier."""
        if not self.model or not self.model.strip():
            raise ValueError("model is required and cannot be empty")


@dataclass
class RetryState:
    """Transient bookkeeping for one logical request.

    ``retry_count`` counts failed attempts on the current target;
    ``fallback_tier`` is -1 on the primary target.
    """
    retry_count: int = 0
    fallback_tier: int = -1
    last_error_message: str = ""
    attempts: int = 0
    state: CascadeState = CascadeState.PRIMARY
    waits: List[float] = field(default_factory=list)

    @property
    def label(self) -> str:
        """Human-readable name of the current target tier."""
        if self.fallback_tier < 0:
            return "primary"
        return f"fallback-{self.fallback_tier}"


class FallbackCascade:
    """Drives retries within a tier and escalation across tiers.

    The cascade holds configuration only; every call to :meth:`run` owns a
    fresh :class:`RetryState`, so one instance serves concurrent requests.
    """

    def __init__(
        self,
        targets: Sequence[str],
        monitor: UsageMonitor,
        backoff: Optional[BackoffPolicy] = None,
        max_retries: int = 3,
        rate_limit_penalty: float = 5.0,
    ):
        """Initialize the cascade.

        Args:
            targets: Ordered fallback model identifiers
            monitor: Usage monitor receiving every attempt outcome
            backoff: Backoff policy for retry delays
            max_retries: Attempts allowed per target before escalating
            rate_limit_penalty: Extra seconds added after a rate-limit failure

        Raises:
            ValueError: If max_retries or rate_limit_penalty is invalid
        """
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if rate_limit_penalty < 0:
            raise ValueError("rate_limit_penalty must be >= 0")

        self.targets: Tuple[str, ...] = tuple(targets)
        self.monitor = monitor
        self.backoff = backoff or BackoffPolicy()
        self.max_retries = max_retries
        self.rate_limit_penalty = rate_limit_penalty

    def model_for(self, descriptor: CallDescriptor, tier: int) -> str:
        """Model identifier used at ``tier`` (-1 is the primary)."""
        if tier < 0:
            return descriptor.model
        return self.targets[tier]

    async def run(
        self,
        descriptor: CallDescriptor,
        call: Executable,
        run_attempt: AttemptRunner,
        wait: Waiter,
        fallback_factory: Optional[FallbackFactory] = None,
        admit: Optional[Callable[[], Awaitable[None]]] = None,
        notifier: Optional[Notifier] = None,
        state: Optional[RetryState] = None,
    ) -> Any:
        """Run one logical request to success or exhaustion.

        Attempts are strictly sequential. Each one is preceded by ``admit``
        and its outcome is recorded on the usage monitor.

        Args:
            descriptor: Endpoint and primary model of the request
            call: Executable for the primary target
            run_attempt: Turns an executable into one awaited attempt
            wait: Cancellation-aware sleep used between attempts
            fallback_factory: Builds executables for fallback targets
            admit: Admission gate awaited before every attempt
            notifier: Called with (tier, error message) on each promotion
            state: Optional RetryState to drive, for inspection by the caller

        Returns:
            The result of the first successful attempt

        Raises:
            ExhaustedError: If every attempt on every target failed
            RequestCancelled: If a suspension point observed cancellation
        """
        state = state if state is not None else RetryState()
        fallback_tiers = len(self.targets) if fallback_factory is not None else 0
        current = call

        while True:
            model = self.model_for(descriptor, state.fallback_tier)
            if admit is not None:
                await admit()

            state.attempts += 1
            try:
                result = await run_attempt(current)
            except (RequestCancelled, asyncio.CancelledError):
                self.monitor.record(descriptor.endpoint_kind, model, False)
                logger.info("API request cancelled (%s) on attempt %d", state.label, state.attempts)
                raise
            except Exception as exc:
                failure = classify_failure(exc)
                state.retry_count += 1
                state.last_error_message = failure.message
                self.monitor.record(descriptor.endpoint_kind, model, False, failure.status_code)
                logger.warning(
                    "API request failed (%s) (attempt %d/%d): %s",
                    state.label, state.retry_count, self.max_retries, failure.message,
                )

                if state.retry_count < self.max_retries:
                    delay = self.backoff.delay(state.retry_count - 1)
                    if failure.kind is FailureKind.RATE_LIMITED:
                        delay += self.rate_limit_penalty
                        logger.info("Rate limit exceeded. Retrying in %.2fs", delay)
                    else:
                        logger.info("Error occurred. Retrying in %.2fs", delay)
                    state.waits.append(delay)
                    await wait(delay)
                    continue

                if state.fallback_tier < fallback_tiers - 1:
                    state.fallback_tier += 1
                    state.retry_count = 0
                    state.state = CascadeState.FALLBACK
                    target = self.targets[state.fallback_tier]
                    current = fallback_factory(target, state.fallback_tier)
                    logger.warning(
                        "Switching to fallback model: %s (tier %d)", target, state.fallback_tier,
                    )
                    await self._notify(notifier, state.fallback_tier, failure.message)
                    continue

                state.state = CascadeState.EXHAUSTED
                logger.error(
                    "All attempts failed for %s after %d physical attempts",
                    descriptor.model, state.attempts,
                )
                raise ExhaustedError(
                    last_error_message=failure.message,
                    max_retries=self.max_retries,
                    fallback_tiers=fallback_tiers,
                    attempts=state.attempts,
                ) from exc

            state.state = CascadeState.SUCCEEDED
            self.monitor.record(descriptor.endpoint_kind, model, True)
            return result

    async def _notify(self, notifier: Optional[Notifier], tier: int, message: str) -> None:
        if notifier is None:
            return
        try:
            result = notifier(tier, strip_failure_prefix(message))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Fallback notifier failed for tier %d", tier)
