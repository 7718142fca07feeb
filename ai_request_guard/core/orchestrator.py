"""
Request orchestrator.

Single entry point for every outbound model call. Composes admission
control, the fallback cascade, usage monitoring and the streaming decoder.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence

from .admission import AdmissionController
from .backoff import BackoffPolicy
from .cancellation import CancellationToken, race_cancellation
from .cascade import (
    CallDescriptor,
    Executable,
    FallbackCascade,
    FallbackFactory,
    Notifier,
    RetryState,
)
from .streaming import Sink, decode_stream, deliver
from .usage import EndpointKind, UsageMonitor
from ..config.loader import OrchestratorConfig

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RequestOrchestrator:
    """Turns an unreliable completion API into a dependable primitive.

    Each instance owns its rate window and usage log; separate instances
    share nothing. Admission decisions are serialized through one lock, and
    every physical attempt (retries and fallbacks included) re-checks
    admission on its own.
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        admission: Optional[AdmissionController] = None,
        monitor: Optional[UsageMonitor] = None,
        backoff: Optional[BackoffPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """Initialize the orchestrator.

        Args:
            config: Retry, rate-limit, usage and fallback settings
            admission: Admission controller (built from config if omitted)
            monitor: Usage monitor (built from config if omitted)
            backoff: Backoff policy (built from config if omitted)
            sleep: Coroutine used for every timed wait
        """
        self.config = config or OrchestratorConfig()
        self.admission = admission or AdmissionController(
            limit=self.config.rate_limit.per_window,
            window=self.config.rate_limit.window,
        )
        self.monitor = monitor or UsageMonitor(
            capacity=self.config.usage.log_capacity,
            anomaly_window=self.config.usage.anomaly_window,
        )
        self.backoff = backoff or BackoffPolicy(
            base_delay=self.config.retry.base_delay,
            max_delay=self.config.retry.max_delay,
            max_jitter=self.config.retry.max_jitter,
        )
        self._sleep = sleep
        self._admission_lock = asyncio.Lock()

    def cascade_for(self, targets: Optional[Sequence[str]] = None) -> FallbackCascade:
        """Cascade over ``targets`` (defaults to the configured fallbacks)."""
        return FallbackCascade(
            targets=self.config.fallback_targets if targets is None else targets,
            monitor=self.monitor,
            backoff=self.backoff,
            max_retries=self.config.retry.max_retries,
            rate_limit_penalty=self.config.retry.rate_limit_penalty,
        )

    async def execute(
        self,
        descriptor: CallDescriptor,
        call: Executable,
        fallback_factory: Optional[FallbackFactory] = None,
        sink: Optional[Sink] = None,
        notifier: Optional[Notifier] = None,
        cancel: Optional[CancellationToken] = None,
        fallback_targets: Optional[Sequence[str]] = None,
        state: Optional[RetryState] = None,
    ) -> Any:
        """Run one logical request through admission, retries and fallbacks.

        With a sink on a non-transcription endpoint the request streams:
        each attempt's executable should return an async iterable of raw
        body bytes, which is decoded and forwarded to the sink. An attempt
        whose executable returns a plain awaitable instead has its full
        text delivered to the sink once. Without a sink every attempt is a
        single awaited exchange.

        Args:
            descriptor: Endpoint kind and primary model
            call: Executable for the primary target
            fallback_factory: Builds executables for fallback targets
            sink: Receives the accumulated transcript while streaming
            notifier: Receives (tier, message) on each fallback promotion
            cancel: Cancellation token observed at every suspension point
            fallback_targets: Override for the configured fallback targets
            state: Optional RetryState for the caller to inspect afterwards

        Returns:
            The result of the first successful attempt

        Raises:
            ExhaustedError: If every target exhausted its retries
            RequestCancelled: If ``cancel`` fired during the request
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        streaming = sink is not None and descriptor.endpoint_kind is not EndpointKind.TRANSCRIPTION

        async def run_attempt(executable: Executable) -> Any:
            if streaming:
                return await self._stream_attempt(executable, sink, cancel)
            return await race_cancellation(executable(), cancel)

        async def admit() -> None:
            await self._admit(cancel)

        async def wait(seconds: float) -> None:
            await self._wait(seconds, cancel)

        logger.debug(
            "Dispatching %s call to %s (%s)",
            descriptor.endpoint_kind.value, descriptor.model,
            "streaming" if streaming else "plain",
        )
        return await self.cascade_for(fallback_targets).run(
            descriptor,
            call,
            run_attempt=run_attempt,
            wait=wait,
            fallback_factory=fallback_factory,
            admit=admit,
            notifier=notifier,
            state=state,
        )

    async def _stream_attempt(
        self,
        executable: Executable,
        sink: Sink,
        cancel: Optional[CancellationToken],
    ) -> str:
        outcome = executable()
        if hasattr(outcome, "__aiter__"):
            return await decode_stream(outcome, sink, cancel)

        text = await race_cancellation(outcome, cancel)
        if text:
            await deliver(sink, text)
        return text

    async def _admit(self, cancel: Optional[CancellationToken]) -> None:
        async with self._admission_lock:
            while not self.admission.can_proceed():
                delay = self.admission.wait_time()
                logger.info("Rate limit reached. Waiting %.2fs before next request.", delay)
                await self._wait(delay, cancel)
            self.admission.record_call()

    async def _wait(self, seconds: float, cancel: Optional[CancellationToken]) -> None:
        await race_cancellation(self._sleep(seconds), cancel)

    def stats(self):
        """Usage statistics for this orchestrator."""
        return self.monitor.stats()
