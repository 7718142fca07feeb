"""Cooperative cancellation for logical requests.

A :class:`CancellationToken` is handed to the orchestrator alongside a call.
Every suspension point (admission wait, backoff wait, stream chunk read)
races the token so a cancelled request unwinds to :class:`RequestCancelled`
instead of sleeping out its delay or holding a connection open.
"""

import asyncio
import inspect
from typing import Awaitable, Optional, TypeVar

from .errors import RequestCancelled

T = TypeVar("T")


class CancellationToken:
    """Cancellation signal shared between a caller and one logical request.

    Examples:
        >>> token = CancellationToken()
        >>> task = asyncio.create_task(orchestrator.execute(..., cancel=token))
        >>> token.cancel()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._event.set()

    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        """Raise RequestCancelled when the token has fired."""
        if self.is_cancelled():
            raise RequestCancelled("Request was cancelled")


async def race_cancellation(aw: Awaitable[T], token: Optional[CancellationToken]) -> T:
    """Await ``aw`` unless ``token`` fires first.

    Args:
        aw: Awaitable to run
        token: Optional cancellation token

    Returns:
        The awaitable's result

    Raises:
        RequestCancelled: If the token fired before ``aw`` completed
    """
    if token is None:
        return await aw

    if token.is_cancelled():
        if inspect.iscoroutine(aw):
            aw.close()
        raise RequestCancelled("Request was cancelled")

    work = asyncio.ensure_future(aw)
    watcher = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        # the work must have unwound before the caller releases its resources
        await asyncio.gather(work, return_exceptions=True)
        raise
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    work.cancel()
    # outcome of the abandoned work is discarded
    await asyncio.gather(work, return_exceptions=True)
    raise RequestCancelled("Request was cancelled")
