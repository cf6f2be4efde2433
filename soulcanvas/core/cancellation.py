"""Cooperative cancellation for nested async operations.

A single CancellationToken is threaded through the failover orchestrator,
the retry executor and the job poll loop. Firing it aborts whatever HTTP call
or timer is in flight and raises CancellationError.

Examples:
    >>> token = CancellationToken()
    >>> task = asyncio.create_task(service.generate(sketch, style, token=token))
    >>> token.cancel()  # e.g. the user pressed "stop"
    >>> await task  # raises CancellationError

Tests:
    - tests/unit/test_cancellation.py
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from soulcanvas.core.errors import CancellationError

T = TypeVar("T")


class CancellationToken:
    """One-shot cancellation signal backed by an asyncio.Event."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason = "Request cancelled"

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Fire the token. Calling it again has no effect."""
        if self._event.is_set():
            return
        if reason:
            self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise CancellationError if the token has fired."""
        if self._event.is_set():
            raise CancellationError(self.reason)

    async def wait(self) -> None:
        """Suspend until the token fires."""
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], token: CancellationToken | None) -> T:
    """Await work, aborting it as soon as the token fires.

    Args:
        awaitable: The coroutine or future to run.
        token: Cancellation token (None means "not cancellable").

    Returns:
        The awaitable's result.

    Raises:
        CancellationError: If the token fires before the work completes.
    """
    if token is None:
        return await awaitable

    if token.cancelled:
        # Close an unstarted coroutine so it does not warn about never being awaited
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        token.raise_if_cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if work in done:
        waiter.cancel()
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise CancellationError(token.reason)


async def cancellable_sleep(seconds: float, token: CancellationToken | None = None) -> None:
    """Sleep for a number of seconds, waking early with an error on cancellation.

    Raises:
        CancellationError: If the token fires before or during the sleep.
    """
    await run_cancellable(asyncio.sleep(max(seconds, 0)), token)
