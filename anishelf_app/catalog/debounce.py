"""
================================================================================
AniShelf - Debouncer & Cancellation Tokens
================================================================================
Delays propagation of a rapidly changing value until it has been stable for
`delay` seconds. Each push supersedes the previous one: the pending timer is
cancelled and its token marked cancelled, so at most one value fires.

Usage:
    async def on_stable(state, token):
        ...

    debouncer = Debouncer(0.5, on_stable)
    debouncer.push(state_a)
    debouncer.push(state_b)   # state_a never fires
    await debouncer.close()   # teardown cancels anything pending
================================================================================
"""

import asyncio
import itertools
import logging
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Ties a unit of async work to one generation of user input."""

    def __init__(self, sequence: int):
        self.sequence = sequence
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def __repr__(self):
        state = "cancelled" if self._cancelled else "active"
        return f"<CancellationToken(seq={self.sequence}, {state})>"


class SequenceCounter:
    """Monotonic counter shared by timers, fetches and cache writes."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def next(self) -> int:
        return next(self._counter)

    def token(self) -> CancellationToken:
        return CancellationToken(self.next())


class Debouncer(Generic[T]):
    """
    Async trailing-edge debouncer.

    `callback(value, token)` is awaited once the value has been stable for
    `delay` seconds. The callback runs inside the timer task, so a later
    push or close() also cancels a callback that is already running.
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[T, CancellationToken], Awaitable[Any]],
        counter: Optional[SequenceCounter] = None,
    ):
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self.delay = delay
        self._callback = callback
        self._counter = counter or SequenceCounter()
        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._closed = False
        self.stable_value: Optional[T] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def push(self, value: T) -> CancellationToken:
        """
        Register a new value, superseding any pending one.

        Must be called from inside a running event loop.

        Returns:
            Token for this generation (cancelled if superseded)
        """
        if self._closed:
            raise RuntimeError("Debouncer is closed")
        self.cancel()
        token = self._counter.token()
        self._token = token
        self._task = asyncio.get_running_loop().create_task(self._fire(value, token))
        return token

    def cancel(self) -> None:
        """Cancel the pending propagation (if any) without closing."""
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        """Teardown: cancel pending work and wait for the timer to unwind."""
        self._closed = True
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _fire(self, value: T, token: CancellationToken) -> None:
        await asyncio.sleep(self.delay)
        if token.cancelled:
            return
        self.stable_value = value
        logger.debug(f"Debounced value stable (seq={token.sequence})")
        await self._callback(value, token)
