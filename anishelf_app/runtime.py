"""
Bridge between sync Flask views and the async catalog core.

Flask routes are sync, the catalog is async. All coroutines run on one
long-lived event loop in a daemon thread, so the httpx client, the rate
limiter and the caches always live on the same loop.
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class AsyncRuntime:
    """Owns a background event loop."""

    def __init__(self, timeout: Optional[float] = 60.0):
        self.timeout = timeout
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                self._loop = asyncio.new_event_loop()
                self._thread = threading.Thread(
                    target=self._loop.run_forever,
                    name="anishelf-async",
                    daemon=True
                )
                self._thread.start()
                logger.debug("Async runtime started")
            return self._loop

    def run(self, coro: Coroutine) -> Any:
        """Run `coro` on the background loop and wait for its result."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.timeout)

    def shutdown(self) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=5)
        loop.close()
        logger.debug("Async runtime stopped")
