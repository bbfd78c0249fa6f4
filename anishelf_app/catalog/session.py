"""
Interactive search session: the presentation-side driver of the pipeline.

Every FilterState change publishes `loading` right away, supersedes the
previous generation (its timer and, through its token, any in-flight
fetch) and schedules a debounced query. Only the result of the current
generation is ever published.
"""

import logging
from typing import Callable, Optional

from .debounce import CancellationToken, Debouncer
from .models import FilterState, QueryMode, QueryResult
from .service import CatalogService

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.5


class SearchSession:
    """
    Embedding API for an interactive front end (for example a websocket
    handler) that feeds keystrokes and filter changes as they happen. The
    JSON routes answer one request at a time and do not use it.

    Obtain one bound to the app configuration through
    CatalogExtension.session(publish) and drive it on the runtime loop.
    """

    def __init__(
        self,
        service: CatalogService,
        publish: Callable[[QueryResult], None],
        mode: QueryMode = QueryMode.SEARCH,
        delay: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        self.service = service
        self.mode = mode
        self.delay = delay
        self._publish = publish
        self._debouncer: Debouncer[FilterState] = Debouncer(delay, self._run, counter=service.counter)
        self._current: Optional[CancellationToken] = None
        self.state: Optional[FilterState] = None
        self.last_result: Optional[QueryResult] = None

    def update(self, state: FilterState) -> CancellationToken:
        """Replace the filter state. Must be called on the event loop."""
        self.state = state
        self._deliver(QueryResult.loading())
        self._current = self._debouncer.push(state)
        return self._current

    async def close(self) -> None:
        """Teardown: cancel the pending timer and drop any in-flight result."""
        await self._debouncer.close()
        self._current = None

    async def _run(self, state: FilterState, token: CancellationToken) -> None:
        result = await self.service.run_query(state, self.mode, token=token)
        if result is None or token is not self._current or token.cancelled:
            logger.debug(f"Session dropped result for seq={token.sequence}")
            return
        self._deliver(result)

    def _deliver(self, result: QueryResult) -> None:
        self.last_result = result
        self._publish(result)
