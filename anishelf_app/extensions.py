"""
Application extensions: the persisted store, the async runtime and the
catalog service, created once per app in create_app() and reached from
routes through get_catalog().
"""

import atexit
import logging
from typing import Optional

from flask import Flask, current_app

from .catalog import CatalogService, JikanClient, QueryMode, SearchSession
from .runtime import AsyncRuntime
from .store import PersistedStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = 'anishelf'


class CatalogExtension:
    """Lifecycle owner for store, runtime and service."""

    def __init__(self, app: Optional[Flask] = None):
        self.store: Optional[PersistedStore] = None
        self.runtime: Optional[AsyncRuntime] = None
        self.service: Optional[CatalogService] = None
        self.debounce_seconds = 0.5
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        config = app.config
        self.store = PersistedStore(config.get('DATABASE_URL')).open()
        self.runtime = AsyncRuntime(timeout=config.get('ASYNC_TIMEOUT', 60.0))
        client = JikanClient(
            base_url=config['JIKAN_BASE_URL'],
            timeout=config['JIKAN_TIMEOUT'],
            rate_limit=config['JIKAN_RATE_LIMIT'],
            max_retries=config['JIKAN_MAX_RETRIES'],
            transport=config.get('JIKAN_TRANSPORT'),
        )
        self.service = CatalogService(
            client,
            self.store,
            detail_ttl=config['DETAIL_CACHE_TTL'],
            result_limit=config['RESULT_LIMIT'],
        )
        self.debounce_seconds = config['SEARCH_DEBOUNCE_MS'] / 1000.0
        app.extensions[EXTENSION_KEY] = self
        if not app.testing:
            atexit.register(self.close)

    def run(self, coro):
        return self.runtime.run(coro)

    def session(self, publish, mode: QueryMode = QueryMode.SEARCH) -> SearchSession:
        """
        Debounced search session using the configured SEARCH_DEBOUNCE_MS.

        Entry point for interactive front ends embedding the catalog; call
        session.update() on the runtime loop (runtime.loop.call_soon_threadsafe).
        """
        return SearchSession(self.service, publish, mode=mode, delay=self.debounce_seconds)

    def close(self) -> None:
        """Flush and release everything (process exit / test teardown)."""
        if self.service is not None and self.runtime is not None:
            try:
                self.runtime.run(self.service.close())
            except RuntimeError as e:
                logger.warning(f"Catalog close failed: {e}")
        if self.runtime is not None:
            self.runtime.shutdown()
        if self.store is not None:
            self.store.close()
        self.service = self.runtime = self.store = None


def get_catalog() -> CatalogExtension:
    return current_app.extensions[EXTENSION_KEY]
