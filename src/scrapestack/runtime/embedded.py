"""Embedded runtime running the scheduler and store maintenance in-process."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from types import TracebackType

import httpx

from scrapestack.config import ScrapeConfig
from scrapestack.core.errors import StoreError
from scrapestack.core.models import RetentionPolicy
from scrapestack.core.ports import SeriesStorePort, TargetSourcePort
from scrapestack.scheduler import ScrapeScheduler

logger = logging.getLogger(__name__)


class EmbeddedRuntime:
    """Owns the scrape scheduler and the store's background loops.

    On start() it launches the scheduler, a periodic flush loop and, when a
    retention policy is enabled, a periodic retention loop. stop() stops the
    scheduler within the grace period, ends the loops, then closes the store.

    Example:
        ```python
        async with EmbeddedRuntime(config, store, registry):
            await serve_forever()
        ```
    """

    def __init__(
        self,
        config: ScrapeConfig,
        store: SeriesStorePort,
        targets: TargetSourcePort,
        retention: RetentionPolicy | None = None,
        cleanup_interval_seconds: float = 60.0,
        flush_interval_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._retention = retention or RetentionPolicy()
        self._cleanup_interval = cleanup_interval_seconds
        self._flush_interval = flush_interval_seconds
        self._clock = clock
        self.scheduler = ScrapeScheduler(
            config, targets, store, client=client, clock=clock
        )
        self._loops: list[asyncio.Task[None]] = []
        self._stopping: asyncio.Event | None = None

    async def _every(
        self, interval: float, action: Callable[[], Awaitable[object]]
    ) -> None:
        assert self._stopping is not None
        while True:
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
                return
            except TimeoutError:
                pass
            try:
                await action()
            except StoreError as e:
                logger.error("Background store maintenance failed: %s", e)
            except Exception:
                logger.exception("Unexpected error in background store maintenance")

    async def run_retention(self) -> int:
        """Apply the retention policy once. Returns the number of series removed."""
        return await self._store.apply_retention(self._retention, self._clock())

    async def start(self) -> None:
        """Start scraping and background maintenance."""
        self._stopping = asyncio.Event()
        await self.scheduler.start()
        self._loops = [
            asyncio.create_task(
                self._every(self._flush_interval, self._store.flush),
                name="store-flush",
            )
        ]
        if self._retention.enabled:
            self._loops.append(
                asyncio.create_task(
                    self._every(self._cleanup_interval, self.run_retention),
                    name="store-retention",
                )
            )

    async def stop(self) -> None:
        """Stop scraping, end background loops, flush and close the store."""
        await self.scheduler.stop()
        if self._stopping is not None:
            self._stopping.set()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
            self._loops = []
        await self._store.close()

    async def __aenter__(self) -> "EmbeddedRuntime":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()
