"""Scrape scheduler.

Runs one asyncio task per target. Each task pulls its target's metrics
endpoint once per interval, parses the body and appends the samples to the
series store. Ticks are aligned to the scheduler start; a scrape that overruns
its interval causes the missed ticks to be skipped, never queued.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable

import httpx

from scrapestack._version import __version__
from scrapestack.config import ScrapeConfig
from scrapestack.core.encoding.exposition import parse_exposition
from scrapestack.core.errors import ScrapeError, StoreError
from scrapestack.core.models import Sample, ScrapeOutcome, Target
from scrapestack.core.ports import SeriesStorePort, TargetSourcePort

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/plain;version=0.0.4;q=1,*/*;q=0.1"


def next_tick_after(last_tick: float, interval: float, now: float) -> float:
    """Return the next tick on the ``last_tick + k * interval`` grid.

    Ticks that already passed while the previous scrape was running are
    skipped, so the result is never earlier than ``now``.
    """
    next_tick = last_tick + interval
    if now > next_tick:
        next_tick += math.ceil((now - next_tick) / interval) * interval
    return next_tick


def attach_target_labels(target: Target, sample: Sample) -> Sample:
    """Return the sample with the target's job, instance and static labels.

    An exposed label that collides with a target label is kept as
    ``exported_<name>``.
    """
    labels = dict(sample.labels)
    for key, value in target.series_labels.items():
        if key in labels:
            labels[f"exported_{key}"] = labels.pop(key)
        labels[key] = value
    return Sample(
        name=sample.name, timestamp=sample.timestamp, value=sample.value, labels=labels
    )


class ScrapeScheduler:
    """Scrapes every target of a target source on its own timeline.

    Args:
        config: Scrape configuration; supplies the shutdown grace period.
        targets: Source of targets and sink for their scrape outcomes.
        store: Series store that receives scraped samples.
        client: Optional httpx client. One is created (and closed on stop)
            when omitted.
        clock: Wall-clock used to timestamp samples.
        monotonic: Monotonic clock used for tick scheduling.
    """

    def __init__(
        self,
        config: ScrapeConfig,
        targets: TargetSourcePort,
        store: SeriesStorePort,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._targets = targets
        self._store = store
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._monotonic = monotonic
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(follow_redirects=True)
        return self._client

    async def _fetch(self, target: Target) -> str:
        """GET the target's metrics body.

        Raises:
            ScrapeError: On timeout, transport error, non-2xx status or a body
                that cannot be decoded.
        """
        timeout = target.scrape_timeout
        headers = {
            "Accept": ACCEPT_HEADER,
            "User-Agent": f"scrapestack/{__version__}",
            "X-Prometheus-Scrape-Timeout-Seconds": f"{timeout:g}",
        }
        try:
            response = await asyncio.wait_for(
                self._get_client().get(target.url, headers=headers, timeout=timeout),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise ScrapeError(f"scrape timed out after {timeout:g}s") from e
        except httpx.HTTPError as e:
            raise ScrapeError(f"request failed: {e}") from e
        if not response.is_success:
            raise ScrapeError(
                f"server returned HTTP status {response.status_code} "
                f"{response.reason_phrase}".rstrip()
            )
        try:
            return response.content.decode(response.encoding or "utf-8")
        except (UnicodeDecodeError, LookupError) as e:
            raise ScrapeError(f"undecodable response body: {e}") from e

    async def scrape_target(self, target: Target) -> ScrapeOutcome:
        """Scrape one target once, store its samples and record the outcome.

        Failures never propagate: they are recorded on the target.
        """
        started = self._clock()
        start_mono = self._monotonic()
        try:
            body = await self._fetch(target)
        except ScrapeError as e:
            outcome = ScrapeOutcome(
                timestamp=started,
                duration=self._monotonic() - start_mono,
                error=str(e),
            )
            logger.warning(
                "Scrape of %s (job=%s) failed: %s", target.url, target.job, e
            )
            self._targets.mark(target, outcome)
            return outcome

        parsed = parse_exposition(body, started)
        if parsed.skipped:
            logger.debug(
                "Skipped %d malformed line(s) from %s", parsed.skipped, target.url
            )
        samples = [attach_target_labels(target, s) for s in parsed.samples]
        store_error: str | None = None
        try:
            await self._store.append(samples)
        except StoreError as e:
            store_error = f"store append failed: {e}"
            logger.error(
                "Could not store %d sample(s) from %s: %s", len(samples), target.url, e
            )
        outcome = ScrapeOutcome(
            timestamp=started,
            duration=self._monotonic() - start_mono,
            samples=0 if store_error else len(samples),
            store_error=store_error,
        )
        self._targets.mark(target, outcome)
        return outcome

    async def scrape_all(self) -> list[tuple[Target, ScrapeOutcome]]:
        """Scrape every target once, concurrently."""
        targets = self._targets.all()
        outcomes = await asyncio.gather(*(self.scrape_target(t) for t in targets))
        return list(zip(targets, outcomes, strict=True))

    async def _run_target(self, target: Target, first_tick: float) -> None:
        assert self._stopping is not None
        interval = target.scrape_interval
        tick = first_tick
        while not self._stopping.is_set():
            try:
                await self.scrape_target(target)
            except Exception as e:
                logger.exception("Unexpected error scraping %s", target.url)
                self._targets.mark(
                    target,
                    ScrapeOutcome(timestamp=self._clock(), duration=0.0, error=repr(e)),
                )
            now = self._monotonic()
            next_tick = next_tick_after(tick, interval, now)
            skipped = round((next_tick - tick) / interval) - 1
            if skipped > 0:
                logger.debug(
                    "Scrape of %s overran its interval; skipped %d tick(s)",
                    target.url,
                    skipped,
                )
            tick = next_tick
            delay = max(0.0, next_tick - now)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except TimeoutError:
                pass

    async def start(self) -> None:
        """Start one scrape task per target."""
        if self.running:
            raise RuntimeError("scheduler is already running")
        self._stopping = asyncio.Event()
        first_tick = self._monotonic()
        targets = self._targets.all()
        self._tasks = [
            asyncio.create_task(
                self._run_target(target, first_tick),
                name=f"scrape:{target.job}/{target.address}",
            )
            for target in targets
        ]
        logger.info("Scheduler started for %d target(s)", len(targets))

    async def stop(self, grace: float | None = None) -> None:
        """Stop issuing scrapes and wait for in-flight ones.

        Scrapes still running after ``grace`` seconds (default: the
        configured shutdown grace) are cancelled. A cancelled scrape stores
        nothing.
        """
        if grace is None:
            grace = self._config.shutdown_grace
        if self._stopping is not None:
            self._stopping.set()
        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=grace)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning(
                    "Cancelled %d scrape(s) still running after %.1fs grace",
                    len(pending),
                    grace,
                )
                await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error(
                        "Scrape task %s ended with %r",
                        task.get_name(),
                        task.exception(),
                    )
        self._tasks = []
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Scheduler stopped")
