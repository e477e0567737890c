"""In-memory series store adapter."""

import bisect
from collections.abc import AsyncIterable, Sequence

from scrapestack.adapters.storage.series_utils import check_append_order, most_recent
from scrapestack.core.models import RetentionPolicy, Sample, SeriesKey
from scrapestack.core.ports import matches_selector


class InMemorySeriesStore:
    """In-memory implementation of SeriesStorePort.

    Keeps every series as a list of samples. Suitable for testing and
    short-lived runs where persistence is not required.
    """

    def __init__(self) -> None:
        self._series: dict[SeriesKey, list[Sample]] = {}

    def _newest(self, key: SeriesKey) -> float | None:
        samples = self._series.get(key)
        return samples[-1].timestamp if samples else None

    def _matching(
        self, name: str | None, selector: dict[str, str] | None
    ) -> list[SeriesKey]:
        return sorted(
            key
            for key in self._series
            if (name is None or key[0] == name) and matches_selector(key[1], selector)
        )

    async def append(self, samples: Sequence[Sample]) -> None:
        """Append a batch of samples, all or nothing."""
        check_append_order(samples, self._newest)
        for sample in samples:
            self._series.setdefault(sample.series_key, []).append(sample)

    async def range(
        self,
        name: str,
        selector: dict[str, str] | None,
        start: float,
        end: float,
    ) -> list[Sample]:
        """Return samples with start <= timestamp <= end from matching series."""
        result: list[Sample] = []
        for key in self._matching(name, selector):
            samples = self._series[key]
            timestamps = [s.timestamp for s in samples]
            lo = bisect.bisect_left(timestamps, start)
            hi = bisect.bisect_right(timestamps, end)
            result.extend(samples[lo:hi])
        return result

    async def latest(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> list[Sample]:
        """Return the newest sample at or before ``at`` for each series."""
        result: list[Sample] = []
        for key in self._matching(name, selector):
            samples = self._series[key]
            index = bisect.bisect_right([s.timestamp for s in samples], at)
            if index:
                result.append(samples[index - 1])
        return result

    async def instant(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> Sample | None:
        """Return the newest sample at or before ``at`` across matching series."""
        return most_recent(await self.latest(name, selector, at))

    async def series(
        self, name: str | None = None, selector: dict[str, str] | None = None
    ) -> list[SeriesKey]:
        return self._matching(name, selector)

    async def names(self) -> list[str]:
        return sorted({key[0] for key in self._series})

    async def read(self, since: float = 0) -> AsyncIterable[Sample]:
        """Yield samples with timestamp > since, ordered by timestamp ascending."""
        filtered = [
            sample
            for key in sorted(self._series)
            for sample in self._series[key]
            if sample.timestamp > since
        ]
        for sample in sorted(filtered, key=lambda s: s.timestamp):
            yield sample

    async def count(self) -> int:
        return sum(len(samples) for samples in self._series.values())

    async def flush(self) -> None:
        """Nothing to flush; samples are held in memory only."""

    async def apply_retention(self, policy: RetentionPolicy, now: float) -> int:
        """Drop series whose newest sample is older than the policy allows."""
        if policy.max_age_seconds is None:
            return 0
        cutoff = now - policy.max_age_seconds
        expired = [
            key
            for key, samples in self._series.items()
            if samples[-1].timestamp < cutoff
        ]
        for key in expired:
            del self._series[key]
        return len(expired)

    async def close(self) -> None:
        """Nothing to release."""
