"""Port interfaces for storage and target source adapters.

These protocols define the contracts that adapters must implement.
The scheduler and query surface depend only on these interfaces, not on
concrete implementations.
"""

from collections.abc import AsyncIterable, Iterable, Sequence
from typing import Protocol, runtime_checkable

from scrapestack.core.models import (
    RetentionPolicy,
    Sample,
    ScrapeOutcome,
    SeriesKey,
    Target,
)


@runtime_checkable
class SeriesStorePort(Protocol):
    """Port for time-series storage operations.

    Adapters implementing this protocol accumulate samples append-only and
    answer point-in-time and range queries.
    Examples: InMemorySeriesStore, SQLiteSeriesStore.
    """

    async def append(self, samples: Sequence[Sample]) -> None:
        """Append one scrape's samples. All-or-nothing."""
        ...

    async def range(
        self,
        name: str,
        selector: dict[str, str] | None,
        start: float,
        end: float,
    ) -> list[Sample]:
        """Return samples with start <= timestamp <= end from matching series.

        Returns:
            Samples ordered by series key, then timestamp. Empty if nothing
            matches.
        """
        ...

    async def instant(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> Sample | None:
        """Return the most recent sample at or before ``at``, if any."""
        ...

    async def latest(
        self, name: str, selector: dict[str, str] | None, at: float
    ) -> list[Sample]:
        """Return the most recent sample at or before ``at`` per series."""
        ...

    async def series(
        self, name: str | None = None, selector: dict[str, str] | None = None
    ) -> list[SeriesKey]:
        """Return keys of series matching name and selector."""
        ...

    async def names(self) -> list[str]:
        """Return the distinct metric names in the store, sorted."""
        ...

    def read(self, since: float = 0) -> AsyncIterable[Sample]:
        """Yield every sample with timestamp > since, ordered by timestamp."""
        ...

    async def flush(self) -> None:
        """Persist any buffered samples."""
        ...

    async def apply_retention(self, policy: RetentionPolicy, now: float) -> int:
        """Expire whole series per policy. Returns the number removed."""
        ...

    async def close(self) -> None:
        """Flush and release resources."""
        ...


@runtime_checkable
class TargetSourcePort(Protocol):
    """Port for anything that can enumerate scrape targets.

    The static TargetRegistry implements it; a discovery backend would too.
    """

    def all(self) -> list[Target]:
        """Return a snapshot of every known target."""
        ...

    def mark(self, target: Target, outcome: ScrapeOutcome) -> None:
        """Record the outcome of a scrape against the target."""
        ...


def matches_selector(
    labels: dict[str, str] | Iterable[tuple[str, str]],
    selector: dict[str, str] | None,
) -> bool:
    """Return True if every selector pair is present in labels."""
    if not selector:
        return True
    label_map = dict(labels)
    return all(label_map.get(key) == value for key, value in selector.items())
