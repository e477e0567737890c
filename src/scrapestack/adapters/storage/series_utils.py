"""Helpers shared by series store adapters."""

from collections.abc import Callable, Sequence

from scrapestack.core.errors import StoreError
from scrapestack.core.models import Sample, SeriesKey


def check_append_order(
    samples: Sequence[Sample], newest: Callable[[SeriesKey], float | None]
) -> dict[SeriesKey, float]:
    """Validate that a batch keeps every series in timestamp order.

    Args:
        samples: The batch about to be appended.
        newest: Returns the newest stored timestamp of a series, or None.

    Returns:
        The newest timestamp per series touched by the batch.

    Raises:
        StoreError: If any sample is older than the newest one already in its
            series (stored or earlier in the batch). Nothing has been written.
    """
    heads: dict[SeriesKey, float] = {}
    for sample in samples:
        key = sample.series_key
        head = heads.get(key)
        if head is None:
            head = newest(key)
        if head is not None and sample.timestamp < head:
            raise StoreError(
                f"out-of-order sample for {sample.name}{dict(key[1])}: "
                f"{sample.timestamp} < {head}"
            )
        heads[key] = sample.timestamp
    return heads


def most_recent(samples: Sequence[Sample]) -> Sample | None:
    """Pick the newest sample; the first wins on equal timestamps."""
    if not samples:
        return None
    return max(samples, key=lambda s: s.timestamp)
