"""Series store adapters implementing SeriesStorePort."""

from scrapestack.adapters.storage.in_memory import InMemorySeriesStore
from scrapestack.adapters.storage.sqlite_series import SQLiteSeriesStore

__all__ = [
    "InMemorySeriesStore",
    "SQLiteSeriesStore",
]
