"""scrapestack: pull-based metrics scraping with persistent series storage.

Scrapes HTTP metrics endpoints on a fixed interval, appends the samples to an
append-only series store and answers instant and range queries for
dashboards.
"""

from scrapestack._version import __version__
from scrapestack.adapters.storage import InMemorySeriesStore, SQLiteSeriesStore
from scrapestack.config import JobConfig, ScrapeConfig, StaticConfig, load_config
from scrapestack.core.errors import (
    ConfigError,
    ScrapeError,
    ScrapestackError,
    StoreError,
)
from scrapestack.core.models import (
    RetentionPolicy,
    Sample,
    ScrapeOutcome,
    Target,
    TargetHealth,
)
from scrapestack.core.registry import TargetRegistry
from scrapestack.scheduler import ScrapeScheduler

__all__ = [
    "ConfigError",
    "InMemorySeriesStore",
    "JobConfig",
    "RetentionPolicy",
    "SQLiteSeriesStore",
    "Sample",
    "ScrapeConfig",
    "ScrapeError",
    "ScrapeOutcome",
    "ScrapeScheduler",
    "ScrapestackError",
    "StaticConfig",
    "StoreError",
    "Target",
    "TargetHealth",
    "TargetRegistry",
    "__version__",
    "load_config",
]
