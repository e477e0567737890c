"""Example FastAPI application embedding the scraper.

Run with:
    SCRAPESTACK_CONFIG=examples/prometheus.yml uvicorn examples.fastapi_example:app

Endpoints:
    /api/v1/query?query=<selector>              - latest sample per series
    /api/v1/query_range?query=<selector>&start= - samples in a time range
    /api/v1/series?match[]=<selector>           - matching series
    /api/v1/targets                             - target health
    /api/v1/export?since=<ts>                   - NDJSON export
    /metrics                                    - scrape health of each target
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from scrapestack.adapters.frameworks.fastapi import create_query_router
from scrapestack.adapters.storage import SQLiteSeriesStore
from scrapestack.config import load_config
from scrapestack.core.models import RetentionPolicy
from scrapestack.core.registry import TargetRegistry
from scrapestack.runtime.embedded import EmbeddedRuntime

config = load_config(os.environ.get("SCRAPESTACK_CONFIG", "prometheus.yml"))
registry = TargetRegistry.from_config(config)
store = SQLiteSeriesStore(os.environ.get("SCRAPESTACK_DATA", "data"))

# Keep a day of data; series silent for longer are dropped.
runtime = EmbeddedRuntime(
    config,
    store,
    registry,
    retention=RetentionPolicy(max_age_seconds=86400),
    cleanup_interval_seconds=300,
)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Open the store and start scraping on startup."""
    await store.open()
    await runtime.start()
    yield
    await runtime.stop()


app = FastAPI(title="Scrapestack Example", lifespan=lifespan)
app.include_router(create_query_router(store, registry))
