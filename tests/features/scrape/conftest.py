"""BDD step definitions for scraping scenarios."""

import asyncio
import itertools
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
from pytest_bdd import given, parsers, then, when

from scrapestack.adapters.frameworks.asgi import create_asgi_app
from scrapestack.adapters.storage.in_memory import InMemorySeriesStore
from scrapestack.adapters.storage.sqlite_series import SQLiteSeriesStore
from scrapestack.config import ScrapeConfig
from scrapestack.core.models import TargetHealth
from scrapestack.core.ports import SeriesStorePort
from scrapestack.core.registry import TargetRegistry
from scrapestack.scheduler import ScrapeScheduler

QUERY_TIME = 1_000_000.0


@dataclass
class ScrapeScenarioContext:
    """Shared state between steps in a scraping scenario."""

    config: ScrapeConfig | None = None
    registry: TargetRegistry | None = None
    store: Any = field(default_factory=InMemorySeriesStore)
    exporters: dict[str, object] = field(default_factory=dict)
    data_dir: Path | None = None


@pytest.fixture
def ctx() -> ScrapeScenarioContext:
    """Fresh scenario context for each test."""
    return ScrapeScenarioContext()


def run_async(coro: Any) -> Any:
    """Run a coroutine synchronously."""
    return asyncio.run(coro)


async def _hang(request: httpx.Request) -> httpx.Response:
    await asyncio.sleep(5)
    return httpx.Response(200, text="")


async def _get_json(
    store: SeriesStorePort, registry: TargetRegistry, path: str, **params: str
) -> Any:
    app = create_asgi_app(store, registry, clock=lambda: QUERY_TIME)
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        response = await client.get(path, params=params)
    assert response.status_code == 200, response.text
    return response.json()


# === Given ===
@given(parsers.parse('a scrape job "{job}" with targets "{first}" and "{second}"'))
def step_job(
    ctx: ScrapeScenarioContext,
    make_registry: Callable[..., tuple[ScrapeConfig, TargetRegistry]],
    job: str,
    first: str,
    second: str,
) -> None:
    ctx.config, ctx.registry = make_registry(
        [first, second], interval="1s", timeout="200ms", job=job
    )


@given("a persistent store")
def step_persistent_store(ctx: ScrapeScenarioContext, tmp_path: Path) -> None:
    ctx.data_dir = tmp_path / "series-data"
    ctx.store = SQLiteSeriesStore(ctx.data_dir, flush_threshold=1000)


@given(parsers.parse('target "{address}" exposes "{body}"'))
def step_exposes(ctx: ScrapeScenarioContext, address: str, body: str) -> None:
    host = address.rpartition(":")[0]
    ctx.exporters[host] = body + "\n"


@given(parsers.parse('target "{address}" never answers'))
def step_never_answers(ctx: ScrapeScenarioContext, address: str) -> None:
    ctx.exporters[address.rpartition(":")[0]] = _hang


# === When ===
@when(parsers.parse("every target is scraped {times:d} time(s)"))
def step_scrape(
    ctx: ScrapeScenarioContext,
    exporter_client: Callable[..., tuple[httpx.AsyncClient, list[httpx.Request]]],
    times: int,
) -> None:
    assert ctx.config is not None and ctx.registry is not None
    ticks = itertools.count()

    def clock() -> float:
        return 1000.0 + next(ticks)

    async def scrape() -> None:
        client, _ = exporter_client(ctx.exporters)
        scheduler = ScrapeScheduler(
            ctx.config, ctx.registry, ctx.store, client=client, clock=clock
        )
        try:
            for _ in range(times):
                await scheduler.scrape_all()
        finally:
            await client.aclose()

    run_async(scrape())


@when("the store is closed and reopened")
def step_reopen(ctx: ScrapeScenarioContext) -> None:
    assert ctx.data_dir is not None
    run_async(ctx.store.close())
    ctx.store = SQLiteSeriesStore(ctx.data_dir)


# === Then ===
@then(
    parsers.parse(
        'querying "{name}" returns {series:d} series with {samples:d} samples each'
    )
)
def step_range_query(
    ctx: ScrapeScenarioContext, name: str, series: int, samples: int
) -> None:
    assert ctx.registry is not None
    body = run_async(
        _get_json(
            ctx.store, ctx.registry, "/api/v1/query_range", query=name, start="0"
        )
    )
    result = body["data"]["result"]
    assert len(result) == series
    assert all(len(entry["values"]) == samples for entry in result)


@then(parsers.parse('target "{address}" is up'))
def step_target_up(ctx: ScrapeScenarioContext, address: str) -> None:
    assert ctx.registry is not None
    target = ctx.registry.get("gpu", address)
    assert target is not None
    assert target.health is TargetHealth.UP


@then(parsers.parse('target "{address}" is down with error containing "{text}"'))
def step_target_down(ctx: ScrapeScenarioContext, address: str, text: str) -> None:
    assert ctx.registry is not None
    body = run_async(_get_json(ctx.store, ctx.registry, "/api/v1/targets"))
    (entry,) = [
        t for t in body["data"]["activeTargets"] if t["instance"] == address
    ]
    assert entry["health"] == "down"
    assert text in entry["lastError"]


@then(parsers.parse('the instant query "{name}" has data'))
def step_has_data(ctx: ScrapeScenarioContext, name: str) -> None:
    assert ctx.registry is not None
    body = run_async(_get_json(ctx.store, ctx.registry, "/api/v1/query", query=name))
    assert body["data"]["noData"] is False
    assert all(r["value"][1] == "0.0" for r in body["data"]["result"])


@then(parsers.parse('the instant query "{name}" reports no data'))
def step_no_data(ctx: ScrapeScenarioContext, name: str) -> None:
    assert ctx.registry is not None
    body = run_async(_get_json(ctx.store, ctx.registry, "/api/v1/query", query=name))
    assert body["data"]["noData"] is True
    assert body["data"]["result"] == []
