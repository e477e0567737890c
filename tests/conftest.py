"""Shared test fixtures for all test modules."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import httpx
import pytest

from scrapestack.adapters.storage.in_memory import InMemorySeriesStore
from scrapestack.config import ScrapeConfig, parse_config
from scrapestack.core.registry import TargetRegistry

GPU_EXPOSITION = """\
# HELP DCGM_FI_DEV_GPU_UTIL GPU utilization (in %).
# TYPE DCGM_FI_DEV_GPU_UTIL gauge
DCGM_FI_DEV_GPU_UTIL{gpu="0",UUID="GPU-aaaa"} 87
DCGM_FI_DEV_GPU_UTIL{gpu="1",UUID="GPU-bbbb"} 12
# HELP DCGM_FI_DEV_FB_USED Framebuffer memory used (in MiB).
# TYPE DCGM_FI_DEV_FB_USED gauge
DCGM_FI_DEV_FB_USED{gpu="0",UUID="GPU-aaaa"} 40211
"""

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def gpu_exposition() -> str:
    """Exposition body resembling a GPU exporter with three series."""
    return GPU_EXPOSITION


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Provide a temporary data directory for series store tests."""
    return tmp_path / "series-data"


@pytest.fixture
def store() -> InMemorySeriesStore:
    """Fixture providing an empty in-memory series store."""
    return InMemorySeriesStore()


@pytest.fixture
def make_config() -> Callable[..., ScrapeConfig]:
    """Factory fixture building a ScrapeConfig for one job.

    Usage:
        config = make_config(["a:9400", "b:9400"], interval="100ms")
    """

    def _make(
        targets: list[str],
        interval: str = "5s",
        timeout: str | None = None,
        job: str = "gpu",
        grace: str = "1s",
    ) -> ScrapeConfig:
        global_section: dict[str, str] = {
            "scrape_interval": interval,
            "shutdown_grace": grace,
        }
        if timeout is not None:
            global_section["scrape_timeout"] = timeout
        return parse_config(
            {
                "global": global_section,
                "scrape_configs": [
                    {"job_name": job, "static_configs": [{"targets": targets}]}
                ],
            }
        )

    return _make


@pytest.fixture
def make_registry(
    make_config: Callable[..., ScrapeConfig],
) -> Callable[..., tuple[ScrapeConfig, TargetRegistry]]:
    """Factory fixture returning (config, registry) for a target list."""

    def _make(targets: list[str], **kwargs: str) -> tuple[ScrapeConfig, TargetRegistry]:
        config = make_config(targets, **kwargs)
        return config, TargetRegistry.from_config(config)

    return _make


@pytest.fixture
def exporter_client() -> Callable[
    [dict[str, object]], tuple[httpx.AsyncClient, list[httpx.Request]]
]:
    """Factory fixture for an httpx client backed by fake exporters.

    Maps a host (as in ``host:port``) to either a body string, an
    ``httpx.Response`` or a handler callable. Unknown hosts fail with a
    connection error. Returns the client and the list of requests it saw.
    """

    def _make(
        exporters: dict[str, object],
    ) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            exporter = exporters.get(request.url.host)
            if exporter is None:
                raise httpx.ConnectError("connection refused", request=request)
            if isinstance(exporter, str):
                return httpx.Response(200, text=exporter)
            if isinstance(exporter, httpx.Response):
                return exporter
            result = exporter(request)  # type: ignore[operator]
            if asyncio.iscoroutine(result):
                result = await result
            return result

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client, requests

    return _make


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            app = create_asgi_app(store, registry)
            async with asgi_test_client(app) as client:
                response = await client.get("/api/v1/targets")
    """

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client


@pytest.fixture
async def closing_stores() -> AsyncGenerator[list]:
    """Collects stores that must be closed at the end of a test."""
    stores: list = []
    yield stores
    for opened in stores:
        await opened.close()
