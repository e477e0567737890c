"""Integration tests for the FastAPI query router."""

import pytest
from fastapi import FastAPI

from scrapestack.adapters.frameworks.fastapi import create_query_router
from scrapestack.adapters.storage.in_memory import InMemorySeriesStore
from scrapestack.core.models import Sample
from scrapestack.core.registry import TargetRegistry

pytestmark = [pytest.mark.tier(2), pytest.mark.asgi]


@pytest.fixture
async def app() -> FastAPI:
    store = InMemorySeriesStore()
    await store.append(
        [
            Sample(name="up", timestamp=100.0, value=1.0, labels={"instance": "a:1"}),
            Sample(name="up", timestamp=100.0, value=0.0, labels={"instance": "b:1"}),
        ]
    )
    app = FastAPI()
    router = create_query_router(store, TargetRegistry(), clock=lambda: 200.0)
    app.include_router(router)
    return app


class TestFastAPIRouter:
    async def test_instant_query(self, asgi_test_client, app: FastAPI) -> None:
        async with asgi_test_client(app) as client:
            response = await client.get("/api/v1/query", params={"query": "up"})

        assert response.status_code == 200
        assert len(response.json()["data"]["result"]) == 2

    async def test_repeated_match_params(
        self, asgi_test_client, app: FastAPI
    ) -> None:
        async with asgi_test_client(app) as client:
            response = await client.get(
                "/api/v1/series",
                params=[
                    ("match[]", 'up{instance="a:1"}'),
                    ("match[]", 'up{instance="b:1"}'),
                ],
            )

        assert [s["instance"] for s in response.json()["data"]] == ["a:1", "b:1"]

    async def test_bad_selector(self, asgi_test_client, app: FastAPI) -> None:
        async with asgi_test_client(app) as client:
            response = await client.get("/api/v1/query", params={"query": "up{"})

        assert response.status_code == 400
        assert response.json()["errorType"] == "bad_data"

    async def test_empty_targets(self, asgi_test_client, app: FastAPI) -> None:
        async with asgi_test_client(app) as client:
            response = await client.get("/api/v1/targets")

        assert response.json() == {"status": "success", "data": {"activeTargets": []}}

    async def test_self_metrics_content_type(
        self, asgi_test_client, app: FastAPI
    ) -> None:
        async with asgi_test_client(app) as client:
            response = await client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
