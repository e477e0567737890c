"""FastAPI adapter for the query surface."""

import time
from collections.abc import Callable

from fastapi import APIRouter, Request, Response

from scrapestack.adapters.frameworks.query_api import QueryAPI
from scrapestack.core.ports import SeriesStorePort, TargetSourcePort


def create_query_router(
    store: SeriesStorePort,
    targets: TargetSourcePort,
    clock: Callable[[], float] = time.time,
) -> APIRouter:
    """Create a FastAPI router with the query and target endpoints.

    Args:
        store: Series store implementing SeriesStorePort.
        targets: Target source whose health is listed under /api/v1/targets.
        clock: Wall-clock used as the default query evaluation time.

    Returns:
        APIRouter serving the same paths as create_asgi_app().
    """
    api = QueryAPI(store, targets, clock=clock)
    router = APIRouter()

    def _endpoint(path: str) -> Callable[[Request], object]:
        async def endpoint(request: Request) -> Response:
            params = {
                key: request.query_params.getlist(key)
                for key in request.query_params.keys()
            }
            reply = await api.handle(path, params)
            return Response(
                content=reply.body,
                status_code=reply.status,
                media_type=reply.content_type,
            )

        return endpoint

    for path in api.routes:
        router.add_api_route(path, _endpoint(path), methods=["GET"])

    return router
