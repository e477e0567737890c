"""ASGI generic adapter for the query surface.

This adapter provides a framework-agnostic ASGI application that can be used
with any ASGI server (uvicorn, hypercorn, daphne) without requiring FastAPI
as a dependency.
"""

import time
from collections.abc import Callable, Coroutine
from typing import Any
from urllib.parse import parse_qs

from scrapestack.adapters.frameworks.query_api import QueryAPI
from scrapestack.core.ports import SeriesStorePort, TargetSourcePort

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]


def _parse_query_params(scope: Scope) -> dict[str, list[str]]:
    """Parse query string from ASGI scope into parameter dictionary.

    Args:
        scope: ASGI scope dictionary containing request metadata.

    Returns:
        Dictionary mapping parameter names to lists of values.
        Returns empty dict if query_string is missing or empty.
    """
    query_string = scope.get("query_string", b"").decode(errors="replace")
    return parse_qs(query_string)


async def _send_response(
    send: Send, status: int, content_type: str, body: str, head: bool = False
) -> None:
    """Send an HTTP response with headers and body.

    Args:
        send: ASGI send callable for writing response.
        status: HTTP status code.
        content_type: Content-Type header value.
        body: Response body as string (will be encoded to bytes).
        head: Send headers only, as for a HEAD request.
    """
    payload = body.encode()
    headers = [
        (b"content-type", content_type.encode()),
        (b"content-length", str(len(payload)).encode()),
    ]
    await send({"type": "http.response.start", "status": status, "headers": headers})
    await send({"type": "http.response.body", "body": b"" if head else payload})


def create_asgi_app(
    store: SeriesStorePort,
    targets: TargetSourcePort,
    clock: Callable[[], float] = time.time,
) -> ASGIApp:
    """Create a read-only ASGI app exposing queries and target health.

    Args:
        store: Series store implementing SeriesStorePort.
        targets: Target source whose health is listed under /api/v1/targets.
        clock: Wall-clock used as the default query evaluation time.

    Returns:
        ASGI application callable.
    """
    api = QueryAPI(store, targets, clock=clock)

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            return

        method = scope.get("method", "GET")
        if method not in ("GET", "HEAD"):
            await _send_response(send, 405, "text/plain", "Method Not Allowed")
            return

        reply = await api.handle(scope["path"], _parse_query_params(scope))
        await _send_response(
            send, reply.status, reply.content_type, reply.body, head=method == "HEAD"
        )

    return app
