"""Framework-neutral read API over the series store and target registry.

Both the generic ASGI app and the FastAPI router delegate to QueryAPI so the
two surfaces answer identically. Every handler returns a Reply; errors are
mapped to HTTP statuses here:

- malformed selector or parameter: 400 ``bad_data``
- StoreError while reading: 503 ``degraded``
- anything else: 500, logged with traceback
"""

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from scrapestack.adapters.frameworks.query_params import (
    _parse_match_params,
    _parse_query_param,
    _parse_since_param,
    _parse_time_param,
)
from scrapestack.core.encoding import json_api
from scrapestack.core.encoding.exposition import encode_samples, parse_selector
from scrapestack.core.encoding.ndjson import encode_samples_ndjson
from scrapestack.core.errors import StoreError
from scrapestack.core.models import Sample, SeriesKey, TargetHealth
from scrapestack.core.ports import SeriesStorePort, TargetSourcePort

logger = logging.getLogger(__name__)

JSON = "application/json"
NDJSON = "application/x-ndjson"
EXPOSITION = "text/plain; version=0.0.4; charset=utf-8"

Params = dict[str, list[str]]


@dataclass(frozen=True)
class Reply:
    """An HTTP response produced by a query handler."""

    status: int
    content_type: str
    body: str


_SELF_METRIC_TYPES = {
    "up": "gauge",
    "scrape_duration_seconds": "gauge",
    "scrape_samples_scraped": "gauge",
}
_SELF_METRIC_HELP = {
    "up": "1 if the last scrape of the target succeeded, 0 otherwise.",
    "scrape_duration_seconds": "Duration of the last scrape of the target.",
    "scrape_samples_scraped": "Samples stored by the last scrape of the target.",
}


class QueryAPI:
    """Read-only query handlers.

    Args:
        store: Series store to query.
        targets: Target source whose health is reported.
        clock: Wall-clock used as the default evaluation time.
    """

    def __init__(
        self,
        store: SeriesStorePort,
        targets: TargetSourcePort,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._targets = targets
        self._clock = clock
        self.routes: dict[str, Callable[[Params], Awaitable[Reply]]] = {
            "/api/v1/query": self.query,
            "/api/v1/query_range": self.query_range,
            "/api/v1/series": self.series,
            "/api/v1/label/__name__/values": self.names,
            "/api/v1/targets": self.targets,
            "/api/v1/export": self.export,
            "/metrics": self.self_metrics,
            "/-/healthy": self.healthy,
        }

    async def handle(self, path: str, params: Params) -> Reply:
        """Dispatch a GET request to its handler with error mapping."""
        handler = self.routes.get(path)
        if handler is None:
            return Reply(404, "text/plain", "Not Found")
        try:
            return await handler(params)
        except StoreError as e:
            logger.warning("Degraded read on %s: %s", path, e)
            return Reply(503, JSON, json_api.encode_error("degraded", str(e)))
        except ValueError as e:
            return Reply(400, JSON, json_api.encode_error("bad_data", str(e)))
        except Exception:
            logger.exception("Error handling %s", path)
            return Reply(500, JSON, '{"error": "Internal Server Error"}')

    async def query(self, params: Params) -> Reply:
        name, selector = parse_selector(_parse_query_param(params))
        at = _parse_time_param(params, "time", default=self._clock())
        samples = await self._store.latest(name, selector, at)
        return Reply(200, JSON, json_api.encode_vector(samples))

    async def query_range(self, params: Params) -> Reply:
        name, selector = parse_selector(_parse_query_param(params))
        start = _parse_time_param(params, "start")
        end = _parse_time_param(params, "end", default=self._clock())
        if start > end:
            raise ValueError("'end' must not be before 'start'")
        samples = await self._store.range(name, selector, start, end)
        return Reply(200, JSON, json_api.encode_matrix(samples))

    async def series(self, params: Params) -> Reply:
        keys: dict[SeriesKey, None] = {}
        for match in _parse_match_params(params):
            name, selector = parse_selector(match)
            for key in await self._store.series(name, selector):
                keys[key] = None
        return Reply(200, JSON, json_api.encode_series(sorted(keys)))

    async def names(self, params: Params) -> Reply:
        return Reply(200, JSON, json_api.encode_names(await self._store.names()))

    async def targets(self, params: Params) -> Reply:
        return Reply(200, JSON, json_api.encode_targets(self._targets.all()))

    async def export(self, params: Params) -> Reply:
        since = _parse_since_param(params)
        body = await encode_samples_ndjson(self._store.read(since=since))
        return Reply(200, NDJSON, body)

    async def self_metrics(self, params: Params) -> Reply:
        """Expose per-target scrape health in exposition format."""
        by_name: dict[str, list[Sample]] = {name: [] for name in _SELF_METRIC_TYPES}
        for target in self._targets.all():
            if target.health is TargetHealth.UNKNOWN or target.last_scrape is None:
                continue
            labels = target.series_labels
            values = {
                "up": 1.0 if target.health is TargetHealth.UP else 0.0,
                "scrape_duration_seconds": target.last_duration or 0.0,
                "scrape_samples_scraped": float(target.last_samples),
            }
            for name, value in values.items():
                by_name[name].append(
                    Sample(
                        name=name,
                        timestamp=target.last_scrape,
                        value=value,
                        labels=dict(labels),
                    )
                )
        samples = [s for name in _SELF_METRIC_TYPES for s in by_name[name]]
        body = encode_samples(
            samples, types=_SELF_METRIC_TYPES, help_text=_SELF_METRIC_HELP
        )
        return Reply(200, EXPOSITION, body)

    async def healthy(self, params: Params) -> Reply:
        return Reply(200, "text/plain", "scrapestack is Healthy.\n")
