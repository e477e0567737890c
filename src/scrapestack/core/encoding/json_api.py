"""JSON encoders for the query API responses.

Response bodies follow the ``{"status": ..., "data": ...}`` envelope that
dashboard datasources expect. Every successful query response carries an
explicit ``noData`` flag so consumers can tell "never scraped" apart from a
series whose value is zero.
"""

import json
from collections.abc import Sequence
from typing import Any

from scrapestack.core.encoding.exposition import format_value
from scrapestack.core.models import Sample, SeriesKey, Target


def _metric_labels(name: str, labels: dict[str, str]) -> dict[str, str]:
    return {"__name__": name, **labels}


def encode_vector(samples: Sequence[Sample]) -> str:
    """Encode an instant vector (one sample per series)."""
    result = [
        {
            "metric": _metric_labels(sample.name, sample.labels),
            "value": [sample.timestamp, format_value(sample.value)],
        }
        for sample in samples
    ]
    return _success({"resultType": "vector", "result": result})


def encode_matrix(samples: Sequence[Sample]) -> str:
    """Encode a range result, grouping samples into one entry per series.

    Samples are expected in series-then-timestamp order, as returned by
    SeriesStorePort.range().
    """
    grouped: dict[SeriesKey, dict[str, Any]] = {}
    for sample in samples:
        entry = grouped.get(sample.series_key)
        if entry is None:
            entry = {
                "metric": _metric_labels(sample.name, sample.labels),
                "values": [],
            }
            grouped[sample.series_key] = entry
        entry["values"].append([sample.timestamp, format_value(sample.value)])
    return _success({"resultType": "matrix", "result": list(grouped.values())})


def encode_series(keys: Sequence[SeriesKey]) -> str:
    """Encode the label sets of matching series."""
    data = [_metric_labels(name, dict(labels)) for name, labels in keys]
    return json.dumps({"status": "success", "data": data})


def encode_names(names: Sequence[str]) -> str:
    return json.dumps({"status": "success", "data": list(names)})


def target_to_dict(target: Target) -> dict[str, Any]:
    """Describe a target's identity and health for the targets listing."""
    return {
        "job": target.job,
        "instance": target.address,
        "scrapeUrl": target.url,
        "labels": target.series_labels,
        "health": target.health.value,
        "lastScrape": target.last_scrape,
        "lastError": target.last_error or "",
        "lastScrapeDuration": target.last_duration,
        "lastSamples": target.last_samples,
        "scrapeInterval": target.scrape_interval,
        "scrapeTimeout": target.scrape_timeout,
    }


def encode_targets(targets: Sequence[Target]) -> str:
    return json.dumps(
        {
            "status": "success",
            "data": {"activeTargets": [target_to_dict(t) for t in targets]},
        }
    )


def encode_error(error_type: str, message: str) -> str:
    return json.dumps({"status": "error", "errorType": error_type, "error": message})


def _success(data: dict[str, Any]) -> str:
    data["noData"] = not data["result"]
    return json.dumps({"status": "success", "data": data})
