"""NDJSON encoder for raw sample export."""

import json
from collections.abc import AsyncIterable

from scrapestack.core.encoding.exposition import format_value
from scrapestack.core.models import Sample


def _sample_to_dict(sample: Sample) -> dict[str, object]:
    return {
        "name": sample.name,
        "timestamp": sample.timestamp,
        "value": format_value(sample.value),
        "labels": sample.labels,
    }


async def encode_samples_ndjson(samples: AsyncIterable[Sample]) -> str:
    """Encode samples to newline-delimited JSON.

    Values are rendered as strings so NaN and infinities stay valid JSON.

    Args:
        samples: An async iterable of Sample objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no samples.
    """
    lines = [json.dumps(_sample_to_dict(sample)) async for sample in samples]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
