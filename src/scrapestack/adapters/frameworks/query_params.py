"""Shared query parameter parsing utilities for framework adapters.

This module provides utilities for parsing and validating query parameters
that are common across the ASGI and FastAPI query surfaces.
"""

import math


def _first(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    if not values:
        return None
    return values[0]


def _parse_since_param(params: dict[str, list[str]]) -> float:
    """Parse and validate the 'since' query parameter.

    Args:
        params: Parsed query string parameters (as returned by urllib.parse.parse_qs).

    Returns:
        Timestamp as float, defaulting to 0.0 if invalid or missing.
        Rejects negative, NaN, and infinite values, returning 0.0 for these cases.
    """
    try:
        value = float(_first(params, "since") or "0")
    except ValueError:
        return 0.0
    if value < 0 or not math.isfinite(value):
        return 0.0
    return value


def _parse_time_param(
    params: dict[str, list[str]], name: str, default: float | None = None
) -> float:
    """Parse a required (or defaulted) timestamp parameter.

    Raises:
        ValueError: If the parameter is missing without a default, or is not
            a finite number.
    """
    raw = _first(params, name)
    if raw is None or raw == "":
        if default is None:
            raise ValueError(f"missing parameter {name!r}")
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"invalid parameter {name!r}: {raw!r}") from None
    if not math.isfinite(value):
        raise ValueError(f"invalid parameter {name!r}: {raw!r}")
    return value


def _parse_query_param(params: dict[str, list[str]]) -> str:
    """Return the 'query' selector parameter.

    Raises:
        ValueError: If it is missing or blank.
    """
    raw = _first(params, "query")
    if raw is None or not raw.strip():
        raise ValueError("missing parameter 'query'")
    return raw


def _parse_match_params(params: dict[str, list[str]]) -> list[str]:
    """Return every 'match[]' / 'match' selector.

    Raises:
        ValueError: If none is given.
    """
    matches = [m for m in params.get("match[]", []) + params.get("match", []) if m]
    if not matches:
        raise ValueError("at least one 'match[]' selector is required")
    return matches
