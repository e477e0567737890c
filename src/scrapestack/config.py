"""Scrape configuration loading and validation.

Configuration is read from a YAML file shaped like ``prometheus.yml``::

    global:
      scrape_interval: 5s
    scrape_configs:
      - job_name: gpu
        static_configs:
          - targets: ["dcgm-exporter:9400"]

and turned into an immutable ScrapeConfig that is handed to the registry and
scheduler at construction.
"""

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from scrapestack.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_INTERVAL = 5.0
DEFAULT_SCRAPE_TIMEOUT = 10.0
DEFAULT_SHUTDOWN_GRACE = 5.0
DEFAULT_METRICS_PATH = "/metrics"
SUPPORTED_SCHEMES = ("http", "https")

_DURATION = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h|d)$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}
_LABEL_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_RESERVED_LABELS = frozenset({"job", "instance", "__name__"})


@dataclass(frozen=True)
class StaticConfig:
    """A static group of targets sharing extra labels."""

    targets: tuple[str, ...]
    labels: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobConfig:
    """One scrape job.

    Attributes:
        job_name: Value of the ``job`` label on every scraped series.
        scrape_interval: Seconds between scrapes of each target.
        scrape_timeout: Per-scrape timeout in seconds.
        metrics_path: HTTP path to fetch from each target.
        scheme: ``http`` or ``https``.
        static_configs: Target groups of the job.
    """

    job_name: str
    scrape_interval: float
    scrape_timeout: float
    metrics_path: str = DEFAULT_METRICS_PATH
    scheme: str = "http"
    static_configs: tuple[StaticConfig, ...] = ()


@dataclass(frozen=True)
class ScrapeConfig:
    """Immutable top-level scrape configuration."""

    scrape_interval: float = DEFAULT_SCRAPE_INTERVAL
    scrape_timeout: float = min(DEFAULT_SCRAPE_TIMEOUT, DEFAULT_SCRAPE_INTERVAL)
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE
    jobs: tuple[JobConfig, ...] = ()


def parse_duration(value: Any, field_name: str) -> float:
    """Parse a duration such as ``5s``, ``500ms``, ``1m`` or a bare number.

    Raises:
        ConfigError: If the value is not a positive duration.
    """
    if isinstance(value, bool):
        raise ConfigError(f"{field_name}: invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION.match(value.strip())
        if match is None:
            raise ConfigError(f"{field_name}: invalid duration {value!r}")
        seconds = float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    else:
        raise ConfigError(f"{field_name}: invalid duration {value!r}")
    if not math.isfinite(seconds) or seconds <= 0:
        raise ConfigError(f"{field_name}: duration must be positive, got {value!r}")
    return seconds


def _resolve_timeout(
    interval: float, timeout_raw: Any, default_timeout: float, where: str
) -> float:
    """Resolve a scrape timeout against its interval.

    An unset timeout defaults to ``default_timeout`` clamped to the interval.
    An explicit timeout longer than the interval is rejected.
    """
    if timeout_raw is None:
        return min(default_timeout, interval)
    timeout = parse_duration(timeout_raw, f"{where}.scrape_timeout")
    if timeout > interval:
        raise ConfigError(
            f"{where}: scrape_timeout ({timeout}s) greater than "
            f"scrape_interval ({interval}s)"
        )
    return timeout


def _parse_labels(raw: Any, where: str) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where}.labels must be a mapping")
    labels: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not _LABEL_NAME.match(key):
            raise ConfigError(f"{where}.labels: invalid label name {key!r}")
        if key in _RESERVED_LABELS:
            raise ConfigError(f"{where}.labels: label {key!r} is reserved")
        labels[key] = str(value)
    return labels


def _parse_static_config(raw: Any, where: str) -> StaticConfig:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    targets = raw.get("targets")
    if not isinstance(targets, list) or not targets:
        raise ConfigError(f"{where}.targets must be a non-empty list")
    for target in targets:
        if not isinstance(target, str):
            raise ConfigError(f"{where}.targets: {target!r} is not a string")
    return StaticConfig(
        targets=tuple(t.strip() for t in targets),
        labels=_parse_labels(raw.get("labels"), where),
    )


def _parse_job(
    raw: Any, index: int, global_interval: float, global_timeout: float | None
) -> JobConfig:
    where = f"scrape_configs[{index}]"
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{where} must be a mapping")
    job_name = raw.get("job_name")
    if not isinstance(job_name, str) or not job_name.strip():
        raise ConfigError(f"{where}.job_name is required")
    where = f"job {job_name!r}"

    if "scrape_interval" in raw:
        interval = parse_duration(raw["scrape_interval"], f"{where}.scrape_interval")
    else:
        interval = global_interval
    timeout_raw = raw.get("scrape_timeout")
    if timeout_raw is None and global_timeout is not None:
        timeout = min(global_timeout, interval)
    else:
        timeout = _resolve_timeout(
            interval, timeout_raw, DEFAULT_SCRAPE_TIMEOUT, where
        )

    metrics_path = raw.get("metrics_path", DEFAULT_METRICS_PATH)
    if not isinstance(metrics_path, str) or not metrics_path.startswith("/"):
        raise ConfigError(f"{where}.metrics_path must start with '/'")
    scheme = raw.get("scheme", "http")
    if scheme not in SUPPORTED_SCHEMES:
        raise ConfigError(f"{where}.scheme must be one of {SUPPORTED_SCHEMES}")

    statics_raw = raw.get("static_configs", [])
    if not isinstance(statics_raw, list):
        raise ConfigError(f"{where}.static_configs must be a list")
    static_configs = tuple(
        _parse_static_config(s, f"{where}.static_configs[{i}]")
        for i, s in enumerate(statics_raw)
    )
    return JobConfig(
        job_name=job_name.strip(),
        scrape_interval=interval,
        scrape_timeout=timeout,
        metrics_path=metrics_path,
        scheme=scheme,
        static_configs=static_configs,
    )


def parse_config(raw: Any) -> ScrapeConfig:
    """Build a ScrapeConfig from an already-decoded mapping.

    Raises:
        ConfigError: If any part of the configuration is invalid.
    """
    if raw is None:
        raise ConfigError("configuration is empty")
    if not isinstance(raw, Mapping):
        raise ConfigError("configuration must be a mapping")

    global_raw = raw.get("global") or {}
    if not isinstance(global_raw, Mapping):
        raise ConfigError("global must be a mapping")
    interval = parse_duration(
        global_raw.get("scrape_interval", DEFAULT_SCRAPE_INTERVAL),
        "global.scrape_interval",
    )
    timeout = _resolve_timeout(
        interval, global_raw.get("scrape_timeout"), DEFAULT_SCRAPE_TIMEOUT, "global"
    )
    explicit_global_timeout = (
        timeout if global_raw.get("scrape_timeout") is not None else None
    )
    grace = parse_duration(
        global_raw.get("shutdown_grace", DEFAULT_SHUTDOWN_GRACE),
        "global.shutdown_grace",
    )

    jobs_raw = raw.get("scrape_configs") or []
    if not isinstance(jobs_raw, list):
        raise ConfigError("scrape_configs must be a list")
    jobs: list[JobConfig] = []
    seen: set[str] = set()
    for index, job_raw in enumerate(jobs_raw):
        job = _parse_job(job_raw, index, interval, explicit_global_timeout)
        if job.job_name in seen:
            raise ConfigError(f"duplicate job_name {job.job_name!r}")
        seen.add(job.job_name)
        jobs.append(job)

    return ScrapeConfig(
        scrape_interval=interval,
        scrape_timeout=timeout,
        shutdown_grace=grace,
        jobs=tuple(jobs),
    )


def load_config(path: str | Path) -> ScrapeConfig:
    """Load and validate a YAML scrape configuration file.

    Raises:
        ConfigError: If the file is missing, unparsable or invalid.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read config file {config_path}: {e}") from e
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e
    config = parse_config(raw)
    logger.info(
        "Loaded %d scrape job(s) from %s", len(config.jobs), config_path
    )
    return config
