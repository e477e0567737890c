"""Core domain models for scraped metrics and scrape targets."""

from dataclasses import dataclass, field
from enum import Enum

SeriesKey = tuple[str, tuple[tuple[str, str], ...]]


def series_key(name: str, labels: dict[str, str]) -> SeriesKey:
    """Build the hashable identity of a series from its name and labels."""
    return (name, tuple(sorted(labels.items())))


class TargetHealth(Enum):
    """Health of a target as observed by its most recent scrape."""

    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"


@dataclass(frozen=True)
class Sample:
    """A single scraped metric measurement.

    Attributes:
        name: Metric name (e.g., DCGM_FI_DEV_GPU_UTIL).
        timestamp: Unix timestamp in seconds of the scrape that produced it.
        value: The metric value.
        labels: Key-value pairs that, with the name, identify the series.
    """

    name: str
    timestamp: float
    value: float
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def series_key(self) -> SeriesKey:
        return series_key(self.name, self.labels)


@dataclass(frozen=True)
class ScrapeOutcome:
    """Result of one scrape attempt against a target.

    Attributes:
        timestamp: Unix timestamp at which the scrape started.
        duration: Seconds spent on the request and parsing.
        error: Error text, or None when the scrape succeeded.
        samples: Number of samples appended to the store.
        store_error: Error text when the scrape succeeded but the store
            rejected the batch.
    """

    timestamp: float
    duration: float
    error: str | None = None
    samples: int = 0
    store_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(eq=False)
class Target:
    """A network endpoint exposing metrics for scraping.

    Only the registry mutates the health fields, via TargetRegistry.mark().
    """

    address: str
    job: str
    scheme: str = "http"
    metrics_path: str = "/metrics"
    labels: dict[str, str] = field(default_factory=dict)
    scrape_interval: float = 5.0
    scrape_timeout: float = 5.0
    health: TargetHealth = TargetHealth.UNKNOWN
    last_scrape: float | None = None
    last_error: str | None = None
    last_duration: float | None = None
    last_samples: int = 0

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.address}{self.metrics_path}"

    @property
    def key(self) -> tuple[str, str]:
        return (self.job, self.address)

    @property
    def series_labels(self) -> dict[str, str]:
        """Labels attached to every sample scraped from this target."""
        return {"job": self.job, "instance": self.address, **self.labels}


@dataclass(frozen=True)
class RetentionPolicy:
    """Whole-series expiry policy for a series store.

    Attributes:
        max_age_seconds: A series is removed once its newest sample is older
            than this. None disables expiry.
    """

    max_age_seconds: float | None = None

    @property
    def enabled(self) -> bool:
        return self.max_age_seconds is not None
