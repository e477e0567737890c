"""Static target registry."""

import logging
import re

from scrapestack.config import ScrapeConfig
from scrapestack.core.errors import ConfigError
from scrapestack.core.models import ScrapeOutcome, Target, TargetHealth

logger = logging.getLogger(__name__)

_HOST = re.compile(r"^(\[[0-9a-fA-F:.]+\]|[A-Za-z0-9_.-]+)$")


def validate_address(address: str) -> str:
    """Validate a ``host:port`` target address.

    Returns:
        The address, stripped of surrounding whitespace.

    Raises:
        ConfigError: If the address has no port, an invalid port or host, or
            carries a scheme or path.
    """
    address = address.strip()
    if not address:
        raise ConfigError("empty target address")
    if "://" in address or "/" in address:
        raise ConfigError(
            f"target {address!r} must be host:port without scheme or path"
        )
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        raise ConfigError(f"target {address!r} is missing a port")
    if not _HOST.match(host):
        raise ConfigError(f"target {address!r} has an invalid host")
    if not port.isdigit() or not 1 <= int(port) <= 65535:
        raise ConfigError(f"target {address!r} has an invalid port")
    return address


class TargetRegistry:
    """Holds the set of scrape targets and their health.

    Targets are created at load and never removed during a run. The
    scheduler reports scrape outcomes through mark(); the query surface reads
    the same Target objects through all().
    """

    def __init__(self) -> None:
        self._targets: dict[tuple[str, str], Target] = {}

    @classmethod
    def from_config(cls, config: ScrapeConfig) -> "TargetRegistry":
        """Create a registry populated from a scrape configuration."""
        registry = cls()
        registry.load(config)
        return registry

    def load(self, config: ScrapeConfig) -> set[Target]:
        """Create targets for every static target of every job.

        Returns:
            The set of targets added by this call.

        Raises:
            ConfigError: If an address is malformed or listed twice in a job.
        """
        added: list[Target] = []
        for job in config.jobs:
            for static in job.static_configs:
                for raw_address in static.targets:
                    target = Target(
                        address=validate_address(raw_address),
                        job=job.job_name,
                        scheme=job.scheme,
                        metrics_path=job.metrics_path,
                        labels=dict(static.labels),
                        scrape_interval=job.scrape_interval,
                        scrape_timeout=job.scrape_timeout,
                    )
                    self.add(target)
                    added.append(target)
        logger.info("Registered %d target(s)", len(added))
        return set(added)

    def add(self, target: Target) -> None:
        """Register a single target.

        Raises:
            ConfigError: If a target with the same job and address exists.
        """
        if target.key in self._targets:
            raise ConfigError(
                f"duplicate target {target.address!r} in job {target.job!r}"
            )
        self._targets[target.key] = target

    def all(self) -> list[Target]:
        """Return every target in registration order."""
        return list(self._targets.values())

    def get(self, job: str, address: str) -> Target | None:
        return self._targets.get((job, address))

    def mark(self, target: Target, outcome: ScrapeOutcome) -> None:
        """Update a target's health from a scrape outcome."""
        previous = target.health
        target.health = TargetHealth.UP if outcome.ok else TargetHealth.DOWN
        target.last_scrape = outcome.timestamp
        target.last_error = outcome.error or outcome.store_error
        target.last_duration = outcome.duration
        target.last_samples = outcome.samples
        if previous is not target.health:
            logger.info(
                "Target %s (job=%s) is now %s",
                target.address,
                target.job,
                target.health.value,
            )

    def __len__(self) -> int:
        return len(self._targets)
