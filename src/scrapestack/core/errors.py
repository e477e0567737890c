"""Exception hierarchy for scrapestack."""


class ScrapestackError(Exception):
    """Base class for all scrapestack errors."""


class ConfigError(ScrapestackError):
    """Configuration or target list could not be parsed or validated."""


class ScrapeError(ScrapestackError):
    """A single scrape failed (network, timeout, status or body)."""


class StoreError(ScrapestackError):
    """The series store could not open, read or write."""


class SelectorError(ValueError):
    """A query selector is malformed."""
