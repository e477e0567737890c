"""Runtime wiring of scheduler, store and background maintenance."""

from scrapestack.runtime.embedded import EmbeddedRuntime

__all__ = ["EmbeddedRuntime"]
