"""Tests for core domain models, port helpers and series utilities."""

import pytest

from scrapestack.adapters.storage.series_utils import check_append_order, most_recent
from scrapestack.core.errors import StoreError
from scrapestack.core.models import (
    RetentionPolicy,
    Sample,
    ScrapeOutcome,
    Target,
    series_key,
)
from scrapestack.core.ports import matches_selector

pytestmark = [pytest.mark.tier(1), pytest.mark.core]


class TestSample:
    """Tests for the Sample model."""

    def test_sample_is_immutable(self) -> None:
        sample = Sample(name="up", timestamp=1.0, value=1.0)
        with pytest.raises(AttributeError):
            sample.value = 2.0  # type: ignore[misc]

    def test_series_key_ignores_label_order(self) -> None:
        a = Sample(name="m", timestamp=1, value=1, labels={"x": "1", "y": "2"})
        b = Sample(name="m", timestamp=2, value=3, labels={"y": "2", "x": "1"})
        assert a.series_key == b.series_key == series_key("m", {"x": "1", "y": "2"})

    def test_name_is_part_of_identity(self) -> None:
        assert series_key("a", {}) != series_key("b", {})


class TestTarget:
    """Tests for the Target model."""

    def test_url(self) -> None:
        target = Target(
            address="dcgm-exporter:9400",
            job="gpu",
            scheme="https",
            metrics_path="/stats",
        )
        assert target.url == "https://dcgm-exporter:9400/stats"

    def test_targets_are_hashable_by_identity(self) -> None:
        a = Target(address="a:1", job="gpu")
        b = Target(address="a:1", job="gpu")
        assert len({a, b}) == 2
        assert a.key == b.key == ("gpu", "a:1")

    def test_series_labels_include_static_labels(self) -> None:
        target = Target(address="a:1", job="gpu", labels={"rack": "r7"})
        assert target.series_labels == {"job": "gpu", "instance": "a:1", "rack": "r7"}


class TestScrapeOutcome:
    def test_ok_depends_on_scrape_error_only(self) -> None:
        assert ScrapeOutcome(timestamp=1, duration=0).ok
        assert ScrapeOutcome(timestamp=1, duration=0, store_error="disk").ok
        assert not ScrapeOutcome(timestamp=1, duration=0, error="refused").ok


class TestRetentionPolicy:
    def test_disabled_by_default(self) -> None:
        assert not RetentionPolicy().enabled
        assert RetentionPolicy(max_age_seconds=60).enabled


class TestMatchesSelector:
    """Tests for label superset matching."""

    @pytest.mark.parametrize(
        ("selector", "expected"),
        [
            (None, True),
            ({}, True),
            ({"gpu": "0"}, True),
            ({"gpu": "0", "job": "gpu"}, True),
            ({"gpu": "1"}, False),
            ({"missing": ""}, False),
        ],
    )
    def test_matches(self, selector: dict[str, str] | None, expected: bool) -> None:
        labels = {"gpu": "0", "job": "gpu"}
        assert matches_selector(labels, selector) is expected

    def test_accepts_label_pairs(self) -> None:
        assert matches_selector((("gpu", "0"),), {"gpu": "0"})


class TestSeriesUtils:
    """Tests for helpers shared by store adapters."""

    def test_check_append_order_returns_new_heads(self) -> None:
        samples = [
            Sample(name="m", timestamp=5, value=1),
            Sample(name="m", timestamp=6, value=1),
            Sample(name="n", timestamp=1, value=1),
        ]
        heads = check_append_order(samples, lambda key: None)
        assert heads == {("m", ()): 6, ("n", ()): 1}

    def test_check_append_order_rejects_regression_within_batch(self) -> None:
        samples = [
            Sample(name="m", timestamp=6, value=1),
            Sample(name="m", timestamp=5, value=1),
        ]
        with pytest.raises(StoreError):
            check_append_order(samples, lambda key: None)

    def test_check_append_order_consults_stored_head(self) -> None:
        with pytest.raises(StoreError):
            check_append_order(
                [Sample(name="m", timestamp=4, value=1)], lambda key: 5.0
            )

    def test_most_recent_prefers_first_on_tie(self) -> None:
        first = Sample(name="m", timestamp=5, value=1, labels={"a": "1"})
        second = Sample(name="m", timestamp=5, value=2, labels={"a": "2"})
        assert most_recent([first, second]) is first
        assert most_recent([]) is None
