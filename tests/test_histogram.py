from __future__ import annotations

import random

import pytest

from ble_survey_engine.errors import HistogramConfigError
from ble_survey_engine.histogram import build_histogram, empty_histogram, merge_histograms
from ble_survey_engine.models import EdgePolicy, Histogram, HistogramSpec


def test_scenario_bins() -> None:
    hist = build_histogram([-72, -71, -70, -69], -100, -30, 1)

    assert len(hist.counts) == 70
    assert hist.edge_policy is EdgePolicy.LEFT_INCLUSIVE
    assert [hist.counts[i] for i in (28, 29, 30, 31)] == [1, 1, 1, 1]
    assert hist.total == 4
    assert hist.underflow == 0 and hist.overflow == 0


def test_edges_are_left_inclusive() -> None:
    hist = build_histogram([-100, -31, -30, -101], -100, -30, 1)

    assert hist.counts[0] == 1
    assert hist.counts[69] == 1
    # 上界本身不属于任何分箱
    assert hist.overflow == 1
    assert hist.underflow == 1


def test_wide_bins() -> None:
    hist = build_histogram([-96, -95, -31], -100, -30, 5)

    assert len(hist.counts) == 14
    assert hist.counts[0] == 1
    assert hist.counts[1] == 1
    assert hist.counts[13] == 1
    assert hist.bin_edges()[:3] == [-100, -95, -90]


@pytest.mark.parametrize("seed", range(10))
def test_every_reading_is_classified_once(seed: int) -> None:
    rng = random.Random(seed)
    values = [rng.randint(-120, -10) for _ in range(rng.randint(0, 80))]
    hist = build_histogram(values, -100, -30, 2)

    assert sum(hist.counts) + hist.underflow + hist.overflow == len(values)
    assert hist.classified == len(values)


@pytest.mark.parametrize(
    "bin_min, bin_max, bin_size",
    [
        (-100, -30, 0),
        (-100, -30, -1),
        (-30, -100, 1),
        (-50, -50, 1),
        (-100, -30, 3),
    ],
)
def test_invalid_configuration_is_rejected(bin_min: int, bin_max: int, bin_size: int) -> None:
    with pytest.raises(HistogramConfigError):
        build_histogram([-70], bin_min, bin_max, bin_size)


def test_config_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        build_histogram([], -100, -30, 0)


def test_empty_readings_give_zero_counts() -> None:
    hist = empty_histogram(HistogramSpec())
    assert len(hist.counts) == 70
    assert hist.classified == 0


def test_merge_adds_counts() -> None:
    a = build_histogram([-70, -70, -120], -100, -30, 1)
    b = build_histogram([-70, -60, -20], -100, -30, 1)
    merged = merge_histograms(a, b)

    assert merged.counts[30] == 3
    assert merged.counts[40] == 1
    assert merged.underflow == 1
    assert merged.overflow == 1
    assert merge_histograms(a, None) is a


def test_merge_rejects_different_bins() -> None:
    a = build_histogram([-70], -100, -30, 1)
    b = build_histogram([-70], -100, -30, 5)
    with pytest.raises(HistogramConfigError):
        merge_histograms(a, b)


def test_dict_form() -> None:
    hist = build_histogram([-70], -100, -30, 10)
    d = hist.to_dict()

    assert d["edge_policy"] == "leftInclusive"
    assert d["counts"] == [0, 0, 0, 1, 0, 0, 0]
    assert Histogram.from_dict(d) == hist
