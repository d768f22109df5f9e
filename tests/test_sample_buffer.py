from __future__ import annotations

from datetime import timedelta

import pytest

from ble_survey_engine.models import BeaconMeta, Sample
from ble_survey_engine.sample_buffer import CollectionWindow, SampleBuffer


def test_gap_markers_are_kept_but_excluded_from_readings() -> None:
    buf = SampleBuffer("B1")
    for ms, dbm in [(0, -70), (100, -72), (200, -69), (300, 0), (400, -71)]:
        buf.append(ms, dbm)

    assert len(buf) == 5
    assert buf.readings() == [-70, -72, -69, -71]
    assert buf.reading_count == 4
    assert Sample(300, 0) in buf.samples
    assert buf.samples[3].is_gap


def test_out_of_order_arrivals_are_time_ordered() -> None:
    buf = SampleBuffer("B1")
    buf.append(300, -60)
    buf.append(100, -61)
    buf.append(200, -62)
    buf.append(200, -63)

    assert [s.offset_ms for s in buf.samples] == [100, 200, 200, 300]
    # 同一时刻保持到达顺序
    assert [s.signal_dbm for s in buf.samples if s.offset_ms == 200] == [-62, -63]


def test_negative_offset_rejected() -> None:
    with pytest.raises(ValueError):
        SampleBuffer("B1").append(-1, -70)


def test_window_bookends_each_beacon(t0) -> None:
    window = CollectionWindow(start=t0)
    assert window.ingest("B1", -70, 150)
    assert window.ingest("B1", -71, 250)
    assert window.ingest("B2", -80, 900)
    window.close(t0 + timedelta(seconds=3.5))

    b1 = window.buffers()["B1"].samples
    assert b1[0] == Sample(0, 0)
    assert b1[-1] == Sample(3500, 0)
    assert window.buffers()["B2"].readings() == [-80]
    assert window.duration_s == pytest.approx(3.5)


def test_window_drops_invalid_and_late_readings(t0) -> None:
    window = CollectionWindow(start=t0)
    assert not window.ingest("B1", 0, 10)
    assert not window.ingest("B1", 5, 20)
    assert len(window) == 0

    window.ingest("B1", -70, 30)
    window.close(t0 + timedelta(seconds=1))
    assert not window.ingest("B1", -70, 40)
    assert window.buffers()["B1"].readings() == [-70]


def test_window_add_samples_keeps_delivered_sequence(t0) -> None:
    window = CollectionWindow(start=t0)
    window.add_samples("B1", [(0, 0), (100, -70), (200, 0)])
    window.set_meta("B1", BeaconMeta(name="Lobby", model="BC04P", tx_power_dbm=-4))
    window.close(t0 + timedelta(seconds=1), bookend=False)

    assert window.buffers()["B1"].samples == (Sample(0, 0), Sample(100, -70), Sample(200, 0))
    assert window.meta("B1").model == "BC04P"
    assert window.meta("B2") is None
