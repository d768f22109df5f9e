from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from ble_survey_engine.config_manager import ConfigManager
from ble_survey_engine.histogram import build_histogram
from ble_survey_engine.models import (
    BeaconObservation,
    MapPose,
    PointPosition,
    Sample,
    SurveyRecord,
)
from ble_survey_engine.reducer import compute_statistics

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def config(tmp_path, monkeypatch) -> ConfigManager:
    monkeypatch.setenv("BLE_PATH_DATA_ROOT", str(tmp_path / "data"))
    monkeypatch.setenv("BLE_PATH_BEACON_GEOMETRY", str(tmp_path / "beacon" / "geometry.csv"))
    return ConfigManager(str(tmp_path / "config" / "config.yaml"))


def _session(session_id: str, readings: dict[str, list[int]], start: datetime = T0, duration_s: float = 4.0) -> SurveyRecord:
    beacons = []
    for beacon_id in sorted(readings):
        values = readings[beacon_id]
        samples = (Sample(0, 0),) + tuple(Sample(100 * (i + 1), v) for i, v in enumerate(values)) + (Sample(4000, 0),)
        beacons.append(
            BeaconObservation(
                beacon_id=beacon_id,
                statistics=compute_statistics(values),
                samples=samples,
                histogram=build_histogram(values, -100, -30, 1),
            )
        )
    end = start + timedelta(seconds=duration_s)
    return SurveyRecord(
        record_id=f"rec-{session_id}",
        location_id="site-1",
        point_id="p",
        session_id=session_id,
        start_iso=start.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        end_iso=end.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        duration_s=duration_s,
        pose=MapPose(height_m=1.5, facing_deg=90.0),
        point=PointPosition(xy_px=(100.0, 300.0), xy_m=(2.0, 6.0)),
        beacons=tuple(beacons),
    )


@pytest.fixture
def make_session():
    return _session


def _window_payload(**overrides) -> str:
    payload = {
        "location_id": "site-1",
        "start_iso": "2025-03-01T12:00:00.000Z",
        "end_iso": "2025-03-01T12:00:04.000Z",
        "point": {"xy_px": [100, 300], "xy_m": [2.0, 6.0]},
        "pose": {"kind": "map", "height_m": 1.5},
        "pixels_per_meter": 50,
        "record_id": "r-1",
        "session_id": "s-1",
        "beacons": {
            "B1": {
                "samples": [[0, 0], [500, -70], [1000, -72], [1500, 0], [2000, -69], [2500, -71], [3000, -70], [4000, 0]],
                "meta": {"name": "Lobby"},
            },
            "B2": {"samples": [[0, 0], [4000, 0]]},
        },
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.fixture
def window_payload():
    return _window_payload
