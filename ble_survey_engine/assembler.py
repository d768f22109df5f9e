from __future__ import annotations

import logging
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Sequence, Tuple

from .codec import to_iso8601
from .distance_kit import (
    combined_distance_metric,
    combined_distance_pixels,
    planar_metric_distance,
    planar_pixel_distance,
    resolve_scale,
    vertical_delta,
)
from .errors import DegenerateScale, InsufficientSamples
from .histogram import build_from_spec
from .models import (
    BeaconGeometry,
    BeaconMeta,
    BeaconObservation,
    DevicePose,
    DistanceResult,
    HistogramSpec,
    MapPose,
    PointPosition,
    ScanSummary,
    Sample,
    SurveyRecord,
    TopBeacon,
    device_height_m,
    make_key,
)
from .reducer import compute_statistics
from .rounding import round_half_up, round_point
from .sample_buffer import CollectionWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _BeaconInput:
    beacon_id: str
    samples: Tuple[Sample, ...]
    meta: Optional[BeaconMeta]


class RecordAssembler:
    """
    将一个已完成的采集窗口组装为不可变的勘测记录：
    - 每个有非间隙读数的信标：统计量 + 直方图（可选）+ 距离（需几何信息与有效比例）
    - 从未检测到的信标不出现在记录中
    - 距离/坐标统一在此处保留两位小数，时长保留三位小数
    """

    def __init__(self, histogram_spec: Optional[HistogramSpec] = None, executor: Optional[Executor] = None):
        self.histogram_spec = histogram_spec
        self.executor = executor

    def build(
        self,
        window: CollectionWindow,
        location_id: str,
        point_xy_px: Sequence[float],
        point_xy_m: Optional[Sequence[float]] = None,
        pose: Optional[DevicePose] = None,
        beacon_geometry: Optional[Mapping[str, BeaconGeometry]] = None,
        pixels_per_meter: Optional[float] = None,
        point_id: Optional[str] = None,
        session_id: Optional[str] = None,
        record_id: Optional[str] = None,
        map_resolution_px: Optional[Tuple[int, int]] = None,
        end: Optional[datetime] = None,
    ) -> SurveyRecord:
        pose = pose if pose is not None else MapPose()
        geometry = beacon_geometry or {}
        end = end or window.end
        if end is None:
            raise ValueError("采集窗口尚未结束")

        try:
            ppm: Optional[float] = resolve_scale(pixels_per_meter)
        except DegenerateScale as e:
            logger.debug("比例不可用，记录不含距离: %s", e)
            ppm = None

        inputs = [
            _BeaconInput(beacon_id, buf.samples, window.meta(beacon_id))
            for beacon_id, buf in sorted(window.buffers().items())
        ]
        height = device_height_m(pose)
        origin = (float(point_xy_px[0]), float(point_xy_px[1]))

        def observe(item: _BeaconInput) -> Optional[BeaconObservation]:
            return self._observe(item, origin, geometry.get(item.beacon_id), ppm, height)

        # 各信标计算相互独立；map 保持输入顺序，等待全部完成后再组装
        if self.executor is not None:
            results = list(self.executor.map(observe, inputs))
        else:
            results = [observe(item) for item in inputs]
        observations = tuple(r for r in results if r is not None)

        xy_m = round_point(point_xy_m) if point_xy_m is not None else None
        if point_id is None:
            point_id = make_key(point_xy_m[0], point_xy_m[1]) if point_xy_m is not None else str(uuid.uuid4())

        return SurveyRecord(
            record_id=record_id or str(uuid.uuid4()),
            location_id=location_id,
            point_id=point_id,
            session_id=session_id or str(uuid.uuid4()),
            start_iso=to_iso8601(window.start),
            end_iso=to_iso8601(end),
            duration_s=round_half_up((end - window.start).total_seconds(), 3),
            pose=pose,
            point=PointPosition(xy_px=round_point(origin), xy_m=xy_m),
            beacons=observations,
            map_resolution_px=map_resolution_px,
        )

    def _observe(
        self,
        item: _BeaconInput,
        origin: Tuple[float, float],
        geo: Optional[BeaconGeometry],
        ppm: Optional[float],
        height: Optional[float],
    ) -> Optional[BeaconObservation]:
        readings = [s.signal_dbm for s in item.samples if not s.is_gap]
        try:
            stats = compute_statistics(readings, item.beacon_id)
        except InsufficientSamples:
            logger.debug("信标未检测到，已从记录中省略: %s", item.beacon_id)
            return None

        hist = build_from_spec(readings, self.histogram_spec) if self.histogram_spec else None
        dist = self._distance(origin, geo, ppm, height) if geo is not None and ppm is not None else None

        return BeaconObservation(
            beacon_id=item.beacon_id,
            statistics=stats,
            samples=item.samples,
            histogram=hist,
            distance=dist,
            meta=item.meta,
        )

    @staticmethod
    def _distance(
        origin: Tuple[float, float], geo: BeaconGeometry, ppm: float, height: Optional[float]
    ) -> DistanceResult:
        planar_px = planar_pixel_distance(origin, geo.position_px)
        planar_m = planar_metric_distance(origin, geo.position_px, ppm)
        dz_m = vertical_delta(geo.elevation_m, height)
        return DistanceResult(
            planar_px=round_half_up(planar_px, 2),
            planar_m=round_half_up(planar_m, 2),
            xyz_px=round_half_up(combined_distance_pixels(planar_px, dz_m, ppm), 2),
            xyz_m=round_half_up(combined_distance_metric(planar_m, dz_m), 2),
        )


def summarize_record(
    record: SurveyRecord,
    min_samples: int = 1,
    min_packets_per_second: float = 0.0,
    limit: int = 6,
) -> ScanSummary:
    """按中位数（强到弱）挑选通过质量门限的信标"""
    duration = record.duration_s

    def passes(obs: BeaconObservation) -> bool:
        n = obs.statistics.sample_count
        pps = n / duration if duration > 0 else 0.0
        return n >= min_samples and pps >= min_packets_per_second

    ranked = sorted(
        (b for b in record.beacons if passes(b)),
        key=lambda b: (-b.statistics.median_dbm, b.beacon_id),
    )
    tops = tuple(
        TopBeacon(
            beacon_id=b.beacon_id,
            name=b.meta.name if b.meta else None,
            median_dbm=b.statistics.median_dbm,
            sample_count=b.statistics.sample_count,
        )
        for b in ranked[:limit]
    )
    return ScanSummary(record_id=record.record_id, point_id=record.point_id, duration_s=duration, top_beacons=tops)
