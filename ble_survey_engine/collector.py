from __future__ import annotations

import json
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .assembler import RecordAssembler, summarize_record
from .beacon_store import BeaconGeometryStore
from .codec import parse_iso8601
from .config_manager import ConfigManager
from .distance_kit import resolve_scale
from .errors import DegenerateScale
from .models import BeaconMeta, DevicePose, MapPose, ScanSummary, SurveyRecord, pose_from_dict
from .persistence import ScanArchive
from .sample_buffer import CollectionWindow
from .survey_store import SurveyPointStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WindowContext:
    """采集窗口之外、组装记录所需的上下文"""

    location_id: str
    point_xy_px: Tuple[float, float]
    point_xy_m: Optional[Tuple[float, float]] = None
    pose: DevicePose = MapPose()
    point_id: Optional[str] = None
    session_id: Optional[str] = None
    record_id: Optional[str] = None
    pixels_per_meter: Optional[float] = None
    map_resolution_px: Optional[Tuple[int, int]] = None


def parse_window_payload(text: str, default_location_id: str = "default") -> Tuple[CollectionWindow, WindowContext]:
    """
    解析一个已完成采集窗口的 JSON 消息：
    {"location_id", "start_iso", "end_iso", "point": {"xy_px", "xy_m"?}, "pose"?,
     "beacons": {"<id>": {"samples": [[ms, dBm], ...], "meta"?: {...}}}}
    """
    d: Dict[str, Any] = json.loads(text)
    window = CollectionWindow(start=parse_iso8601(d["start_iso"]))
    for beacon_id, payload in (d.get("beacons") or {}).items():
        window.add_samples(beacon_id, payload.get("samples", []))
        if payload.get("meta"):
            window.set_meta(beacon_id, BeaconMeta.from_dict(payload["meta"]))
    window.close(parse_iso8601(d["end_iso"]), bookend=False)

    point = d["point"]
    xy_m = point.get("xy_m")
    resolution = d.get("map_resolution_px")
    ppm = d.get("pixels_per_meter")
    ctx = WindowContext(
        location_id=str(d.get("location_id") or default_location_id),
        point_xy_px=(float(point["xy_px"][0]), float(point["xy_px"][1])),
        point_xy_m=(float(xy_m[0]), float(xy_m[1])) if xy_m is not None else None,
        pose=pose_from_dict(d["pose"]) if d.get("pose") else MapPose(),
        point_id=d.get("point_id"),
        session_id=d.get("session_id"),
        record_id=d.get("record_id"),
        pixels_per_meter=None if ppm is None else float(ppm),
        map_resolution_px=(int(resolution[0]), int(resolution[1])) if resolution else None,
    )
    return window, ctx


class SurveyCollector:
    """采集窗口收尾：组装记录、归档、并按坐标键累积到勘测点"""

    def __init__(
        self,
        config_manager: ConfigManager,
        geometry_store: BeaconGeometryStore,
        archive: ScanArchive,
        point_store: SurveyPointStore,
        executor: Optional[Executor] = None,
    ):
        self.config_manager = config_manager
        self.geometry_store = geometry_store
        self.archive = archive
        self.point_store = point_store

        survey_config = self.config_manager.get_survey_config()
        # 短于该时长的窗口不保存 (秒)
        self.min_duration_s = float(survey_config.get("min_duration_s", 3.0))

        self.assembler = RecordAssembler(self.config_manager.get_histogram_spec(), executor)

    def _metric_point(self, ctx: WindowContext, ppm: Optional[float]) -> Optional[Tuple[float, float]]:
        if ctx.point_xy_m is not None:
            return ctx.point_xy_m
        try:
            scale = resolve_scale(ppm)
        except DegenerateScale:
            return None
        return (ctx.point_xy_px[0] / scale, ctx.point_xy_px[1] / scale)

    def finalize(self, window: CollectionWindow, ctx: WindowContext) -> Optional[SurveyRecord]:
        if not window.closed:
            window.close()

        duration = window.duration_s
        if duration < self.min_duration_s:
            logger.info("采集窗口时长 %.1fs 小于 %.1fs，已丢弃", duration, self.min_duration_s)
            return None

        ppm = ctx.pixels_per_meter if ctx.pixels_per_meter is not None else self.config_manager.get_pixels_per_meter()
        xy_m = self._metric_point(ctx, ppm)

        record = self.assembler.build(
            window,
            location_id=ctx.location_id,
            point_xy_px=ctx.point_xy_px,
            point_xy_m=xy_m,
            pose=ctx.pose,
            beacon_geometry=self.geometry_store.all(),
            pixels_per_meter=ppm,
            point_id=ctx.point_id,
            session_id=ctx.session_id,
            record_id=ctx.record_id,
            map_resolution_px=ctx.map_resolution_px,
        )
        self.archive.write(record)

        if xy_m is None:
            logger.warning("记录 %s 无米制坐标，未加入勘测点", record.record_id)
            return record

        if self.point_store.location_id != ctx.location_id:
            self.point_store.set_active_location(ctx.location_id)
        self.point_store.add_session(record, xy_m[0], xy_m[1])
        logger.info(
            "采集完成: 点 %s, %s 个信标, 时长 %.3fs",
            record.point_id,
            len(record),
            record.duration_s,
        )
        return record

    def summarize(self, record: SurveyRecord) -> ScanSummary:
        quality = self.config_manager.get_quality_config()
        return summarize_record(
            record,
            min_samples=int(quality.get("min_samples", 1)),
            min_packets_per_second=float(quality.get("min_packets_per_second", 0.0)),
            limit=int(quality.get("top_beacons", 6)),
        )
