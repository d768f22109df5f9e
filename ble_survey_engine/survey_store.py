from __future__ import annotations

import logging
import math
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from .codec import decode_blob, encode_blob
from .errors import CoordinateKeyMismatch, InsufficientSamples, NoActiveLocation, PersistenceUnavailable
from .histogram import merge_histograms
from .models import (
    BeaconAggregate,
    Histogram,
    SurveyPoint,
    SurveyRecord,
    accumulate_quality,
    device_facing_deg,
    make_key,
)
from .quality import PointQuality
from .persistence import BlobStore
from .reducer import StatisticsMethod, reduce_statistics
from .rounding import round_half_up

logger = logging.getLogger(__name__)


def _check_key(point: SurveyPoint) -> SurveyPoint:
    expected = point.expected_key
    if point.coordinate_key != expected:
        raise CoordinateKeyMismatch(point.coordinate_key, expected)
    return point


def _merge_point(existing: SurveyPoint, incoming: SurveyPoint) -> SurveyPoint:
    """追加 incoming 中会话 ID 尚不存在的会话，保留已有顺序"""
    known = set(existing.session_ids)
    new_sessions = []
    for s in incoming.sessions:
        if s.session_id not in known:
            known.add(s.session_id)
            new_sessions.append(s)
    if not new_sessions:
        return existing
    return replace(
        existing,
        sessions=existing.sessions + tuple(new_sessions),
        quality=accumulate_quality(new_sessions, existing.quality),
    )


def _index(points: Iterable[SurveyPoint]) -> Dict[str, SurveyPoint]:
    mapping: Dict[str, SurveyPoint] = {}
    for p in points:
        _check_key(p)
        # 质量指标始终由会话推导
        p = replace(p, quality=accumulate_quality(p.sessions))
        if p.coordinate_key in mapping:
            mapping[p.coordinate_key] = _merge_point(mapping[p.coordinate_key], p)
        else:
            mapping[p.coordinate_key] = p
    return mapping


class SurveyPointStore:
    """
    按坐标键聚合勘测会话，作用域为当前地点。
    所有读写（含持久化）都在同一把锁内串行执行。
    """

    def __init__(self, blob_store: BlobStore, location_id: Optional[str] = None):
        self.blob_store = blob_store
        self._lock = threading.RLock()
        self._location_id: Optional[str] = None
        self._points: Dict[str, SurveyPoint] = {}
        if location_id:
            self.set_active_location(location_id)

    # ---- Location ----
    @property
    def location_id(self) -> Optional[str]:
        return self._location_id

    @staticmethod
    def storage_key(location_id: str) -> str:
        return f"survey_points/{location_id}"

    def set_active_location(self, location_id: str) -> None:
        """
        切换地点：丢弃内存中的映射并加载该地点已持久化的数据（不自动保存旧地点）。
        加载失败时回到未设置地点的状态，之后的修改会被拒绝，不会覆盖已保存的数据。
        """
        with self._lock:
            try:
                points = self._load(location_id)
            except Exception:
                self._location_id = None
                self._points = {}
                logger.error("地点 %s 加载失败，已取消当前地点", location_id)
                raise
            self._location_id = location_id
            self._points = points
            logger.info("切换地点: %s, 已加载 %s 个勘测点", location_id, len(self._points))

    def _load(self, location_id: str) -> Dict[str, SurveyPoint]:
        data = self.blob_store.read(self.storage_key(location_id))
        if data is None:
            logger.info("地点 %s 无已保存的勘测点", location_id)
            return {}
        return _index(SurveyPoint.from_dict(p) for p in decode_blob(data))

    def _require_location(self) -> str:
        if not self._location_id:
            raise NoActiveLocation("未设置当前地点")
        return self._location_id

    def _save(self) -> None:
        location_id = self._require_location()
        key = self.storage_key(location_id)
        try:
            self.blob_store.write(key, encode_blob([p.to_dict() for p in self.export_all()]))
        except PersistenceUnavailable as e:
            logger.error("勘测点保存失败 (%s): %s", key, e)
            raise PersistenceUnavailable(str(e), key=key, mutation_applied=True) from e
        logger.debug("已保存 %s 个勘测点到 %s", len(self._points), key)

    # ---- Queries ----
    def __len__(self) -> int:
        with self._lock:
            return len(self._points)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._points

    def point_at(self, key: str) -> Optional[SurveyPoint]:
        with self._lock:
            return self._points.get(key)

    def point_near(self, x_m: float, y_m: float) -> Optional[SurveyPoint]:
        return self.point_at(make_key(x_m, y_m))

    def all_points(self) -> List[SurveyPoint]:
        return self.export_all()

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._points)

    def total_session_count(self) -> int:
        with self._lock:
            return sum(len(p.sessions) for p in self._points.values())

    def weighted_dwell_near(self, x_m: float, y_m: float, radius_m: float) -> float:
        """半径内各勘测点驻留时间的加权和，权重随距离线性衰减（中心 1，边缘 0）"""
        if radius_m <= 0:
            return 0.0
        total = 0.0
        with self._lock:
            for p in self._points.values():
                d = math.hypot(p.map_x_m - x_m, p.map_y_m - y_m)
                if d < radius_m:
                    total += (1.0 - d / radius_m) * p.quality.total_dwell_s
        return total

    # ---- Mutations ----
    def add_session(self, session: SurveyRecord, x_m: float, y_m: float) -> SurveyPoint:
        with self._lock:
            self._require_location()
            key = make_key(x_m, y_m)
            existing = self._points.get(key)
            facing = device_facing_deg(session.pose)
            if existing is not None:
                point = replace(
                    existing,
                    sessions=existing.sessions + (session,),
                    quality=existing.quality.with_session(session.duration_s, facing),
                )
                logger.info("会话已追加到勘测点 %s，共 %s 个会话", key, len(point.sessions))
            else:
                point = SurveyPoint(
                    coordinate_key=key,
                    map_x_m=float(x_m),
                    map_y_m=float(y_m),
                    created_iso=session.start_iso,
                    sessions=(session,),
                    quality=PointQuality().with_session(session.duration_s, facing),
                )
                logger.info("新建勘测点 %s", key)
            self._points[key] = point
            self._save()
            return point

    def remove_session(self, session_id: str, key: str) -> bool:
        with self._lock:
            point = self._points.get(key)
            if point is None:
                logger.debug("删除会话: 勘测点 %s 不存在", key)
                return False
            remaining = tuple(s for s in point.sessions if s.session_id != session_id)
            if len(remaining) == len(point.sessions):
                return False
            if remaining:
                self._points[key] = replace(point, sessions=remaining, quality=accumulate_quality(remaining))
                logger.info("已从 %s 删除会话，%s -> %s", key, len(point.sessions), len(remaining))
            else:
                del self._points[key]
                logger.info("已删除勘测点 %s（最后一个会话被删除）", key)
            self._save()
            return True

    def remove_point(self, key: str) -> bool:
        with self._lock:
            if self._points.pop(key, None) is None:
                return False
            logger.info("已删除勘测点 %s", key)
            self._save()
            return True

    def clear_all(self) -> None:
        with self._lock:
            self._require_location()
            count = len(self._points)
            self._points = {}
            self._save()
            logger.info("已清空地点 %s 的 %s 个勘测点", self._location_id, count)

    def import_merge(self, points: Iterable[SurveyPoint], merge: bool = True) -> None:
        """
        merge=True：同键点只追加会话 ID 不重复的会话，新键点整体插入；
        merge=False：以导入集合整体替换当前映射。
        任一导入点坐标键不一致时抛出 CoordinateKeyMismatch，且不做任何修改。
        """
        with self._lock:
            self._require_location()
            incoming = _index(points)
            if merge:
                for key, point in incoming.items():
                    existing = self._points.get(key)
                    self._points[key] = _merge_point(existing, point) if existing else point
                logger.info("已合并导入 %s 个勘测点", len(incoming))
            else:
                self._points = incoming
                logger.info("已替换为导入的 %s 个勘测点", len(incoming))
            self._save()

    def export_all(self) -> List[SurveyPoint]:
        with self._lock:
            return [self._points[k] for k in sorted(self._points)]

    def export_json(self) -> bytes:
        return encode_blob([p.to_dict() for p in self.export_all()])

    def import_json(self, data: bytes, merge: bool = True) -> None:
        self.import_merge((SurveyPoint.from_dict(p) for p in decode_blob(data)), merge=merge)

    # ---- Aggregates ----
    def beacon_aggregate(self, key: str, beacon_id: str) -> Optional[BeaconAggregate]:
        """合并某点所有会话中该信标的直方图，并按直方图计算统计量"""
        point = self.point_at(key)
        if point is None:
            return None
        merged: Optional[Histogram] = None
        sessions = 0
        samples = 0
        seconds = 0.0
        for session in point.sessions:
            obs = session.observation(beacon_id)
            if obs is None or obs.histogram is None:
                continue
            merged = merge_histograms(obs.histogram, merged)
            sessions += 1
            samples += obs.statistics.sample_count
            seconds += session.duration_s
        if merged is None:
            return None
        try:
            stats = reduce_statistics(StatisticsMethod.HISTOGRAM, histogram=merged, beacon_id=beacon_id)
        except InsufficientSamples:
            # 读数全部落在下溢/上溢
            stats = None
        return BeaconAggregate(
            beacon_id=beacon_id,
            session_count=sessions,
            total_samples=samples,
            total_seconds=round_half_up(seconds, 3),
            histogram=merged,
            statistics=stats,
        )
