from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .quality import PointQuality
from .rounding import round_half_up

RECORD_SCHEMA = "survey.record.v1"

GAP_DBM = 0


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


def _pair(value: Any) -> Tuple[float, float]:
    x, y = value
    return (float(x), float(y))


def _opt_float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


def _opt_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


# ---- Coordinate key ----
def make_key(x: float, y: float) -> str:
    """由地图坐标（米）生成坐标键，两位小数，半数向上舍入"""
    return f"{round_half_up(x, 2):.2f},{round_half_up(y, 2):.2f}"


def parse_key(key: str) -> Optional[Tuple[float, float]]:
    parts = key.split(",")
    if len(parts) != 2:
        return None
    try:
        return (float(parts[0]), float(parts[1]))
    except ValueError:
        return None


# ---- Samples / statistics ----
@dataclass(frozen=True)
class Sample:
    offset_ms: int
    signal_dbm: int  # 0 为间隙标记，不是真实读数

    @property
    def is_gap(self) -> bool:
        return self.signal_dbm == GAP_DBM

    def to_list(self) -> List[int]:
        return [self.offset_ms, self.signal_dbm]

    @classmethod
    def from_list(cls, value: Any) -> "Sample":
        offset_ms, signal_dbm = value
        return cls(offset_ms=int(offset_ms), signal_dbm=int(signal_dbm))


@dataclass(frozen=True)
class Statistics:
    median_dbm: int
    mad_db: int
    p10_dbm: int
    p90_dbm: int
    sample_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "median_dbm": self.median_dbm,
            "mad_db": self.mad_db,
            "p10_dbm": self.p10_dbm,
            "p90_dbm": self.p90_dbm,
            "sample_count": self.sample_count,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Statistics":
        return cls(
            median_dbm=int(d["median_dbm"]),
            mad_db=int(d["mad_db"]),
            p10_dbm=int(d["p10_dbm"]),
            p90_dbm=int(d["p90_dbm"]),
            sample_count=int(d["sample_count"]),
        )


class EdgePolicy(Enum):
    # 恰好落在分箱下边界的值归入该分箱
    LEFT_INCLUSIVE = "leftInclusive"


@dataclass(frozen=True)
class HistogramSpec:
    bin_min_dbm: int = -100
    bin_max_dbm: int = -30
    bin_size_db: int = 1

    @property
    def bin_count(self) -> int:
        return (self.bin_max_dbm - self.bin_min_dbm) // self.bin_size_db


@dataclass(frozen=True)
class Histogram:
    bin_min_dbm: int
    bin_max_dbm: int
    bin_size_db: int
    counts: Tuple[int, ...]
    underflow: int = 0
    overflow: int = 0
    edge_policy: EdgePolicy = EdgePolicy.LEFT_INCLUSIVE

    @property
    def spec(self) -> HistogramSpec:
        return HistogramSpec(self.bin_min_dbm, self.bin_max_dbm, self.bin_size_db)

    @property
    def total(self) -> int:
        """落入分箱的样本数（不含下溢/上溢）"""
        return sum(self.counts)

    @property
    def classified(self) -> int:
        return self.total + self.underflow + self.overflow

    def bin_edges(self) -> List[int]:
        return [self.bin_min_dbm + i * self.bin_size_db for i in range(len(self.counts))]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bin_min_dbm": self.bin_min_dbm,
            "bin_max_dbm": self.bin_max_dbm,
            "bin_size_db": self.bin_size_db,
            "counts": list(self.counts),
            "underflow": self.underflow,
            "overflow": self.overflow,
            "edge_policy": self.edge_policy.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Histogram":
        return cls(
            bin_min_dbm=int(d["bin_min_dbm"]),
            bin_max_dbm=int(d["bin_max_dbm"]),
            bin_size_db=int(d["bin_size_db"]),
            counts=tuple(int(c) for c in d["counts"]),
            underflow=int(d.get("underflow", 0)),
            overflow=int(d.get("overflow", 0)),
            edge_policy=EdgePolicy(d.get("edge_policy", EdgePolicy.LEFT_INCLUSIVE.value)),
        )


# ---- Geometry ----
@dataclass(frozen=True)
class BeaconGeometry:
    """地图标定子系统提供的信标几何信息（只读）"""

    position_px: Tuple[float, float]
    elevation_m: Optional[float] = None


@dataclass(frozen=True)
class DistanceResult:
    planar_px: float
    planar_m: float
    xyz_px: float
    xyz_m: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planar_px": self.planar_px,
            "planar_m": self.planar_m,
            "xyz_px": self.xyz_px,
            "xyz_m": self.xyz_m,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DistanceResult":
        return cls(
            planar_px=float(d["planar_px"]),
            planar_m=float(d["planar_m"]),
            xyz_px=float(d["xyz_px"]),
            xyz_m=float(d["xyz_m"]),
        )


# ---- Device pose ----
@dataclass(frozen=True)
class MapPose:
    """二维地图场景下的设备姿态"""

    height_m: Optional[float] = None
    facing_deg: Optional[float] = None


@dataclass(frozen=True)
class ArPose:
    """三维勘测场景下的位置 + 四元数姿态"""

    x: float
    y: float
    z: float
    qx: float
    qy: float
    qz: float
    qw: float

    @classmethod
    def identity(cls) -> "ArPose":
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0)


DevicePose = Union[MapPose, ArPose]


def device_height_m(pose: DevicePose) -> Optional[float]:
    match pose:
        case MapPose(height_m=height):
            return height
        case ArPose():
            return None


def device_facing_deg(pose: DevicePose) -> Optional[float]:
    match pose:
        case MapPose(facing_deg=facing):
            return facing
        case ArPose():
            # 三维姿态的朝向依赖坐标系约定，不计入角度覆盖
            return None


def pose_to_dict(pose: DevicePose) -> Dict[str, Any]:
    match pose:
        case MapPose():
            return _drop_none(
                {"kind": "map", "height_m": pose.height_m, "facing_deg": pose.facing_deg}
            )
        case ArPose():
            return {
                "kind": "ar",
                "x": pose.x,
                "y": pose.y,
                "z": pose.z,
                "qx": pose.qx,
                "qy": pose.qy,
                "qz": pose.qz,
                "qw": pose.qw,
            }
    raise TypeError(f"未知姿态类型: {type(pose).__name__}")


def pose_from_dict(d: Dict[str, Any]) -> DevicePose:
    kind = d.get("kind", "map")
    match kind:
        case "map":
            return MapPose(height_m=_opt_float(d.get("height_m")), facing_deg=_opt_float(d.get("facing_deg")))
        case "ar":
            return ArPose(*(float(d[k]) for k in ("x", "y", "z", "qx", "qy", "qz", "qw")))
        case _:
            raise ValueError(f"未知姿态类型: {kind!r}")


# ---- Record ----
@dataclass(frozen=True)
class BeaconMeta:
    """扫描子系统发现的信标元数据"""

    name: str
    model: Optional[str] = None
    tx_power_dbm: Optional[int] = None
    advertising_interval_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "name": self.name,
                "model": self.model,
                "tx_power_dbm": self.tx_power_dbm,
                "advertising_interval_ms": self.advertising_interval_ms,
            }
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BeaconMeta":
        return cls(
            name=str(d["name"]),
            model=d.get("model"),
            tx_power_dbm=_opt_int(d.get("tx_power_dbm")),
            advertising_interval_ms=_opt_int(d.get("advertising_interval_ms")),
        )


@dataclass(frozen=True)
class BeaconObservation:
    beacon_id: str
    statistics: Statistics
    samples: Tuple[Sample, ...]
    histogram: Optional[Histogram] = None
    distance: Optional[DistanceResult] = None
    meta: Optional[BeaconMeta] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none(
            {
                "beacon_id": self.beacon_id,
                "stats": self.statistics.to_dict(),
                "samples": [s.to_list() for s in self.samples],
                "hist": self.histogram.to_dict() if self.histogram else None,
                "dist": self.distance.to_dict() if self.distance else None,
                "meta": self.meta.to_dict() if self.meta else None,
            }
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BeaconObservation":
        return cls(
            beacon_id=str(d["beacon_id"]),
            statistics=Statistics.from_dict(d["stats"]),
            samples=tuple(Sample.from_list(s) for s in d.get("samples", [])),
            histogram=Histogram.from_dict(d["hist"]) if d.get("hist") else None,
            distance=DistanceResult.from_dict(d["dist"]) if d.get("dist") else None,
            meta=BeaconMeta.from_dict(d["meta"]) if d.get("meta") else None,
        )


@dataclass(frozen=True)
class PointPosition:
    xy_px: Tuple[float, float]
    xy_m: Optional[Tuple[float, float]] = None


@dataclass(frozen=True)
class SurveyRecord:
    """
    一次采集窗口的勘测记录，创建后不可变
    """

    record_id: str
    location_id: str
    point_id: str
    session_id: str
    start_iso: str
    end_iso: str
    duration_s: float
    pose: DevicePose
    point: PointPosition
    beacons: Tuple[BeaconObservation, ...]
    map_resolution_px: Optional[Tuple[int, int]] = None
    schema: str = RECORD_SCHEMA

    def __len__(self) -> int:
        return len(self.beacons)

    def __iter__(self) -> Iterator[BeaconObservation]:
        return iter(self.beacons)

    @property
    def beacon_ids(self) -> List[str]:
        return [b.beacon_id for b in self.beacons]

    def observation(self, beacon_id: str) -> Optional[BeaconObservation]:
        for b in self.beacons:
            if b.beacon_id == beacon_id:
                return b
        return None

    def to_dict(self) -> Dict[str, Any]:
        point = _drop_none(
            {
                "xy_px": list(self.point.xy_px),
                "xy_m": list(self.point.xy_m) if self.point.xy_m is not None else None,
            }
        )
        return _drop_none(
            {
                "schema": self.schema,
                "record_id": self.record_id,
                "location_id": self.location_id,
                "point_id": self.point_id,
                "session_id": self.session_id,
                "timing": {
                    "start_iso": self.start_iso,
                    "end_iso": self.end_iso,
                    "duration_s": self.duration_s,
                },
                "pose": pose_to_dict(self.pose),
                "point": point,
                "map_resolution_px": (
                    list(self.map_resolution_px) if self.map_resolution_px is not None else None
                ),
                "beacons": [b.to_dict() for b in self.beacons],
            }
        )

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SurveyRecord":
        timing = d["timing"]
        point = d["point"]
        resolution = d.get("map_resolution_px")
        return cls(
            record_id=str(d["record_id"]),
            location_id=str(d["location_id"]),
            point_id=str(d["point_id"]),
            session_id=str(d["session_id"]),
            start_iso=str(timing["start_iso"]),
            end_iso=str(timing["end_iso"]),
            duration_s=float(timing["duration_s"]),
            pose=pose_from_dict(d.get("pose", {})),
            point=PointPosition(
                xy_px=_pair(point["xy_px"]),
                xy_m=_pair(point["xy_m"]) if point.get("xy_m") is not None else None,
            ),
            beacons=tuple(BeaconObservation.from_dict(b) for b in d.get("beacons", [])),
            map_resolution_px=(int(resolution[0]), int(resolution[1])) if resolution else None,
            schema=str(d.get("schema", RECORD_SCHEMA)),
        )


# ---- Survey point ----
def accumulate_quality(sessions: Iterable[SurveyRecord], base: Optional[PointQuality] = None) -> PointQuality:
    """按追加顺序把会话计入质量指标"""
    quality = base or PointQuality()
    for s in sessions:
        quality = quality.with_session(s.duration_s, device_facing_deg(s.pose))
    return quality


@dataclass(frozen=True)
class SurveyPoint:
    """同一坐标键下累积的所有勘测会话"""

    coordinate_key: str
    map_x_m: float
    map_y_m: float
    created_iso: str
    sessions: Tuple[SurveyRecord, ...] = field(default_factory=tuple)
    quality: PointQuality = field(default_factory=PointQuality)

    @property
    def expected_key(self) -> str:
        return make_key(self.map_x_m, self.map_y_m)

    @property
    def session_ids(self) -> List[str]:
        return [s.session_id for s in self.sessions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinate_key": self.coordinate_key,
            "map_x_m": self.map_x_m,
            "map_y_m": self.map_y_m,
            "created_iso": self.created_iso,
            "sessions": [s.to_dict() for s in self.sessions],
            "quality": self.quality.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SurveyPoint":
        sessions = tuple(SurveyRecord.from_dict(s) for s in d.get("sessions", []))
        # 旧数据没有质量字段时由会话重新计算
        quality = PointQuality.from_dict(d["quality"]) if d.get("quality") else accumulate_quality(sessions)
        return cls(
            coordinate_key=str(d["coordinate_key"]),
            map_x_m=float(d["map_x_m"]),
            map_y_m=float(d["map_y_m"]),
            created_iso=str(d["created_iso"]),
            sessions=sessions,
            quality=quality,
        )


@dataclass(frozen=True)
class BeaconAggregate:
    """某勘测点上单个信标跨会话的累计结果"""

    beacon_id: str
    session_count: int
    total_samples: int
    total_seconds: float
    histogram: Histogram
    statistics: Optional[Statistics]


@dataclass(frozen=True)
class TopBeacon:
    beacon_id: str
    name: Optional[str]
    median_dbm: int
    sample_count: int


@dataclass(frozen=True)
class ScanSummary:
    record_id: str
    point_id: str
    duration_s: float
    top_beacons: Tuple[TopBeacon, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "point_id": self.point_id,
            "duration_s": self.duration_s,
            "top_beacons": [_drop_none(asdict(t)) for t in self.top_beacons],
        }
