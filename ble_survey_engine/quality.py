"""
勘测点数据质量：累计驻留时间、会话数、八方向角度覆盖与颜色等级。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .rounding import round_half_up

SECTOR_COUNT = 8
SECTOR_SIZE_DEG = 360.0 / SECTOR_COUNT
# 距扇区边界不足该角度时，时间按比例分摊给相邻扇区
BLUR_ZONE_DEG = 10.0
# 扇区累计时间达到该值才算覆盖 (秒)
COVERED_SECTOR_MIN_S = 1.0

YELLOW_MIN_DWELL_S = 3.0
GREEN_MIN_DWELL_S = 9.0
BLUE_MIN_SECTORS = 3


class QualityTier(Enum):
    RED = "red"  # 无数据或不足 3 秒
    YELLOW = "yellow"  # 3 ~ 9 秒
    GREEN = "green"  # 9 秒以上，角度覆盖有限
    BLUE = "blue"  # 9 秒以上且覆盖至少 3 个扇区


@dataclass(frozen=True)
class AngularCoverage:
    """
    按朝向累计的驻留时间。索引 0 为北 (337.5° ~ 22.5°)，顺时针依次为 NE、E ... NW。
    """

    sector_time_s: Tuple[float, ...] = (0.0,) * SECTOR_COUNT

    @property
    def covered_sector_count(self) -> int:
        return sum(1 for t in self.sector_time_s if t >= COVERED_SECTOR_MIN_S)

    def add_time(self, seconds: float, heading_deg: float) -> "AngularCoverage":
        h = heading_deg % 360.0
        half = SECTOR_SIZE_DEG / 2
        primary = int(((h + half) % 360.0) // SECTOR_SIZE_DEG) % SECTOR_COUNT

        # 相对扇区中心的带符号偏移，顺时针为正
        offset = (h - primary * SECTOR_SIZE_DEG + 180.0) % 360.0 - 180.0
        to_boundary = half - abs(offset)

        times = list(self.sector_time_s)
        if 0 < to_boundary < BLUR_ZONE_DEG:
            primary_weight = 0.5 + 0.5 * (to_boundary / BLUR_ZONE_DEG)
            secondary = (primary + (1 if offset > 0 else -1)) % SECTOR_COUNT
            times[primary] += seconds * primary_weight
            times[secondary] += seconds * (1.0 - primary_weight)
        else:
            times[primary] += seconds
        return AngularCoverage(tuple(round_half_up(t, 3) for t in times))


@dataclass(frozen=True)
class PointQuality:
    total_dwell_s: float = 0.0
    session_count: int = 0
    coverage: AngularCoverage = field(default_factory=AngularCoverage)

    @property
    def tier(self) -> QualityTier:
        if self.total_dwell_s < YELLOW_MIN_DWELL_S:
            return QualityTier.RED
        if self.total_dwell_s < GREEN_MIN_DWELL_S:
            return QualityTier.YELLOW
        if self.coverage.covered_sector_count >= BLUE_MIN_SECTORS:
            return QualityTier.BLUE
        return QualityTier.GREEN

    def with_session(self, duration_s: float, facing_deg: Optional[float] = None) -> "PointQuality":
        """追加一个会话；没有朝向的会话只计入驻留时间"""
        coverage = self.coverage
        if facing_deg is not None:
            coverage = coverage.add_time(duration_s, facing_deg)
        return PointQuality(
            total_dwell_s=round_half_up(self.total_dwell_s + duration_s, 3),
            session_count=self.session_count + 1,
            coverage=coverage,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_dwell_s": self.total_dwell_s,
            "session_count": self.session_count,
            "sector_time_s": list(self.coverage.sector_time_s),
            "covered_sectors": self.coverage.covered_sector_count,
            "tier": self.tier.value,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PointQuality":
        sectors = tuple(float(t) for t in d.get("sector_time_s", ()))
        if len(sectors) != SECTOR_COUNT:
            raise ValueError(f"扇区数量应为 {SECTOR_COUNT}: {len(sectors)}")
        return cls(
            total_dwell_s=float(d["total_dwell_s"]),
            session_count=int(d["session_count"]),
            coverage=AngularCoverage(sectors),
        )
