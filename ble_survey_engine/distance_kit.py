from __future__ import annotations

import math
from typing import Optional, Sequence

from .errors import DegenerateScale

# 比例下限，防止比例未设置或退化时除法发散
MIN_PIXELS_PER_METER = 1e-4


def planar_pixel_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def planar_metric_distance(a_px: Sequence[float], b_px: Sequence[float], pixels_per_meter: float) -> float:
    return planar_pixel_distance(a_px, b_px) / max(pixels_per_meter, MIN_PIXELS_PER_METER)


def combined_distance_pixels(planar_px: float, vertical_delta_m: float, pixels_per_meter: float) -> float:
    return math.hypot(planar_px, vertical_delta_m * pixels_per_meter)


def combined_distance_metric(planar_m: float, vertical_delta_m: float) -> float:
    return math.hypot(planar_m, vertical_delta_m)


def vertical_delta(beacon_elevation_m: Optional[float], device_height_m: Optional[float]) -> float:
    """信标高于设备为正；缺失的高度按 0 米计"""
    return (beacon_elevation_m or 0.0) - (device_height_m or 0.0)


def resolve_scale(pixels_per_meter: Optional[float]) -> float:
    if pixels_per_meter is None:
        raise DegenerateScale("像素/米比例未设置")
    ppm = float(pixels_per_meter)
    if not math.isfinite(ppm) or ppm <= 0:
        raise DegenerateScale(f"像素/米比例无效: {pixels_per_meter}")
    return ppm
