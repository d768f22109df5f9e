"""
统一的舍入规则：半数向正无穷舍入（round-half-up）。

小数舍入基于数值的最短十进制表示进行精确计算，避免二进制浮点误差，
例如 3.005 -> 3.01，-1.005 -> -1.00。
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Optional, Sequence, Tuple


def round_half_up(value: float, places: int = 2) -> float:
    step = Decimal(1).scaleb(-places)
    d = Decimal(repr(float(value))) + step / 2
    return float(d.quantize(step, rounding=ROUND_FLOOR))


def round_point(point: Sequence[float], places: int = 2) -> Tuple[float, float]:
    return (round_half_up(point[0], places), round_half_up(point[1], places))


def round_optional(value: Optional[float], places: int = 2) -> Optional[float]:
    if value is None:
        return None
    return round_half_up(value, places)


def half_up_mean(a: int, b: int) -> int:
    """两个整数的平均值，.5 时向正无穷取整（纯整数运算）"""
    return (a + b + 1) // 2
