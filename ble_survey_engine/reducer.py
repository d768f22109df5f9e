from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

import numpy as np

from .errors import InsufficientSamples
from .models import Histogram, Statistics
from .rounding import half_up_mean


class StatisticsMethod(Enum):
    SAMPLES = "samples"
    HISTOGRAM = "histogram"


def _median(sorted_values: np.ndarray) -> int:
    """已排序整数序列的中位数；偶数个时取中间两数平均并半数向上取整"""
    n = len(sorted_values)
    mid = n // 2
    if n % 2:
        return int(sorted_values[mid])
    return half_up_mean(int(sorted_values[mid - 1]), int(sorted_values[mid]))


def nearest_rank(sorted_values: np.ndarray, percent: int) -> int:
    """最近秩百分位：rank = ceil(percent * n / 100)，限制在 [1, n]"""
    n = len(sorted_values)
    rank = -(-percent * n // 100)
    rank = min(max(rank, 1), n)
    return int(sorted_values[rank - 1])


def compute_statistics(readings: Sequence[int], beacon_id: Optional[str] = None) -> Statistics:
    """
    由非间隙读数计算稳健统计量：中位数、MAD、P10/P90 与样本数。
    没有读数时抛出 InsufficientSamples。
    """
    values = np.sort(np.asarray(readings, dtype=np.int64))
    if values.size == 0:
        raise InsufficientSamples(beacon_id)

    median = _median(values)
    deviations = np.sort(np.abs(values - median))
    mad = _median(deviations)

    return Statistics(
        median_dbm=median,
        mad_db=mad,
        p10_dbm=nearest_rank(values, 10),
        p90_dbm=nearest_rank(values, 90),
        sample_count=int(values.size),
    )


def histogram_values(histogram: Histogram) -> np.ndarray:
    """将直方图展开为以分箱下边界代表的读数序列（不含下溢/上溢）"""
    edges = np.asarray(histogram.bin_edges(), dtype=np.int64)
    counts = np.asarray(histogram.counts, dtype=np.int64)
    return np.repeat(edges, counts)


def reduce_statistics(
    method: StatisticsMethod,
    readings: Optional[Sequence[int]] = None,
    histogram: Optional[Histogram] = None,
    beacon_id: Optional[str] = None,
) -> Statistics:
    match method:
        case StatisticsMethod.SAMPLES:
            if readings is None:
                raise ValueError("SAMPLES 方法需要 readings")
            return compute_statistics(readings, beacon_id)
        case StatisticsMethod.HISTOGRAM:
            if histogram is None:
                raise ValueError("HISTOGRAM 方法需要 histogram")
            return compute_statistics(histogram_values(histogram), beacon_id)
        case _:
            raise ValueError(f"未知统计方法: {method}")
