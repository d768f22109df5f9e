from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .errors import HistogramConfigError
from .models import EdgePolicy, Histogram, HistogramSpec


def validate_spec(spec: HistogramSpec) -> None:
    if spec.bin_size_db <= 0:
        raise HistogramConfigError(f"分箱宽度必须为正: {spec.bin_size_db}")
    if spec.bin_max_dbm <= spec.bin_min_dbm:
        raise HistogramConfigError(
            f"分箱上界必须大于下界: [{spec.bin_min_dbm}, {spec.bin_max_dbm})"
        )
    if (spec.bin_max_dbm - spec.bin_min_dbm) % spec.bin_size_db:
        raise HistogramConfigError(
            f"分箱范围 {spec.bin_max_dbm - spec.bin_min_dbm} dB 不是宽度 {spec.bin_size_db} 的整数倍"
        )


def build_histogram(
    readings: Sequence[int],
    bin_min_dbm: int = -100,
    bin_max_dbm: int = -30,
    bin_size_db: int = 1,
) -> Histogram:
    """
    固定宽度直方图，左闭右开：
    v < bin_min 计入下溢，v >= bin_max 计入上溢，
    其余 index = (v - bin_min) // bin_size（整数运算）。
    """
    spec = HistogramSpec(int(bin_min_dbm), int(bin_max_dbm), int(bin_size_db))
    validate_spec(spec)

    values = np.asarray(readings, dtype=np.int64)
    in_range = (values >= spec.bin_min_dbm) & (values < spec.bin_max_dbm)
    idx = (values[in_range] - spec.bin_min_dbm) // spec.bin_size_db
    counts = np.bincount(idx, minlength=spec.bin_count)

    return Histogram(
        bin_min_dbm=spec.bin_min_dbm,
        bin_max_dbm=spec.bin_max_dbm,
        bin_size_db=spec.bin_size_db,
        counts=tuple(int(c) for c in counts),
        underflow=int(np.count_nonzero(values < spec.bin_min_dbm)),
        overflow=int(np.count_nonzero(values >= spec.bin_max_dbm)),
        edge_policy=EdgePolicy.LEFT_INCLUSIVE,
    )


def build_from_spec(readings: Sequence[int], spec: HistogramSpec) -> Histogram:
    return build_histogram(readings, spec.bin_min_dbm, spec.bin_max_dbm, spec.bin_size_db)


def empty_histogram(spec: HistogramSpec) -> Histogram:
    return build_from_spec([], spec)


def merge_histograms(a: Histogram, b: Optional[Histogram]) -> Histogram:
    """累加两个分箱一致的直方图"""
    if b is None:
        return a
    if a.spec != b.spec or len(a.counts) != len(b.counts):
        raise HistogramConfigError("无法合并分箱参数不同的直方图")
    return Histogram(
        bin_min_dbm=a.bin_min_dbm,
        bin_max_dbm=a.bin_max_dbm,
        bin_size_db=a.bin_size_db,
        counts=tuple(x + y for x, y in zip(a.counts, b.counts)),
        underflow=a.underflow + b.underflow,
        overflow=a.overflow + b.overflow,
        edge_policy=a.edge_policy,
    )
