from __future__ import annotations

import logging
from bisect import insort
from datetime import datetime, timezone
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .models import GAP_DBM, BeaconMeta, Sample

logger = logging.getLogger(__name__)


class SampleBuffer:
    """单个信标在一个采集窗口内按时间排序的 (offset_ms, dBm) 序列"""

    def __init__(self, beacon_id: str):
        self.beacon_id = beacon_id
        self._samples: List[Sample] = []

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)

    def append(self, offset_ms: int, signal_dbm: int) -> None:
        if offset_ms < 0:
            raise ValueError(f"offset_ms 不能为负: {offset_ms}")
        # 乱序到达的读数按时间插入；同一时刻保持到达顺序
        insort(self._samples, Sample(int(offset_ms), int(signal_dbm)), key=lambda s: s.offset_ms)

    def mark_gap(self, offset_ms: int) -> None:
        self.append(offset_ms, GAP_DBM)

    @property
    def samples(self) -> Tuple[Sample, ...]:
        """完整序列（含间隙标记），用于保留间隙形状"""
        return tuple(self._samples)

    def readings(self) -> List[int]:
        return [s.signal_dbm for s in self._samples if not s.is_gap]

    @property
    def reading_count(self) -> int:
        return sum(1 for s in self._samples if not s.is_gap)


class CollectionWindow:
    """
    一次采集窗口：按信标 ID 组织的样本缓冲区。
    首次收到某信标时在 0 ms 处插入起始边界标记，close() 时在结束时刻插入结束边界标记。
    """

    def __init__(self, start: Optional[datetime] = None):
        self.start = start or datetime.now(timezone.utc)
        self.end: Optional[datetime] = None
        self._buffers: Dict[str, SampleBuffer] = {}
        self._meta: Dict[str, BeaconMeta] = {}

    @property
    def closed(self) -> bool:
        return self.end is not None

    @property
    def duration_s(self) -> float:
        end = self.end or datetime.now(timezone.utc)
        return (end - self.start).total_seconds()

    def elapsed_ms(self, at: Optional[datetime] = None) -> int:
        at = at or datetime.now(timezone.utc)
        return max(0, int((at - self.start).total_seconds() * 1000))

    def buffer(self, beacon_id: str) -> SampleBuffer:
        buf = self._buffers.get(beacon_id)
        if buf is None:
            buf = SampleBuffer(beacon_id)
            buf.mark_gap(0)
            self._buffers[beacon_id] = buf
        return buf

    def ingest(self, beacon_id: str, rssi: int, offset_ms: Optional[int] = None) -> bool:
        """写入一条读数；窗口已关闭或 RSSI 非负（无效读数）时丢弃并返回 False"""
        if self.closed:
            logger.debug("采集窗口已关闭，丢弃读数: %s", beacon_id)
            return False
        if rssi >= 0:
            logger.debug("无效RSSI已丢弃: %s=%s", beacon_id, rssi)
            return False
        ms = self.elapsed_ms() if offset_ms is None else offset_ms
        self.buffer(beacon_id).append(ms, rssi)
        return True

    def add_samples(self, beacon_id: str, samples: Iterable[Sequence[int]]) -> SampleBuffer:
        """写入扫描子系统交付的完整序列（已含间隙标记），不再插入边界标记"""
        buf = self._buffers.setdefault(beacon_id, SampleBuffer(beacon_id))
        for offset_ms, signal_dbm in samples:
            buf.append(offset_ms, signal_dbm)
        return buf

    def set_meta(self, beacon_id: str, meta: BeaconMeta) -> None:
        self._meta[beacon_id] = meta

    def meta(self, beacon_id: str) -> Optional[BeaconMeta]:
        return self._meta.get(beacon_id)

    def close(self, end: Optional[datetime] = None, bookend: bool = True) -> None:
        if self.closed:
            return
        self.end = end or datetime.now(timezone.utc)
        if not bookend:
            return
        end_ms = self.elapsed_ms(self.end)
        for buf in self._buffers.values():
            buf.mark_gap(end_ms)

    def buffers(self) -> Dict[str, SampleBuffer]:
        return dict(self._buffers)

    def __len__(self) -> int:
        return len(self._buffers)
