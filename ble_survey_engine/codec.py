"""JSON 编解码与 ISO-8601 时间格式，所有持久化数据使用同一套规范编码。"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def to_iso8601(dt: datetime) -> str:
    """UTC，毫秒精度，Z 后缀；naive 时间按 UTC 处理"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso8601(text: str) -> datetime:
    dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def encode_blob(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, indent=2, ensure_ascii=False).encode("utf-8")


def decode_blob(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))
