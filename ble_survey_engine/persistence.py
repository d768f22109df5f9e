from __future__ import annotations

import logging
import os
import tempfile
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

from .codec import decode_blob, encode_blob, parse_iso8601
from .errors import DuplicateRecord, PersistenceUnavailable
from .models import SurveyRecord

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    """按键读写二进制块的持久化边界"""

    def read(self, key: str) -> Optional[bytes]: ...

    def write(self, key: str, data: bytes) -> None: ...

    def exists(self, key: str) -> bool: ...

    def list(self, prefix: str) -> List[str]: ...


class MemoryBlobStore:
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(key)

    def write(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)

    def exists(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def list(self, prefix: str) -> List[str]:
        with self._lock:
            return sorted(k for k in self._blobs if k.startswith(prefix))


class FileBlobStore:
    """以 root/<key>.json 文件保存数据块，写入为原子替换"""

    SUFFIX = ".json"

    def __init__(self, root: str):
        self.root = root

    def _path(self, key: str) -> str:
        parts = [p for p in key.split("/") if p]
        if not parts or any(p in (".", "..") for p in parts):
            raise ValueError(f"非法存储键: {key!r}")
        return os.path.join(self.root, *parts) + self.SUFFIX

    def read(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            raise PersistenceUnavailable(f"读取失败: {path}: {e}", key=key) from e

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=os.path.dirname(path), suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.remove(tmp)
                raise
        except OSError as e:
            raise PersistenceUnavailable(f"写入失败: {path}: {e}", key=key) from e

    def exists(self, key: str) -> bool:
        return os.path.exists(self._path(key))

    def list(self, prefix: str) -> List[str]:
        base = os.path.join(self.root, *[p for p in prefix.split("/") if p])
        if not os.path.isdir(base):
            return []
        keys: List[str] = []
        for dirpath, _, filenames in os.walk(base):
            for name in filenames:
                if not name.endswith(self.SUFFIX):
                    continue
                rel = os.path.relpath(os.path.join(dirpath, name), self.root)
                keys.append(rel[: -len(self.SUFFIX)].replace(os.sep, "/"))
        return sorted(keys)


class ScanArchive:
    """勘测记录归档：每条记录只写入一次"""

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store
        self._lock = threading.Lock()

    @staticmethod
    def key_for(record: SurveyRecord) -> str:
        month = _month_of(record.end_iso)
        return f"scans/{record.location_id}/{month}/{record.record_id}"

    def write(self, record: SurveyRecord) -> str:
        key = self.key_for(record)
        with self._lock:
            if self.blob_store.exists(key):
                raise DuplicateRecord(f"记录已存在: {record.record_id}")
            self.blob_store.write(key, encode_blob(record.to_dict()))
        logger.info("已保存勘测记录 %s (%s 个信标)", key, len(record))
        return key

    def list_scans(self, location_id: str) -> List[str]:
        return self.blob_store.list(f"scans/{location_id}/")

    def read(self, key: str) -> Optional[SurveyRecord]:
        data = self.blob_store.read(key)
        if data is None:
            return None
        return SurveyRecord.from_dict(decode_blob(data))


def _month_of(iso_text: str) -> str:
    dt: datetime = parse_iso8601(iso_text)
    return f"{dt.year:04d}-{dt.month:02d}"
