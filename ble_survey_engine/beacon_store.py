from __future__ import annotations

import logging
import math
import os
from typing import Dict, Optional, cast

import pandas as pd

from .models import BeaconGeometry
from .config_manager import ConfigManager

logger = logging.getLogger(__name__)

COLUMNS = ["x_px", "y_px", "elevation_m"]


class BeaconGeometryStore:
    """管理信标地图几何（像素坐标 + 可选高度）的存储与访问（pandas + CSV）"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        # 使用 DataFrame 管理，索引为 beacon_id
        self._df = pd.DataFrame(columns=COLUMNS, dtype="float64")
        self._df.index.name = "beacon_id"
        self._config = config_manager or ConfigManager()

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        if "beacon_id" not in df.columns:
            raise KeyError("CSV 文件缺少 'beacon_id' 列")
        for col in ["x_px", "y_px"]:
            if col not in df.columns:
                raise KeyError(f"CSV 文件缺少 '{col}' 列")
            df[col] = pd.to_numeric(df[col], errors="coerce")
        if "elevation_m" not in df.columns:
            df["elevation_m"] = float("nan")
        # 高度缺失保持 NaN，读取时转为 None
        df["elevation_m"] = pd.to_numeric(df["elevation_m"], errors="coerce")
        dropped = df[df["x_px"].isna() | df["y_px"].isna()]
        if len(dropped):
            logger.warning("忽略 %s 行坐标无效的信标: %s", len(dropped), list(dropped["beacon_id"]))
        df = df.dropna(subset=["x_px", "y_px"])
        df = df[["beacon_id", *COLUMNS]]
        df = df.drop_duplicates(subset=["beacon_id"], keep="last").set_index("beacon_id")
        df = df.astype({c: "float64" for c in COLUMNS})
        df.index.name = "beacon_id"
        df.index = df.index.astype(str)
        return df.sort_index()

    # ---- Load/Save ----
    def load(self, geometry_file_path: Optional[str] = None):
        csv_path = geometry_file_path or self._config.get_beacon_geometry_path()
        if not os.path.exists(csv_path):
            logger.info("信标几何文件不存在，创建空文件: %s", csv_path)
            self.save(csv_path)
            return
        df = pd.read_csv(csv_path, dtype={"beacon_id": str})
        self._df = self._normalize_df(df)
        logger.info("已加载 %s 个信标几何: %s", len(self._df), csv_path)

    def save(self, geometry_file_path: Optional[str] = None):
        # 保存为 CSV（beacon_id 作为列）
        csv_path = geometry_file_path or self._config.get_beacon_geometry_path()
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._df.to_csv(csv_path, index=True, index_label="beacon_id", encoding="utf-8")

    # ---- CRUD ----
    def add(self, beacon_id: str, geometry: BeaconGeometry):
        # 新增或覆盖
        elevation = float("nan") if geometry.elevation_m is None else float(geometry.elevation_m)
        self._df.loc[beacon_id, COLUMNS] = [
            float(geometry.position_px[0]),
            float(geometry.position_px[1]),
            elevation,
        ]
        self.save()

    def update(self, beacon_id: str, geometry: BeaconGeometry) -> bool:
        if beacon_id in self._df.index:
            self.add(beacon_id, geometry)
            return True
        return False

    def delete(self, beacon_id: str) -> bool:
        if beacon_id in self._df.index:
            self._df = self._df.drop(index=beacon_id)
            self.save()
            return True
        return False

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._df)

    def has(self, beacon_id: str) -> bool:
        return beacon_id in self._df.index

    @staticmethod
    def _row_to_geometry(row: pd.Series) -> BeaconGeometry:
        elevation = float(row.at["elevation_m"])
        return BeaconGeometry(
            position_px=(float(row.at["x_px"]), float(row.at["y_px"])),
            elevation_m=None if math.isnan(elevation) else elevation,
        )

    def get(self, beacon_id: str) -> Optional[BeaconGeometry]:
        if beacon_id not in self._df.index:
            return None
        return self._row_to_geometry(cast(pd.Series, self._df.loc[beacon_id]))

    def all(self) -> Dict[str, BeaconGeometry]:
        result: Dict[str, BeaconGeometry] = {}
        for beacon_id, row in self._df.iterrows():
            result[str(beacon_id)] = self._row_to_geometry(cast(pd.Series, row))
        return result
