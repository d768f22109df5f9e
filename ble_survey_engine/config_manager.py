from __future__ import annotations

import copy
import logging
import os
import yaml

from typing import Callable, Any, Optional

from .models import HistogramSpec

logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


def _optional_float(v: str) -> Optional[float]:
    return None if v.strip().lower() in ("", "none", "null") else float(v)


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLE_SURVEY_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_MQTT_PORT", 1883, int),
                "window_topic": _env_or_default("BLE_MQTT_WINDOW_TOPIC", "/survey/window/+"),
                "summary_topic": _env_or_default("BLE_MQTT_SUMMARY_TOPIC", "/survey/summary/{locationId}"),
            },
            "map": {
                "pixels_per_meter": _env_or_default("BLE_MAP_PIXELS_PER_METER", None, _optional_float),
            },
            "histogram": {
                "bin_min_dbm": _env_or_default("BLE_HIST_BIN_MIN", -100, int),
                "bin_max_dbm": _env_or_default("BLE_HIST_BIN_MAX", -30, int),
                "bin_size_db": _env_or_default("BLE_HIST_BIN_SIZE", 1, int),
            },
            "survey": {
                "location_id": _env_or_default("BLE_SURVEY_LOCATION", "default"),
                "min_duration_s": _env_or_default("BLE_SURVEY_MIN_DURATION", 3.0, float),
            },
            "quality": {
                "min_samples": _env_or_default("BLE_QUALITY_MIN_SAMPLES", 5, int),
                "min_packets_per_second": _env_or_default("BLE_QUALITY_MIN_PPS", 0.5, float),
                "top_beacons": _env_or_default("BLE_QUALITY_TOP_BEACONS", 6, int),
            },
            "paths": {
                "data_root": _env_or_default("BLE_PATH_DATA_ROOT", os.path.join(".", "data")),
                "beacon_geometry": _env_or_default(
                    "BLE_PATH_BEACON_GEOMETRY", os.path.join(".", "beacon", "geometry.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = copy.deepcopy(self.default_config)
                self.save_config()
        except yaml.YAMLError as e:
            # 配置文件损坏时回退到默认配置
            logger.warning("配置文件解析失败，使用默认配置: %s", e)
            self.config = copy.deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except OSError as e:
            # 只读目录等情况下仅使用内存配置
            logger.warning("配置保存失败: %s", e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_data_root(self) -> str:
        return self.get_paths()["data_root"]

    def get_beacon_geometry_path(self) -> str:
        return self.get_paths()["beacon_geometry"]

    def get_pixels_per_meter(self) -> Optional[float]:
        v = self.config.get("map", {}).get("pixels_per_meter")
        return None if v is None else float(v)

    def get_histogram_spec(self) -> HistogramSpec:
        h = self.config["histogram"]
        return HistogramSpec(
            bin_min_dbm=int(h["bin_min_dbm"]),
            bin_max_dbm=int(h["bin_max_dbm"]),
            bin_size_db=int(h["bin_size_db"]),
        )

    def get_survey_config(self):
        return self.config["survey"]

    def get_quality_config(self):
        return self.config["quality"]

    def set_mqtt_config(self, ip, port, window_topic=None, summary_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if window_topic is not None:
            self.config["mqtt"]["window_topic"] = window_topic
        if summary_topic is not None:
            self.config["mqtt"]["summary_topic"] = summary_topic
        self.save_config()

    def set_pixels_per_meter(self, pixels_per_meter: Optional[float]):
        self.config.setdefault("map", {})["pixels_per_meter"] = pixels_per_meter
        self.save_config()

    def set_histogram_config(self, bin_min_dbm: int, bin_max_dbm: int, bin_size_db: int):
        self.config["histogram"]["bin_min_dbm"] = bin_min_dbm
        self.config["histogram"]["bin_max_dbm"] = bin_max_dbm
        self.config["histogram"]["bin_size_db"] = bin_size_db
        self.save_config()

    def set_location_id(self, location_id: str):
        self.config["survey"]["location_id"] = location_id
        self.save_config()
