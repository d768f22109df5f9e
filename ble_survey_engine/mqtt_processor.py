from __future__ import annotations

import json
import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .beacon_store import BeaconGeometryStore
from .collector import SurveyCollector, parse_window_payload
from .config_manager import ConfigManager
from .errors import PersistenceUnavailable, SurveyEngineError
from .models import ScanSummary
from .persistence import FileBlobStore, ScanArchive
from .survey_store import SurveyPointStore


logger = logging.getLogger(__name__)


class MQTTSurveyProcessor:
    def __init__(self, config_manager: ConfigManager):
        self.lock = threading.Lock()
        self.config_manager = config_manager
        self.client: Optional[mqtt.Client] = None

        # 信标几何
        self.geometry_store = BeaconGeometryStore(self.config_manager)
        self.geometry_store.load()

        # 持久化与勘测点
        blob_store = FileBlobStore(self.config_manager.get_data_root())
        self.archive = ScanArchive(blob_store)
        self.point_store = SurveyPointStore(blob_store)
        self.point_store.set_active_location(self.config_manager.get_survey_config()["location_id"])

        self.collector = SurveyCollector(
            self.config_manager, self.geometry_store, self.archive, self.point_store
        )

    # ---------- Core processing ----------
    def process_payload(self, payload: str) -> Optional[ScanSummary]:
        default_location = self.config_manager.get_survey_config()["location_id"]
        try:
            window, ctx = parse_window_payload(payload, default_location)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("采集窗口消息解析失败: %s", e)
            return None

        try:
            with self.lock:
                record = self.collector.finalize(window, ctx)
        except PersistenceUnavailable as e:
            if e.mutation_applied:
                # 记录已归档，会话已在内存中，仅勘测点保存失败
                logger.error("会话已加入勘测点但持久化失败 (%s): %s", e.key, e)
            else:
                logger.error("采集窗口存储失败 (%s): %s", e.key, e)
            return None
        except SurveyEngineError as e:
            logger.error("采集窗口处理失败: %s", e)
            return None

        if record is None:
            return None
        summary = self.collector.summarize(record)
        logger.info(
            "勘测记录 %s: 点 %s, 有效信标 %s 个",
            record.record_id,
            record.point_id,
            len(summary.top_beacons),
        )
        return summary

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], mqtt_config["port"], 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.client.loop_forever()
        except OSError as e:
            logger.error("MQTT连接错误: %s", e)

    def stop_mqtt_client(self):
        if self.client is not None:
            self.client.disconnect()
            self.client.loop_stop()
            logger.info("MQTT连接已断开")

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("window_topic", "/survey/window/+")
        client.subscribe(topic)
        logger.info("已订阅主题: %s", topic)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("消息编码无效 (%s): %s", msg.topic, e)
            return

        summary = self.process_payload(payload)
        if summary is None:
            return

        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("summary_topic", "/survey/summary/{locationId}")
        location_id = self.point_store.location_id or ""
        client.publish(
            topic.format(locationId=location_id),
            json.dumps(summary.to_dict(), sort_keys=True, ensure_ascii=False),
        )
