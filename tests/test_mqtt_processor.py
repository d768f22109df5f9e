from __future__ import annotations

import json
import logging
from types import SimpleNamespace

from ble_survey_engine.errors import PersistenceUnavailable
from ble_survey_engine.mqtt_processor import MQTTSurveyProcessor


class FakeClient:
    def __init__(self):
        self.published = []
        self.subscribed = []

    def publish(self, topic, payload):
        self.published.append((topic, payload))

    def subscribe(self, topic):
        self.subscribed.append(topic)


class UnwritableStore:
    """读取照常，写入一律失败"""

    def __init__(self, inner):
        self.inner = inner

    def read(self, key):
        return self.inner.read(key)

    def exists(self, key):
        return self.inner.exists(key)

    def list(self, prefix):
        return self.inner.list(prefix)

    def write(self, key, data):
        raise PersistenceUnavailable("磁盘已满", key=key)


def _message(text: str, topic: str = "/survey/window/site-1"):
    return SimpleNamespace(payload=text.encode("utf-8"), topic=topic)


def test_on_connect_subscribes_window_topic(config) -> None:
    processor = MQTTSurveyProcessor(config)
    client = FakeClient()

    processor.on_connect(client, None, {}, SimpleNamespace(is_failure=False))
    assert client.subscribed == ["/survey/window/+"]

    failed = FakeClient()
    processor.on_connect(failed, None, {}, SimpleNamespace(is_failure=True))
    assert failed.subscribed == []
    assert not hasattr(processor, "current_topic")


def test_window_message_publishes_summary(config, window_payload) -> None:
    processor = MQTTSurveyProcessor(config)
    client = FakeClient()

    processor.on_message(client, None, _message(window_payload()))

    assert len(client.published) == 1
    topic, payload = client.published[0]
    assert topic == "/survey/summary/site-1"
    summary = json.loads(payload)
    assert summary["record_id"] == "r-1"
    assert summary["point_id"] == "2.00,6.00"
    assert [t["beacon_id"] for t in summary["top_beacons"]] == ["B1"]

    # 记录与勘测点都已落盘
    assert processor.archive.list_scans("site-1") == ["scans/site-1/2025-03/r-1"]
    assert processor.point_store.keys() == ["2.00,6.00"]


def test_duplicate_record_is_not_published_twice(config, window_payload) -> None:
    processor = MQTTSurveyProcessor(config)
    client = FakeClient()

    processor.on_message(client, None, _message(window_payload()))
    processor.on_message(client, None, _message(window_payload()))

    assert len(client.published) == 1
    assert processor.point_store.total_session_count() == 1


def test_bad_messages_are_ignored(config, window_payload) -> None:
    processor = MQTTSurveyProcessor(config)
    client = FakeClient()

    processor.on_message(client, None, _message("{broken"))
    processor.on_message(client, None, SimpleNamespace(payload=b"\xff\xfe", topic="/survey/window/x"))
    processor.on_message(client, None, _message(window_payload(end_iso="2025-03-01T12:00:01.000Z")))

    assert client.published == []


def test_process_payload_returns_summary(config, window_payload) -> None:
    processor = MQTTSurveyProcessor(config)

    summary = processor.process_payload(window_payload(record_id="r-9", session_id="s-9"))

    assert summary.record_id == "r-9"
    assert processor.process_payload("[]") is None


def test_point_save_failure_is_logged_as_applied(config, window_payload, caplog) -> None:
    processor = MQTTSurveyProcessor(config)
    processor.point_store.blob_store = UnwritableStore(processor.point_store.blob_store)
    client = FakeClient()

    with caplog.at_level(logging.ERROR, logger="ble_survey_engine.mqtt_processor"):
        processor.on_message(client, None, _message(window_payload()))

    assert client.published == []
    assert "会话已加入勘测点但持久化失败 (survey_points/site-1)" in caplog.text
    assert "采集窗口存储失败" not in caplog.text
    # 记录已归档，会话仍在内存中
    assert processor.archive.list_scans("site-1") == ["scans/site-1/2025-03/r-1"]
    assert processor.point_store.keys() == ["2.00,6.00"]


def test_archive_failure_is_logged_as_not_applied(config, window_payload, caplog) -> None:
    processor = MQTTSurveyProcessor(config)
    processor.archive.blob_store = UnwritableStore(processor.archive.blob_store)
    client = FakeClient()

    with caplog.at_level(logging.ERROR, logger="ble_survey_engine.mqtt_processor"):
        processor.on_message(client, None, _message(window_payload()))

    assert client.published == []
    assert "采集窗口存储失败 (scans/site-1/2025-03/r-1)" in caplog.text
    assert processor.point_store.keys() == []
