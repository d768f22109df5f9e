from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading

from .assembler import RecordAssembler, summarize_record
from .beacon_store import BeaconGeometryStore
from .collector import parse_window_payload
from .config_manager import ConfigManager
from .mqtt_processor import MQTTSurveyProcessor
from .persistence import FileBlobStore
from .survey_store import SurveyPointStore


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def run_mqtt(args):
    config = ConfigManager(args.config)
    processor = MQTTSurveyProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_summarize(args):
    """离线组装一个采集窗口文件，输出记录 JSON（不写入存储）"""
    config = ConfigManager(args.config)
    geometry = BeaconGeometryStore(config)
    geometry.load()
    with open(args.window, "r", encoding="utf-8") as f:
        window, ctx = parse_window_payload(f.read(), config.get_survey_config()["location_id"])

    ppm = ctx.pixels_per_meter if ctx.pixels_per_meter is not None else config.get_pixels_per_meter()
    record = RecordAssembler(config.get_histogram_spec()).build(
        window,
        location_id=ctx.location_id,
        point_xy_px=ctx.point_xy_px,
        point_xy_m=ctx.point_xy_m,
        pose=ctx.pose,
        beacon_geometry=geometry.all(),
        pixels_per_meter=ppm,
        point_id=ctx.point_id,
        session_id=ctx.session_id,
        record_id=ctx.record_id,
        map_resolution_px=ctx.map_resolution_px,
    )
    out = record.to_dict()
    if args.top:
        quality = config.get_quality_config()
        out = summarize_record(
            record,
            min_samples=int(quality["min_samples"]),
            min_packets_per_second=float(quality["min_packets_per_second"]),
            limit=int(quality["top_beacons"]),
        ).to_dict()
    print(json.dumps(out, sort_keys=True, indent=2, ensure_ascii=False))


def _open_points(args) -> SurveyPointStore:
    config = ConfigManager(args.config)
    location_id = args.location or config.get_survey_config()["location_id"]
    return SurveyPointStore(FileBlobStore(config.get_data_root()), location_id)


def run_points(args):
    store = _open_points(args)
    match args.action:
        case "list":
            for p in store.all_points():
                print(f"{p.coordinate_key}\t{len(p.sessions)} 个会话\t{p.quality.tier.value}\t{p.created_iso}")
            print(f"共 {len(store)} 个勘测点，{store.total_session_count()} 个会话")
        case "export":
            data = store.export_json()
            if args.file:
                with open(args.file, "wb") as f:
                    f.write(data)
            else:
                sys.stdout.write(data.decode("utf-8") + "\n")
        case "import":
            with open(args.file, "rb") as f:
                store.import_json(f.read(), merge=not args.replace)
            print(f"导入完成，共 {len(store)} 个勘测点")
        case "remove":
            if args.session:
                removed = store.remove_session(args.session, args.key)
            else:
                removed = store.remove_point(args.key)
            print("已删除" if removed else "未找到")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ble-survey-engine", description="BLE Survey Engine CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_SURVEY_CONFIG")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 采集窗口监听")
    p_run.set_defaults(func=run_mqtt)

    p_sum = sub.add_parser("summarize", help="离线组装采集窗口文件并输出记录")
    p_sum.add_argument("window", help="采集窗口 JSON 文件")
    p_sum.add_argument("--top", action="store_true", help="仅输出信号最强的信标摘要")
    p_sum.set_defaults(func=run_summarize)

    p_pts = sub.add_parser("points", help="管理勘测点")
    p_pts.add_argument("action", choices=["list", "export", "import", "remove"])
    p_pts.add_argument("--location", default=None, help="地点 ID，默认取配置 survey.location_id")
    p_pts.add_argument("--file", default=None, help="导入/导出文件")
    p_pts.add_argument("--replace", action="store_true", help="导入时整体替换而非合并")
    p_pts.add_argument("--key", default=None, help="要删除的坐标键")
    p_pts.add_argument("--session", default=None, help="要删除的会话 ID")
    p_pts.set_defaults(func=run_points)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    if getattr(args, "action", None) == "import" and not args.file:
        parser.error("import 需要 --file")
    if getattr(args, "action", None) == "remove" and not args.key:
        parser.error("remove 需要 --key")
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    main()
