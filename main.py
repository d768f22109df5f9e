"""
入口转发

本项目为可复用的包与 CLI：
  - 包名: ble_survey_engine
  - CLI: ble-survey-engine

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `ble_survey_engine.cli:main`。
"""

from ble_survey_engine.cli import main as _cli_main


def main():
    _cli_main()


if __name__ == "__main__":  # pragma: no cover
    main()
