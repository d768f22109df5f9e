from __future__ import annotations


class SurveyEngineError(Exception):
    """引擎内所有可预期错误的基类"""


class InsufficientSamples(SurveyEngineError):
    """窗口内某信标没有任何非间隙读数（信标未被检测到）"""

    def __init__(self, beacon_id: str | None = None):
        self.beacon_id = beacon_id
        super().__init__(f"信标无有效读数: {beacon_id}" if beacon_id else "无有效读数")


class DegenerateScale(SurveyEngineError):
    """像素/米比例缺失、非正或非有限值"""


class CoordinateKeyMismatch(SurveyEngineError):
    """存储的坐标键与由坐标重新计算的键不一致（数据损坏或外来数据）"""

    def __init__(self, stored_key: str, expected_key: str):
        self.stored_key = stored_key
        self.expected_key = expected_key
        super().__init__(f"坐标键不一致: 存储为 {stored_key!r}，应为 {expected_key!r}")


class PersistenceUnavailable(SurveyEngineError):
    """
    存储读写失败。
    mutation_applied 为 True 表示内存中的修改已生效、仅持久化失败。
    """

    def __init__(self, message: str, key: str | None = None, mutation_applied: bool = False):
        self.key = key
        self.mutation_applied = mutation_applied
        super().__init__(message)


class DuplicateRecord(SurveyEngineError):
    """同一记录 ID 已写入过存储"""


class NoActiveLocation(SurveyEngineError):
    """未设置当前地点时执行了修改操作"""


class HistogramConfigError(SurveyEngineError, ValueError):
    """直方图分箱参数非法或分箱不一致"""
