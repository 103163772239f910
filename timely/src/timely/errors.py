"""调度相关异常定义

所有异常均继承自 SchedulingError，便于调用方统一捕获。
输入校验类异常同时继承 ValueError。
"""

from __future__ import annotations

from typing import Any


class SchedulingError(Exception):
    """调度基础异常类"""

    pass


class InvalidPeriod(SchedulingError, ValueError):
    """周期取值非法（负数、类型错误、缺少单位等）"""

    pass


class InvalidPeriodUnit(InvalidPeriod):
    """未知的周期单位关键字

    Attributes:
        unit: 无法识别的单位
    """

    def __init__(self, unit: Any):
        self.unit = unit
        super().__init__(f"Invalid period unit: {unit!r}")


class InvalidTimeFormat(SchedulingError, ValueError):
    """时间取值无法解析为绝对时刻"""

    def __init__(self, value: Any, message: str | None = None):
        self.value = value
        if message is None:
            message = f"Invalid time value {value!r}, expected datetime, epoch millis or 'HH:mm'"
        super().__init__(message)


class MalformedArguments(SchedulingError, ValueError):
    """参数序列无法折叠为选项字典"""

    pass


class UnrecognizedOption(SchedulingError, ValueError):
    """出现了当前操作不接受的选项

    Attributes:
        option: 无法识别的选项名
        operation: 当前操作名（schedule / stop）
    """

    def __init__(self, option: str, operation: str):
        self.option = option
        self.operation = operation
        super().__init__(f"{option!r} is not a valid option for {operation}")


class InvalidOptionValue(SchedulingError, ValueError):
    """选项取值类型或范围非法"""

    def __init__(self, option: str, value: Any, reason: str):
        self.option = option
        self.value = value
        super().__init__(f"Invalid value for {option!r}: {value!r} ({reason})")


class EngineSchedulingError(SchedulingError):
    """调度引擎拒绝了任务（例如 cron 表达式非法）"""

    def __init__(self, job_id: str, message: str):
        self.job_id = job_id
        super().__init__(f"Engine rejected job {job_id!r}: {message}")
