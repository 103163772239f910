"""timely: 声明式任务调度

公开 API：
- schedule / stop: 注册与注销任务（使用进程内全局编排器）
- in_ / at / every / until / limit / cron / singleton / id_ / num_threads: Spec 构建器
- Scheduling: 可注入配置与引擎工厂的编排器
- 异常：见 timely.errors

示例：

    from timely import schedule, stop, in_

    job = schedule(lambda: print("fire!"), in_(5, "minutes").every(2, "hours", 30, "minutes").until("17:30"))
    stop(job)
"""

from .engine import APSchedulerEngine, EngineConfig, JobOptions, SchedulingEngine
from .errors import (
    EngineSchedulingError,
    InvalidOptionValue,
    InvalidPeriod,
    InvalidPeriodUnit,
    InvalidTimeFormat,
    MalformedArguments,
    SchedulingError,
    UnrecognizedOption,
)
from .options import Spec, at, cron, every, id_, in_, limit, num_threads, singleton, until
from .periods import resolve_instant, resolve_period
from .scheduling import Scheduling, get_scheduling, reset_scheduling, schedule, stop
from .utils.logging import setup_logging

__all__ = [
    "schedule",
    "stop",
    "Scheduling",
    "get_scheduling",
    "reset_scheduling",
    "Spec",
    "in_",
    "at",
    "every",
    "until",
    "limit",
    "cron",
    "singleton",
    "id_",
    "num_threads",
    "resolve_period",
    "resolve_instant",
    "setup_logging",
    "SchedulingEngine",
    "APSchedulerEngine",
    "EngineConfig",
    "JobOptions",
    "SchedulingError",
    "InvalidPeriod",
    "InvalidPeriodUnit",
    "InvalidTimeFormat",
    "MalformedArguments",
    "UnrecognizedOption",
    "InvalidOptionValue",
    "EngineSchedulingError",
]
