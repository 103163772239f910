"""选项解析

把 schedule/stop 的各种入参形式（字典、交替的键值序列、关键字参数、Spec 构建器）
统一折叠为规范化的选项字典，校验白名单，合并默认值，并对各选项取值做归一化。
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import tzinfo
from typing import Any, Iterable, Iterator, Optional

from pydantic import ValidationError

from .engine import ENGINE_OPTIONS, JOB_OPTIONS, EngineConfig, JobOptions
from .errors import InvalidOptionValue, MalformedArguments, UnrecognizedOption
from .periods import Clock, resolve_instant, resolve_period
from .tracker import coerce_id


IDENTITY_OPTIONS = frozenset({"id", "ids"})

# 每个操作接受的选项白名单，导入时根据引擎声明的词汇表一次性确定。
# stop 通常直接接收 schedule 的返回值，因此任务选项在 stop 中被接受并忽略。
SCHEDULE_OPTIONS = frozenset(JOB_OPTIONS | ENGINE_OPTIONS | IDENTITY_OPTIONS)
STOP_OPTIONS = frozenset(IDENTITY_OPTIONS | ENGINE_OPTIONS | JOB_OPTIONS)

_ALLOWED = {
    "schedule": SCHEDULE_OPTIONS,
    "stop": STOP_OPTIONS,
}


def normalize_key(key: Any) -> str:
    """把选项名规范化

    ":in"、"in"、"in_" 等价；"num-threads" 与 "num_threads" 等价。
    """
    text = str(key).strip()
    if text.startswith(":"):
        text = text[1:]
    text = text.replace("-", "_")
    if text.endswith("_") and len(text) > 1:
        text = text.rstrip("_")
    return text


def _normalized(options: Mapping[Any, Any]) -> dict[str, Any]:
    return {normalize_key(k): v for k, v in options.items()}


def fold_arguments(args: Iterable[Any], kwargs: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    """把位置参数与关键字参数折叠为规范化的选项字典

    位置参数可以是单个字典，也可以是交替出现的键值序列；关键字参数覆盖位置参数。

    Raises:
        MalformedArguments: 键值序列长度为奇数
    """
    args = tuple(args)
    if len(args) == 1 and isinstance(args[0], Mapping):
        options = _normalized(args[0])
    elif len(args) % 2:
        raise MalformedArguments(
            f"Expected a mapping or an even number of key/value arguments, got {len(args)}"
        )
    else:
        options = _normalized(dict(zip(args[::2], args[1::2])))

    if kwargs:
        options.update(_normalized(kwargs))
    return options


def validate(options: Mapping[str, Any], operation: str) -> Mapping[str, Any]:
    """校验选项名均在该操作的白名单中

    Raises:
        UnrecognizedOption: 出现白名单之外的选项
    """
    allowed = _ALLOWED[operation]
    for key in options:
        if key not in allowed:
            raise UnrecognizedOption(key, operation)
    return options


def _resolve_limit(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidOptionValue("limit", value, "expected a non-negative integer")
    return value


def _resolve_cron(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidOptionValue("cron", value, "expected a cron expression string")
    return value.strip()


def _resolve_singleton(value: Any) -> bool:
    if not isinstance(value, bool):
        raise InvalidOptionValue("singleton", value, "expected a boolean")
    return value


def resolve(
    options: Mapping[str, Any],
    defaults: Iterable[Mapping[str, Any]] = (),
    *,
    tz: Optional[tzinfo] = None,
    clock: Optional[Clock] = None,
) -> dict[str, Any]:
    """合并默认值并归一化各选项取值

    默认值按给定顺序合并，调用方的选项优先级最高；取值为 None 的选项视为未设置。

    Args:
        options: 已规范化键名的选项字典
        defaults: 默认值字典序列，靠前的优先级更低
        tz: 解析时间表达式所用的时区
        clock: 当前时间来源，用于 "HH:mm"

    Returns:
        归一化后的选项字典
    """
    merged: dict[str, Any] = {}
    for layer in defaults:
        merged.update(layer)
    merged.update(options)

    spec: dict[str, Any] = {}
    for key, value in merged.items():
        if value is None:
            continue
        if key in ("in", "every"):
            spec[key] = resolve_period(value)
        elif key in ("at", "until"):
            spec[key] = resolve_instant(value, tz=tz, clock=clock)
        elif key == "limit":
            spec[key] = _resolve_limit(value)
        elif key == "cron":
            spec[key] = _resolve_cron(value)
        elif key == "singleton":
            spec[key] = _resolve_singleton(value)
        elif key == "id":
            spec[key] = coerce_id(value)
        else:
            spec[key] = value
    return spec


def engine_config(spec: Mapping[str, Any]) -> EngineConfig:
    """提取引擎配置子集，作为注册表的查找键

    Raises:
        InvalidOptionValue: 引擎选项取值非法
    """
    values = {key: spec[key] for key in ENGINE_OPTIONS if key in spec}
    try:
        return EngineConfig(**values)
    except ValidationError as e:
        error = e.errors()[0]
        option = str(error["loc"][0]) if error.get("loc") else "engine"
        raise InvalidOptionValue(option, values.get(option), error["msg"]) from e


def job_options(spec: Mapping[str, Any]) -> JobOptions:
    """提取单个任务的触发参数子集"""
    return JobOptions.from_spec({key: spec[key] for key in JOB_OPTIONS if key in spec})


def _period_arg(option: str, period: tuple) -> Any:
    if not period:
        raise MalformedArguments(f"{option} requires a period")
    return period[0] if len(period) == 1 else list(period)


class Spec(Mapping):
    """不可变的任务描述构建器

    每个方法返回新的 Spec，只记录原始取值，解析在 schedule 时统一进行。
    因此构建器链与等价的普通字典完全一致，调用顺序不影响结果：

        in_(5, "minutes").every("day")
        {"in": [5, "minutes"], "every": "day"}
    """

    __slots__ = ("_options",)

    def __init__(self, options: Optional[Mapping[Any, Any]] = None, **kwargs: Any):
        merged = _normalized(options or {})
        merged.update(_normalized(kwargs))
        self._options = merged

    def __getitem__(self, key: str) -> Any:
        return self._options[normalize_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __repr__(self) -> str:
        return f"Spec({self._options!r})"

    def merge(self, other: Optional[Mapping[Any, Any]] = None, **kwargs: Any) -> "Spec":
        merged = dict(self._options)
        merged.update(_normalized(other or {}))
        merged.update(_normalized(kwargs))
        return Spec(merged)

    def _with(self, key: str, value: Any) -> "Spec":
        return self.merge({key: value})

    def in_(self, *period: Any) -> "Spec":
        """首次触发前的等待时长，如 in_(5, "minutes", 30, "seconds")"""
        return self._with("in", _period_arg("in", period))

    def at(self, time: Any) -> "Spec":
        """首次触发时刻：datetime、毫秒时间戳或 "HH:mm"，已过去则立即执行"""
        return self._with("at", time)

    def every(self, *period: Any) -> "Spec":
        """重复间隔，如 every(1, "hour", 20, "minutes")"""
        return self._with("every", _period_arg("every", period))

    def until(self, time: Any) -> "Spec":
        """重复截止时刻；与 limit 同时存在时先到者生效"""
        return self._with("until", time)

    def limit(self, count: int) -> "Spec":
        """最多执行次数（包含首次）"""
        return self._with("limit", count)

    def cron(self, expression: str) -> "Spec":
        return self._with("cron", expression)

    def singleton(self, flag: bool = True) -> "Spec":
        return self._with("singleton", flag)

    def id_(self, value: Any) -> "Spec":
        return self._with("id", value)

    def num_threads(self, count: int) -> "Spec":
        return self._with("num_threads", count)


def in_(*period: Any) -> Spec:
    return Spec().in_(*period)


def at(time: Any) -> Spec:
    return Spec().at(time)


def every(*period: Any) -> Spec:
    return Spec().every(*period)


def until(time: Any) -> Spec:
    return Spec().until(time)


def limit(count: int) -> Spec:
    return Spec().limit(count)


def cron(expression: str) -> Spec:
    return Spec().cron(expression)


def singleton(flag: bool = True) -> Spec:
    return Spec().singleton(flag)


def id_(value: Any) -> Spec:
    return Spec().id_(value)


def num_threads(count: int) -> Spec:
    return Spec().num_threads(count)
