"""周期与时间归一化

- resolve_period: 把毫秒数、单位关键字、倍数/单位对序列统一转换为毫秒
- resolve_instant: 把 datetime、毫秒时间戳、"HH:mm" 字符串统一转换为带时区的绝对时刻

两个函数均为纯函数；"HH:mm" 的解析依赖当前时间，时钟通过参数注入。
"""

from __future__ import annotations

import math
import numbers
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from tzlocal import get_localzone

from .errors import InvalidPeriod, InvalidPeriodUnit, InvalidTimeFormat

Clock = Callable[[], datetime]

_SECOND = 1000
_MINUTE = 60 * _SECOND
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR
_WEEK = 7 * _DAY

# 单数与复数形式等价
UNITS: dict[str, int] = {
    "second": _SECOND,
    "seconds": _SECOND,
    "minute": _MINUTE,
    "minutes": _MINUTE,
    "hour": _HOUR,
    "hours": _HOUR,
    "day": _DAY,
    "days": _DAY,
    "week": _WEEK,
    "weeks": _WEEK,
}

_HH_MM = re.compile(r"^(\d{1,2}):(\d{2})$")


def get_timezone(name: Optional[str] = None) -> tzinfo:
    """获取当前生效的时区

    Args:
        name: IANA 时区名称，None 表示使用系统本地时区

    Returns:
        时区对象
    """
    if name is None:
        return get_localzone()
    return ZoneInfo(name)


def unit_factor(unit: Any) -> int:
    """返回单位关键字对应的毫秒数

    Raises:
        InvalidPeriodUnit: 单位不在可识别集合中
    """
    if not isinstance(unit, str):
        raise InvalidPeriodUnit(unit)
    factor = UNITS.get(unit.lstrip(":").lower())
    if factor is None:
        raise InvalidPeriodUnit(unit)
    return factor


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    # 整数总是有限的，且可能大到无法转换为 float
    return isinstance(value, numbers.Integral) or math.isfinite(value)


def _flatten(items: Any) -> list[Any]:
    # [(1, "week"), (4, "days")] 与 [1, "week", 4, "days"] 等价
    tokens: list[Any] = []
    for item in items:
        if isinstance(item, (list, tuple)):
            tokens.extend(item)
        else:
            tokens.append(item)
    return tokens


def resolve_period(value: Any) -> int:
    """把周期表达式转换为毫秒数

    支持的形式：
    - 非负整数：已是毫秒，原样返回
    - 单位关键字：如 "minute"、"hours"，倍数默认为 1
    - 倍数/单位对序列：如 [1, "week", 4, "days", 30, "minutes"]，逐对求和
    - timedelta

    Args:
        value: 周期表达式

    Returns:
        毫秒数

    Raises:
        InvalidPeriodUnit: 单位无法识别
        InvalidPeriod: 取值为负或类型不支持
    """
    if isinstance(value, timedelta):
        millis = value / timedelta(milliseconds=1)
        if millis < 0:
            raise InvalidPeriod(f"Period must not be negative: {value!r}")
        return int(round(millis))

    if _is_number(value):
        if not _is_finite(value) or value < 0:
            raise InvalidPeriod(f"Period must be a finite non-negative number: {value!r}")
        return int(round(value))

    if isinstance(value, str):
        return unit_factor(value)

    if isinstance(value, (list, tuple)):
        tokens = _flatten(value)
        if len(tokens) == 1 and _is_number(tokens[0]):
            return resolve_period(tokens[0])

        total: float = 0
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if _is_number(token):
                if i + 1 >= len(tokens) or _is_number(tokens[i + 1]):
                    raise InvalidPeriod(
                        f"Multiplier {token!r} is not followed by a unit in {value!r}"
                    )
                if not _is_finite(token) or token < 0:
                    raise InvalidPeriod(f"Multiplier must be a finite non-negative number: {token!r}")
                try:
                    total += token * unit_factor(tokens[i + 1])
                except OverflowError as e:
                    raise InvalidPeriod(f"Period is too large: {value!r}") from e
                i += 2
            else:
                total += unit_factor(token)
                i += 1
        if not _is_finite(total):
            raise InvalidPeriod(f"Period is too large: {value!r}")
        return int(round(total))

    raise InvalidPeriod(f"Unsupported period value: {value!r}")


def resolve_instant(
    value: Any,
    *,
    tz: Optional[tzinfo] = None,
    clock: Optional[Clock] = None,
) -> datetime:
    """把时间表达式转换为带时区的绝对时刻

    支持的形式：
    - datetime：原样返回，无时区信息时视为 tz 时区
    - 非负整数：毫秒级 Unix 时间戳
    - "HH:mm"：下一次出现的该时刻（今天若已过则为明天），秒数为 0

    Args:
        value: 时间表达式
        tz: 生效时区，默认系统本地时区
        clock: 返回当前时间的可调用对象，仅 "HH:mm" 形式使用

    Returns:
        带时区的 datetime

    Raises:
        InvalidTimeFormat: 无法解析
    """
    tz = tz or get_timezone()

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz)
        return value

    if isinstance(value, int) and not isinstance(value, bool):
        if value < 0:
            raise InvalidTimeFormat(value, f"Epoch millis must not be negative: {value!r}")
        try:
            instant = datetime.fromtimestamp(value // 1000, timezone.utc) + timedelta(milliseconds=value % 1000)
            return instant.astimezone(tz)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidTimeFormat(value, f"Epoch millis out of range: {value!r}") from e

    if isinstance(value, str):
        match = _HH_MM.match(value.strip())
        if not match:
            raise InvalidTimeFormat(value)
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise InvalidTimeFormat(value)

        now = clock() if clock else datetime.now(tz)
        if now.tzinfo is None:
            now = now.replace(tzinfo=tz)
        else:
            now = now.astimezone(tz)

        candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if candidate < now:
            candidate = candidate + timedelta(days=1)
        return candidate

    raise InvalidTimeFormat(value)
