"""JobIdentityTracker: 任务标识的分配与记录"""

from __future__ import annotations

import threading
import uuid as uuid_lib
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from .engine import EngineConfig, SchedulingEngine
from .errors import InvalidOptionValue, MalformedArguments


def coerce_id(value: Any) -> str:
    """把调用方提供的 id 统一为字符串

    枚举取 value，关键字风格的前导 ":" 会被去掉，其余按 str() 转换。
    """
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool) or value is None:
        raise InvalidOptionValue("id", value, "expected a string or keyword")
    text = str(value)
    if text.startswith(":") and len(text) > 1:
        text = text[1:]
    if not text:
        raise InvalidOptionValue("id", value, "must not be empty")
    return text


class JobIdentityTracker:
    """任务标识追踪器

    记录每个引擎上通过本层注册的任务 id 集合，用于批量停止与排查。
    """

    def __init__(self):
        self._ids: Dict[SchedulingEngine, Set[str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def assign_id(value: Any = None) -> str:
        """返回调用方提供的 id，缺省时生成新的 uuid"""
        if value is None:
            return str(uuid_lib.uuid4())
        return coerce_id(value)

    def record(self, engine: SchedulingEngine, job_id: str) -> None:
        with self._lock:
            self._ids.setdefault(engine, set()).add(job_id)

    def forget(self, engine: SchedulingEngine, job_id: str) -> None:
        with self._lock:
            ids = self._ids.get(engine)
            if ids is not None:
                ids.discard(job_id)

    def ids_for(self, engine: SchedulingEngine) -> Set[str]:
        with self._lock:
            return set(self._ids.get(engine, ()))

    def drop(self, engine: SchedulingEngine) -> None:
        with self._lock:
            self._ids.pop(engine, None)

    def clear(self) -> None:
        with self._lock:
            self._ids.clear()

    def resolve_targets(
        self,
        options: Mapping[str, Any],
        lookup: Callable[[EngineConfig], Optional[SchedulingEngine]],
        config: EngineConfig,
    ) -> Dict[SchedulingEngine, List[str]]:
        """确定 stop 要处理的 {引擎: [id]} 映射

        优先使用调用方给出的 ids；否则按引擎配置查找引擎，并以单个 id 构造映射。
        配置对应的引擎不存在时返回空映射。

        Raises:
            MalformedArguments: 既没有 id 也没有 ids
        """
        ids = options.get("ids")
        if ids is not None:
            if not isinstance(ids, Mapping):
                raise MalformedArguments(f"'ids' must map engines to id sequences, got {ids!r}")
            targets: Dict[SchedulingEngine, List[str]] = {}
            for engine, engine_ids in ids.items():
                if isinstance(engine_ids, (str, bytes)):
                    engine_ids = [engine_ids]
                targets[engine] = [coerce_id(i) for i in engine_ids]
            return targets

        if options.get("id") is None:
            raise MalformedArguments("stop requires an 'id' or 'ids'")

        engine = lookup(config)
        if engine is None:
            return {}
        return {engine: [coerce_id(options["id"])]}
