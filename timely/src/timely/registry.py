"""SchedulerRegistry: 引擎配置 -> 引擎实例的注册表"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from .config.settings import Settings
from .engine import EngineConfig, EngineFactory, SchedulingEngine, default_engine_factory

logger = logging.getLogger("timely.registry")


@dataclass
class SchedulerRegistryEntry:
    """注册表条目：一个存活的引擎实例及其配置"""

    config: EngineConfig
    engine: SchedulingEngine


class SchedulerRegistry:
    """引擎注册表

    以 EngineConfig 的值作为键，每种配置最多对应一个存活的引擎实例：
    首次使用时创建，之后复用；引擎不再持有任务时停止并移除。

    查找+创建与空闲检查+移除都在 lock 内完成。lock 为可重入锁，
    编排层可以在整个 schedule/stop 流程外层持有它。

    Attributes:
        lock: 保护注册表的可重入锁
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine_factory: Optional[EngineFactory] = None,
    ):
        self._settings = settings or Settings()
        self._engine_factory = engine_factory or default_engine_factory
        self._entries: Dict[EngineConfig, SchedulerRegistryEntry] = {}
        self.lock = threading.RLock()

    def resolve_engine(self, config: EngineConfig) -> SchedulingEngine:
        """返回该配置对应的引擎，不存在时创建

        已存在的引擎直接返回，不会重新应用配置。
        """
        with self.lock:
            entry = self._entries.get(config)
            if entry is not None:
                return entry.engine

            engine = self._engine_factory(config, self._settings)
            self._entries[config] = SchedulerRegistryEntry(config=config, engine=engine)
            logger.info("创建调度引擎 config=%s total=%d", config, len(self._entries))
            return engine

    def find_engine(self, config: EngineConfig) -> Optional[SchedulingEngine]:
        """只查找，不创建"""
        with self.lock:
            entry = self._entries.get(config)
            return entry.engine if entry else None

    def config_of(self, engine: SchedulingEngine) -> Optional[EngineConfig]:
        with self.lock:
            for config, entry in self._entries.items():
                if entry.engine is engine:
                    return config
            return None

    def evict_if_idle(self, engine: SchedulingEngine) -> bool:
        """引擎已无任务时停止并移除

        传入的若是已被替换或已移除的旧引擎，只负责停止它，不影响注册表中的条目。

        Returns:
            引擎是否处于空闲状态并被停止
        """
        with self.lock:
            if engine.scheduled_jobs():
                return False

            engine.stop()
            config = self.config_of(engine)
            if config is not None:
                del self._entries[config]
                logger.info("移除空闲调度引擎 config=%s total=%d", config, len(self._entries))
            return True

    def shutdown(self) -> None:
        """停止所有引擎并清空注册表"""
        with self.lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            try:
                entry.engine.stop()
            except Exception as e:
                logger.warning("停止调度引擎失败 config=%s error=%s", entry.config, e)
        if entries:
            logger.info("已停止全部调度引擎 count=%d", len(entries))

    def engines(self) -> Dict[EngineConfig, SchedulingEngine]:
        """返回当前注册的引擎字典副本"""
        with self.lock:
            return {config: entry.engine for config, entry in self._entries.items()}

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, config: EngineConfig) -> bool:
        with self.lock:
            return config in self._entries
