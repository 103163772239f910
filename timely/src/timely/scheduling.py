"""Scheduling: schedule / stop 编排入口

组合选项解析、引擎注册表与任务标识追踪，对外提供两个操作：

- schedule(fn, ...spec): 按时间描述注册回调，返回补全后的任务描述
- stop(...spec): 注销任务，通常直接传入 schedule 的返回值

引擎按配置复用：不传引擎选项时使用默认配置的引擎；传入不同的引擎选项
（如 num_threads）会得到另一个独立的引擎，此后相同选项的调用都复用它。
引擎上最后一个任务被注销后，该引擎随之停止。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .config.settings import Settings, get_settings
from .engine import EngineFactory, SchedulingEngine
from .options import engine_config, fold_arguments, job_options, resolve, validate
from .periods import Clock, get_timezone
from .registry import SchedulerRegistry
from .tracker import JobIdentityTracker

logger = logging.getLogger("timely.scheduling")


class Scheduling:
    """调度编排器

    持有一个引擎注册表和一个任务标识追踪器。应用通常只需要一个实例，
    测试中可以各自构造并注入假引擎。

    Attributes:
        settings: 生效的配置
        registry: 引擎注册表
        tracker: 任务标识追踪器
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        engine_factory: Optional[EngineFactory] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = SchedulerRegistry(self.settings, engine_factory)
        self.tracker = JobIdentityTracker()
        self.timezone = get_timezone(self.settings.timezone)
        self._clock = clock

    def _now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(self.timezone)

    def schedule(self, fn: Callable[[], Any], *spec: Any, **kwargs: Any) -> Dict[str, Any]:
        """按时间描述注册回调

        时间描述可以是字典、Spec 构建器、交替的键值序列或关键字参数，可用选项：

        - in: 首次触发前的等待时长
        - at: 首次触发时刻
        - every: 重复间隔
        - until: 重复截止时刻
        - limit: 最多执行次数
        - cron: cron 表达式
        - singleton: 是否单例执行（默认 True）
        - id: 任务标识，缺省时生成 uuid；相同 id 会替换原任务
        - num_threads: 引擎线程池大小（默认 5），同时决定使用哪个引擎

        时长可以是毫秒数、单位关键字或倍数/单位对，如 [1, "week", 4, "days"]；
        时刻可以是 datetime、毫秒时间戳或 "HH:mm"。

        Returns:
            补全默认值后的任务描述，包含 id 以及 ids ({引擎: [id]})，可直接传给 stop

        Raises:
            UnrecognizedOption: 出现不支持的选项，此时不会产生任何副作用
            EngineSchedulingError: 引擎拒绝了该任务
        """
        options = validate(fold_arguments(spec, kwargs), "schedule")
        resolved = resolve(
            options,
            (self.settings.create_defaults(), self.settings.schedule_defaults()),
            tz=self.timezone,
            clock=self._now,
        )
        job_id = self.tracker.assign_id(resolved.get("id"))
        config = engine_config(resolved)

        with self.registry.lock:
            engine = self.registry.resolve_engine(config)
            try:
                engine.schedule(job_id, fn, job_options(resolved))
            except Exception:
                # 新建的引擎若因此保持空闲，不应残留在注册表中
                if self.registry.evict_if_idle(engine):
                    self.tracker.drop(engine)
                raise
            self.tracker.record(engine, job_id)

        logger.info("任务已调度 id=%s engine=%s", job_id, config)

        resolved["id"] = job_id
        resolved["ids"] = {engine: [job_id]}
        return resolved

    def stop(self, *spec: Any, **kwargs: Any) -> bool:
        """注销任务

        选项可以是字典或关键字参数，通常就是 schedule 的返回值。
        引擎上已没有任务时，引擎本身也会停止。重复调用不会报错。

        Returns:
            是否确实移除了至少一个任务
        """
        options = validate(fold_arguments(spec, kwargs), "stop")
        config = engine_config(
            {**self.settings.create_defaults(), **{k: v for k, v in options.items() if v is not None}}
        )

        with self.registry.lock:
            targets = self.tracker.resolve_targets(options, self.registry.find_engine, config)
            stopped = self._unschedule_all(targets)
            for engine in targets:
                if self.registry.evict_if_idle(engine):
                    self.tracker.drop(engine)

        return stopped

    def _unschedule_all(self, targets: Dict[SchedulingEngine, List[str]]) -> bool:
        stopped = False
        for engine, ids in targets.items():
            for job_id in ids:
                try:
                    removed = engine.unschedule(job_id)
                except Exception as e:
                    logger.error("注销任务失败 id=%s engine=%s error=%s", job_id, engine, e)
                    continue
                self.tracker.forget(engine, job_id)
                if removed:
                    stopped = True
                    logger.info("任务已注销 id=%s", job_id)
                else:
                    logger.debug("任务不存在或已注销 id=%s", job_id)
        return stopped

    def shutdown(self) -> None:
        """停止全部引擎"""
        with self.registry.lock:
            self.registry.shutdown()
            self.tracker.clear()


_scheduling: Scheduling | None = None


def get_scheduling() -> Scheduling:
    """获取全局调度编排器实例"""
    global _scheduling
    if _scheduling is None:
        _scheduling = Scheduling()
    return _scheduling


def reset_scheduling() -> None:
    """停止并丢弃全局调度编排器（主要用于测试与进程退出）"""
    global _scheduling
    if _scheduling is not None:
        _scheduling.shutdown()
        _scheduling = None


def schedule(fn: Callable[[], Any], *spec: Any, **kwargs: Any) -> Dict[str, Any]:
    """使用全局编排器调度任务，参见 Scheduling.schedule"""
    return get_scheduling().schedule(fn, *spec, **kwargs)


def stop(*spec: Any, **kwargs: Any) -> bool:
    """使用全局编排器注销任务，参见 Scheduling.stop"""
    return get_scheduling().stop(*spec, **kwargs)
