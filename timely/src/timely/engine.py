"""调度引擎边界

- EngineConfig: 引擎构造参数，同时作为注册表的查找键（按值比较、可哈希）
- JobOptions: 单个任务的触发参数
- SchedulingEngine: 编排层依赖的引擎协议
- APSchedulerEngine: 基于 APScheduler BackgroundScheduler 的默认实现
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, ConfigDict, Field

from .config.settings import Settings
from .errors import EngineSchedulingError
from .periods import get_timezone

logger = logging.getLogger("timely.engine")


class EngineConfig(BaseModel):
    """引擎构造参数

    冻结模型，可直接作为字典键：取值相同的两份配置映射到同一个引擎实例。
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    num_threads: int = Field(default=5, ge=1)


@dataclass(slots=True)
class JobOptions:
    """单个任务的触发参数，时长单位为毫秒"""

    in_: Optional[int] = None
    at: Optional[datetime] = None
    every: Optional[int] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None
    cron: Optional[str] = None
    singleton: bool = True

    @classmethod
    def from_spec(cls, spec: Mapping[str, Any]) -> "JobOptions":
        return cls(
            in_=spec.get("in"),
            at=spec.get("at"),
            every=spec.get("every"),
            until=spec.get("until"),
            limit=spec.get("limit"),
            cron=spec.get("cron"),
            singleton=spec.get("singleton", True),
        )


# 引擎声明的选项词汇表，选项解析器据此建立白名单
ENGINE_OPTIONS = frozenset(EngineConfig.model_fields)
JOB_OPTIONS = frozenset({"in", "at", "every", "until", "limit", "cron", "singleton"})


class SchedulingEngine(Protocol):
    def schedule(self, job_id: str, fn: Callable[[], Any], options: JobOptions) -> None: ...

    def unschedule(self, job_id: str) -> bool: ...

    def scheduled_jobs(self) -> Sequence[Any]: ...

    def stop(self) -> None: ...


EngineFactory = Callable[[EngineConfig, Settings], SchedulingEngine]


class _LimitedRun:
    """限制执行次数的回调包装

    达到 limit 次后从调度器中移除自身；limit 为 0 时首次触发即移除且不执行。
    """

    def __init__(self, engine: "APSchedulerEngine", job_id: str, fn: Callable[[], Any], limit: int):
        self._engine = engine
        self._job_id = job_id
        self._fn = fn
        self._limit = limit
        self._count = 0
        self._lock = threading.Lock()

    def __call__(self) -> Any:
        with self._lock:
            if self._count >= self._limit:
                self._engine._remove_if_owned(self._job_id, self)
                return None
            self._count += 1
            last = self._count >= self._limit
        try:
            return self._fn()
        finally:
            if last:
                self._engine._remove_if_owned(self._job_id, self)


def _cron_trigger(
    expression: str,
    *,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
    tz: tzinfo,
) -> CronTrigger:
    """解析 cron 表达式

    5 段为标准 crontab（分 时 日 月 周）；6/7 段为 Quartz 风格（秒 分 时 日 月 周 [年]），
    其中 "?" 按 "*" 处理。
    """
    fields = [f.replace("?", "*") for f in expression.split()]
    if len(fields) == 5:
        names = ["minute", "hour", "day", "month", "day_of_week"]
    elif len(fields) in (6, 7):
        names = ["second", "minute", "hour", "day", "month", "day_of_week", "year"]
    else:
        raise ValueError(f"Wrong number of fields in cron expression: {expression!r}")

    values = dict(zip(names, fields))
    return CronTrigger(start_date=start_date, end_date=end_date, timezone=tz, **values)


class APSchedulerEngine:
    """基于 APScheduler 的调度引擎

    每个实例独占一个 BackgroundScheduler 及其线程池，构造即启动。

    Attributes:
        config: 构造该引擎所用的配置
        scheduler: 底层 APScheduler 实例
    """

    def __init__(self, config: EngineConfig, settings: Optional[Settings] = None):
        settings = settings or Settings()
        self.config = config
        self.timezone = get_timezone(settings.timezone)
        self.scheduler = BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(config.num_threads)},
            job_defaults={
                "coalesce": settings.engine.coalesce,
                "misfire_grace_time": settings.engine.misfire_grace_time,
            },
            timezone=self.timezone,
        )
        self.scheduler.start()
        logger.info(
            "调度引擎已启动 num_threads=%d timezone=%s", config.num_threads, self.timezone
        )

    @staticmethod
    def _first_fire(options: JobOptions, now: datetime) -> Optional[datetime]:
        if options.at is not None:
            return options.at
        if options.in_ is not None:
            return now + timedelta(milliseconds=options.in_)
        return None

    def _build_trigger(self, options: JobOptions, now: datetime):
        first_fire = self._first_fire(options, now)

        if options.cron is not None:
            return _cron_trigger(
                options.cron,
                start_date=first_fire,
                end_date=options.until,
                tz=self.timezone,
            )

        if options.every is not None:
            return IntervalTrigger(
                seconds=options.every / 1000,
                start_date=first_fire or now,
                end_date=options.until,
                timezone=self.timezone,
            )

        return DateTrigger(run_date=first_fire or now, timezone=self.timezone)

    def schedule(self, job_id: str, fn: Callable[[], Any], options: JobOptions) -> None:
        """添加或替换任务

        Raises:
            EngineSchedulingError: 触发参数无法被 APScheduler 接受
        """
        now = datetime.now(self.timezone)
        try:
            trigger = self._build_trigger(options, now)
        except (ValueError, TypeError) as e:
            raise EngineSchedulingError(job_id, str(e)) from e

        func = fn
        if options.limit is not None:
            func = _LimitedRun(self, job_id, fn, options.limit)

        job_kwargs: dict[str, Any] = {}
        if options.cron is None and options.every is not None:
            first_fire = self._first_fire(options, now)
            if (first_fire is None or first_fire <= now) and (options.until is None or options.until >= now):
                # IntervalTrigger 只给出晚于当前时刻的触发点，起点不在未来时需显式指定首次触发
                job_kwargs["next_run_time"] = now

        try:
            self.scheduler.add_job(
                func,
                trigger=trigger,
                id=job_id,
                name=job_id,
                replace_existing=True,
                max_instances=1 if options.singleton else self.config.num_threads,
                **job_kwargs,
            )
        except (ValueError, TypeError) as e:
            raise EngineSchedulingError(job_id, str(e)) from e

        logger.debug("任务已加入调度 id=%s trigger=%s", job_id, trigger)

    def _remove_if_owned(self, job_id: str, func: Any) -> None:
        # 仅当 id 仍对应这个包装对象时移除，避免误删替换后的新任务
        job = self.scheduler.get_job(job_id)
        if job is not None and job.func is func:
            self.unschedule(job_id)

    def unschedule(self, job_id: str) -> bool:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("任务已移除 id=%s", job_id)
        return True

    def scheduled_jobs(self) -> list[Any]:
        return self.scheduler.get_jobs()

    def stop(self) -> None:
        """关闭调度器（幂等），不等待执行中的任务"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("调度引擎已停止 num_threads=%d", self.config.num_threads)

    def __repr__(self) -> str:
        return f"APSchedulerEngine(num_threads={self.config.num_threads})"


def default_engine_factory(config: EngineConfig, settings: Settings) -> SchedulingEngine:
    return APSchedulerEngine(config, settings)
