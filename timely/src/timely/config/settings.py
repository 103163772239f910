from __future__ import annotations

from pydantic import BaseModel, Field
from pathlib import Path
import yaml
from typing import Optional
import logging
import os

logger = logging.getLogger("timely.config")


class EngineDefaults(BaseModel):
    # 调度引擎的默认构造参数；num_threads 同时参与引擎实例的选择
    num_threads: int = Field(default=5, ge=1)
    coalesce: bool = Field(default=True)
    # None 表示无论错过多久都补执行
    misfire_grace_time: Optional[int] = Field(default=None, ge=1)


class JobDefaults(BaseModel):
    singleton: bool = Field(default=True)


class Settings(BaseModel):
    # None 表示使用系统本地时区
    timezone: Optional[str] = Field(default=None)
    engine: EngineDefaults = Field(default_factory=EngineDefaults)
    job: JobDefaults = Field(default_factory=JobDefaults)

    def __init__(self, **data):
        super().__init__(**data)
        # 支持环境变量覆盖
        if "TIMELY_TIMEZONE" in os.environ:
            self.timezone = os.environ["TIMELY_TIMEZONE"] or None
        if "TIMELY_NUM_THREADS" in os.environ:
            try:
                self.engine.num_threads = max(1, int(os.environ["TIMELY_NUM_THREADS"]))
            except ValueError:
                logger.warning(
                    f"忽略无效的 TIMELY_NUM_THREADS: {os.environ['TIMELY_NUM_THREADS']!r}"
                )

    @staticmethod
    def from_yaml(path: Optional[Path | str] = None) -> "Settings":
        """从 YAML 文件加载配置"""
        if path is None:
            path = _discover_yaml_path()

        path = Path(path)
        if not path.exists():
            logger.debug(f"配置文件不存在，使用默认配置: {path}")
            return Settings()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}

            return Settings(
                timezone=data.get("timezone"),
                engine=EngineDefaults(**(data.get("engine") or {})),
                job=JobDefaults(**(data.get("job") or {})),
            )

        except Exception as e:
            logger.error(f"加载配置文件失败: {e}")
            return Settings()

    def create_defaults(self) -> dict:
        """参与引擎选择的默认选项"""
        return {"num_threads": self.engine.num_threads}

    def schedule_defaults(self) -> dict:
        """单个任务的默认选项"""
        return {"singleton": self.job.singleton}


def _discover_yaml_path() -> Path:
    """向上递归查找 timely.yaml 文件"""
    start = Path(__file__).resolve()
    for parent in start.parents:
        candidate = parent / "timely.yaml"
        if candidate.exists():
            return candidate
    # 默认位置
    return Path(__file__).resolve().parent.parent.parent / "timely.yaml"


_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例"""
    global _settings
    if _settings is None:
        _settings = Settings.from_yaml()
    return _settings


def reset_settings() -> None:
    """清除缓存的全局配置（主要用于测试）"""
    global _settings
    _settings = None
