from __future__ import annotations

import logging

_LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO, *, fmt: str = _LOG_FORMAT) -> logging.Logger:
    """配置控制台日志输出并返回 timely 根记录器

    basicConfig 在 root 已有 handler 时不生效，timely 记录器的级别总是按 level 设置。
    """
    logging.basicConfig(level=level, format=fmt)
    logger = logging.getLogger("timely")
    logger.setLevel(level)
    return logger
