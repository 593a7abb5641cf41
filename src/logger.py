"""日志模块

进程入口先调用 setup_logging, 其余模块直接 from logger import logger

输出:
- 控制台: console_level 及以上
- {log_file}: log_level 及以上的全部日志
- {stem}_delivery: 调度与推送相关日志 (world.scheduler / channels.*), 便于单独排查漏推
- {stem}_error: ERROR 及以上

调度循环每个周期的检查日志走 TRACE, 默认不会写入控制台
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Literal, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level:<8} | {name}:{function}:{line} - {message}"

DELIVERY_MODULES = ("world.scheduler", "channels.")


def normalize_level(level: Union[str, LogLevel], default: str = "INFO") -> str:
    name = str(level).strip().upper()
    if name == "FATAL":
        return "CRITICAL"
    return name if name in ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL") else default


def _is_delivery_record(record) -> bool:
    return record["name"].startswith(DELIVERY_MODULES)


def _sibling(log_file: Path, suffix: str) -> Path:
    return log_file.with_name(f"{log_file.stem}_{suffix}{log_file.suffix}")


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_options = {
        "format": FILE_FORMAT,
        "rotation": "10 MB",
        "compression": "zip",
        "encoding": "utf-8",
        "enqueue": True,
    }

    logger.configure(
        handlers=[
            {
                "sink": sys.stderr,
                "level": normalize_level(console_level),
                "format": CONSOLE_FORMAT,
                "colorize": True,
            },
            {
                "sink": log_file,
                "level": normalize_level(log_level, default="DEBUG"),
                "retention": "14 days",
                **file_options,
            },
            {
                "sink": _sibling(log_file, "delivery"),
                "level": "INFO",
                "filter": _is_delivery_record,
                "retention": "30 days",
                **file_options,
            },
            {
                "sink": _sibling(log_file, "error"),
                "level": "ERROR",
                "retention": "90 days",
                "backtrace": True,
                **file_options,
            },
        ]
    )


__all__ = ["setup_logging", "normalize_level", "logger"]
