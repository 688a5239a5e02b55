"""日志模块

全部日志统一走 loguru：
- 控制台按 console_level 输出，文件按 log_level 输出，ERROR 以上另存一份便于排查投递失败；
- uvicorn / aiosqlite 等使用标准库 logging 的第三方库，通过 _LoguruBridge 转发到 loguru。

级别支持: TRACE/DEBUG/INFO/WARNING/ERROR/CRITICAL (兼容别名 FATAL -> CRITICAL)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Literal, Union

from loguru import logger

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "FATAL"]

CONSOLE_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {process}:{thread.name} | {name}:{function}:{line} - {message}"

_LEVEL_ALIAS = {"FATAL": "CRITICAL"}

# 这些库使用标准库 logging
_BRIDGED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "aiosqlite")


class _LoguruBridge(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 跳过 logging 模块自身的栈帧，让 loguru 记录真正的调用位置
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _normalize_level(level: Union[str, LogLevel]) -> str:
    return _LEVEL_ALIAS.get(str(level).upper(), str(level).upper())


def _bridge_std_logging(level: str) -> None:
    bridge = _LoguruBridge()
    for name in _BRIDGED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [bridge]
        std_logger.propagate = False
        std_logger.setLevel(logging.DEBUG if level in ("TRACE", "DEBUG") else level)


def setup_logging(
    log_level: LogLevel,
    log_file: Union[str, Path],
    console_level: LogLevel = "INFO",
) -> None:
    log_file = Path(log_file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    error_log_file = log_file.with_name(f"{log_file.stem}_error{log_file.suffix}")

    file_level = _normalize_level(log_level)
    console_lv = _normalize_level(console_level)

    logger.configure(
        handlers=[
            {"sink": sys.stderr, "level": console_lv, "format": CONSOLE_FORMAT, "colorize": True},
            {
                "sink": log_file,
                "level": file_level,
                "format": FILE_FORMAT,
                "rotation": "00:00",
                "retention": "14 days",
                "compression": "zip",
                "encoding": "utf-8",
                "enqueue": True,
            },
            {
                "sink": error_log_file,
                "level": "ERROR",
                "format": FILE_FORMAT,
                "rotation": "5 MB",
                "retention": 10,
                "encoding": "utf-8",
                "backtrace": True,
                "enqueue": True,
            },
        ]
    )
    _bridge_std_logging(min(file_level, console_lv, key=lambda name: logger.level(name).no))


__all__ = ["setup_logging", "logger"]
