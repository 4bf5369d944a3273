"""Loguru setup for the bridge.

stdlib records (uvicorn, starlette, anyio, ...) are re-emitted through
loguru, so the service writes a single stream.  A second, rotated file sink
can be enabled for hosts where stderr is not collected.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "asyncio", "watchfiles")


class _InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging-module frames so the record points at the caller.
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", *, json_logs: bool = False, log_file: str | Path | None = None) -> None:
    """Make loguru the only sink.  Calling it again replaces the previous setup.

    Parameters
    ----------
    level:
        Minimum level for every sink.
    json_logs:
        Emit one JSON object per record on stderr instead of coloured text.
    log_file:
        Optional path of an additional sink, rotated at 10 MB.
    """
    level = level.upper()

    logger.remove()
    if json_logs:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, rotation="10 MB", retention=5, enqueue=True)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    # uvicorn installs its own handlers; route them through the root logger instead.
    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.propagate = True

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging initialised (level={}, json={})", level, json_logs)
