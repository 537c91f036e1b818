"""Loguru-based logging setup."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level:<8}</level> | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {thread.name} | {name}:{line} | {message}"


def setup_logger(log_dir: Path | None = None, verbose: bool = False) -> None:
    """Console sink, plus a rotating pixelbridge.log when a log directory is given."""
    logger.remove()

    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=_CONSOLE_FORMAT, colorize=True)

    if log_dir is None:
        return
    log_dir.mkdir(parents=True, exist_ok=True)
    # Written from both the CLI thread and the sync worker thread
    logger.add(
        str(log_dir / "pixelbridge.log"),
        level="DEBUG",
        format=_FILE_FORMAT,
        rotation="5 MB",
        retention="7 days",
        encoding="utf-8",
        enqueue=True,
    )
