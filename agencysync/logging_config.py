"""Root logger setup for processes embedding the sync core."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from agencysync import app_paths

LOG_LEVEL_ENV = "AGENCYSYNC_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LOG_PATH: Optional[Path] = None


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV) or logging.INFO
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return int(level)


def configure_logging(level: Optional[Union[int, str]] = None, path: Optional[Path] = None) -> Path:
    """Send every ``agencysync`` logger to ``logs/agencysync.log``.

    ``level`` defaults to ``AGENCYSYNC_LOG_LEVEL`` or INFO, which keeps one
    summary line per sync pass plus fallback and deletion-cap warnings.
    Repeated calls return the first log path and add no handlers.
    """

    global _LOG_PATH

    if _LOG_PATH is not None:
        return _LOG_PATH

    log_path = Path(path) if path is not None else app_paths.logs_path("agencysync.log")
    log_path.parent.mkdir(parents=True, exist_ok=True)

    resolved = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(resolved if not root_logger.handlers else min(root_logger.level, resolved))

    if not any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(log_path.resolve())
        for handler in root_logger.handlers
    ):
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    _LOG_PATH = log_path
    logging.getLogger(__name__).debug("Sync logging configured at %s", log_path)
    return log_path


def get_log_path() -> Path:
    return _LOG_PATH if _LOG_PATH is not None else configure_logging()


__all__ = ["LOG_FORMAT", "LOG_LEVEL_ENV", "configure_logging", "get_log_path"]
