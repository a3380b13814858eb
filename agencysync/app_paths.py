"""Centralised helpers for managing agencysync data directories."""
from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

_HOME_ENV_VAR = "AGENCYSYNC_HOME"


def _detect_base_directory() -> Path:
    value = os.environ.get(_HOME_ENV_VAR)
    if value:
        return Path(value).expanduser().resolve()
    return Path.home().resolve() / ".agencysync"


APP_DIR: Path = _detect_base_directory()
LOG_DIR: Path = APP_DIR / "logs"
CREDENTIALS_DIR: Path = APP_DIR / "credentials"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def ensure_app_structure() -> None:
    """Create the base directories required for application data."""

    for directory in (APP_DIR, LOG_DIR):
        ensure_directory(directory)


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    ensure_app_structure()
    target = APP_DIR.joinpath(*parts)
    if target.parent and not target.parent.exists():
        target.parent.mkdir(parents=True, exist_ok=True)
    return target


def logs_path(*parts: str) -> Path:
    """Return a path inside :data:`LOG_DIR`."""

    ensure_app_structure()
    return LOG_DIR.joinpath(*parts)


def credentials_path(*parts: str) -> Path:
    """Return a path inside :data:`CREDENTIALS_DIR` without creating it."""

    return CREDENTIALS_DIR.joinpath(*parts)


__all__ = [
    "APP_DIR",
    "LOG_DIR",
    "CREDENTIALS_DIR",
    "data_path",
    "logs_path",
    "credentials_path",
    "ensure_app_structure",
    "ensure_directory",
]
