"""Audit trail for sync passes that needed attention.

Deletion-cap hits, CSV fallback reads and failed queue jobs are written as
JSON lines to ``logs/sync_events.log`` and kept in a small in-memory ring for
status screens.
"""
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Mapping, Optional

from agencysync import app_paths

EVENT_DELETION_CAP = "deletion_cap_reached"
EVENT_CSV_FALLBACK = "csv_fallback"
EVENT_JOB_FAILED = "job_failed"

_LOGGER = logging.getLogger("agencysync.sync.events")
_HANDLER_CONFIGURED = False
_EVENTS: Deque[Dict[str, object]] = deque(maxlen=50)
_LOCK = threading.Lock()


def _ensure_logger() -> logging.Logger:
    global _HANDLER_CONFIGURED
    if not _HANDLER_CONFIGURED:
        try:
            path = app_paths.logs_path("sync_events.log")
            handler = logging.FileHandler(path, encoding="utf-8")
        except OSError:  # pragma: no cover - depends on filesystem permissions
            handler = None
        else:
            handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
            _LOGGER.addHandler(handler)
        _LOGGER.setLevel(logging.INFO)
        _HANDLER_CONFIGURED = True
    return _LOGGER


def record(kind: str, user_id: Optional[int], details: Optional[Mapping[str, object]] = None) -> Dict[str, object]:
    """Log an event and push it onto the in-memory ring."""

    payload: Dict[str, object] = {
        "kind": kind,
        "user_id": user_id,
        "timestamp": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
    }
    if details:
        payload.update(dict(details))

    logger = _ensure_logger()
    logger.warning("%s", json.dumps(payload, ensure_ascii=False, sort_keys=True, default=str))

    with _LOCK:
        _EVENTS.appendleft(payload)
    return payload


def recent(limit: int = 10, *, kind: Optional[str] = None) -> List[Dict[str, object]]:
    """Return the most recent events, newest first."""

    with _LOCK:
        events = list(_EVENTS)
    if kind is not None:
        events = [event for event in events if event.get("kind") == kind]
    return events[:limit]


def clear() -> None:
    with _LOCK:
        _EVENTS.clear()


__all__ = [
    "EVENT_CSV_FALLBACK",
    "EVENT_DELETION_CAP",
    "EVENT_JOB_FAILED",
    "clear",
    "recent",
    "record",
]
