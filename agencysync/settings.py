"""Runtime configuration for the sync core."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

from agencysync import app_paths

logger = logging.getLogger(__name__)

# Upper bound on database rows removed by one inbound pass. Settings may lower
# it; nothing raises it.
DELETION_SAFETY_CAP = 50

DEFAULT_SETTINGS_PATH = str(app_paths.data_path("sync_settings.json"))
DEFAULT_DB_PATH = os.getenv("AGENCYSYNC_DB_PATH", str(app_paths.data_path("agencysync.db")))
DEFAULT_CREDENTIALS_PATH = os.getenv(
    "AGENCYSYNC_CREDENTIALS_PATH",
    str(app_paths.credentials_path("service_account.json")),
)
DEFAULT_CLIENTS_PATH = os.getenv("AGENCYSYNC_CLIENTS_PATH", "")
DEFAULT_CSV_TIMEOUT = 10


@dataclass
class SyncSettings:
    database_path: str = DEFAULT_DB_PATH
    credential_path: str = DEFAULT_CREDENTIALS_PATH
    clients_path: str = DEFAULT_CLIENTS_PATH
    deletion_cap: int = DELETION_SAFETY_CAP
    csv_timeout_seconds: int = DEFAULT_CSV_TIMEOUT

    def __post_init__(self) -> None:
        self.deletion_cap = clamp_deletion_cap(self.deletion_cap)

    def to_json(self) -> Dict[str, object]:
        return {
            "database_path": self.database_path,
            "credential_path": self.credential_path,
            "clients_path": self.clients_path,
            "deletion_cap": self.deletion_cap,
            "csv_timeout_seconds": self.csv_timeout_seconds,
        }


def clamp_deletion_cap(value: object) -> int:
    try:
        cap = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return DELETION_SAFETY_CAP
    return max(0, min(DELETION_SAFETY_CAP, cap))


def _ensure_sync_settings(path: str) -> Dict[str, object]:
    default_settings: Dict[str, object] = {
        "database_path": DEFAULT_DB_PATH,
        "credential_path": DEFAULT_CREDENTIALS_PATH,
        "clients_path": DEFAULT_CLIENTS_PATH,
        "deletion_cap": DELETION_SAFETY_CAP,
        "csv_timeout_seconds": DEFAULT_CSV_TIMEOUT,
    }
    if not os.path.exists(path):
        return default_settings

    with open(path, "r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed settings file %s", path)
        return default_settings

    merged: Dict[str, object] = dict(default_settings)
    for key, value in data.items():
        if key == "deletion_cap":
            merged[key] = clamp_deletion_cap(value)
        elif key == "csv_timeout_seconds":
            try:
                merged[key] = max(1, min(120, int(value)))
            except (TypeError, ValueError):
                merged[key] = default_settings[key]
        elif key in default_settings and isinstance(value, str):
            merged[key] = value
    return merged


def load_sync_settings(path: Optional[str] = None) -> SyncSettings:
    """Load settings from ``path``; environment variables win over the file."""

    data = _ensure_sync_settings(path or DEFAULT_SETTINGS_PATH)
    return SyncSettings(
        database_path=os.getenv("AGENCYSYNC_DB_PATH") or str(data["database_path"]),
        credential_path=os.getenv("AGENCYSYNC_CREDENTIALS_PATH") or str(data["credential_path"]),
        clients_path=os.getenv("AGENCYSYNC_CLIENTS_PATH") or str(data["clients_path"]),
        deletion_cap=int(data["deletion_cap"]),  # type: ignore[arg-type]
        csv_timeout_seconds=int(data["csv_timeout_seconds"]),  # type: ignore[arg-type]
    )


def save_sync_settings(settings: SyncSettings, path: Optional[str] = None) -> None:
    target = path or DEFAULT_SETTINGS_PATH
    directory = os.path.dirname(target)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(target, "w", encoding="utf-8") as handle:
        json.dump(settings.to_json(), handle, indent=2)


__all__ = [
    "DELETION_SAFETY_CAP",
    "SyncSettings",
    "clamp_deletion_cap",
    "load_sync_settings",
    "save_sync_settings",
]
