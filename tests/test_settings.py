import json
from pathlib import Path

import pytest

from agencysync.settings import (
    DELETION_SAFETY_CAP,
    SyncSettings,
    clamp_deletion_cap,
    load_sync_settings,
    save_sync_settings,
)


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ("AGENCYSYNC_DB_PATH", "AGENCYSYNC_CREDENTIALS_PATH", "AGENCYSYNC_CLIENTS_PATH"):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(10, 10), (0, 0), (500, DELETION_SAFETY_CAP), (-3, 0), ("25", 25), ("lots", DELETION_SAFETY_CAP), (None, DELETION_SAFETY_CAP)],
)
def test_clamp_deletion_cap(value, expected) -> None:
    assert clamp_deletion_cap(value) == expected


def test_settings_cannot_raise_the_cap() -> None:
    assert SyncSettings(deletion_cap=1000).deletion_cap == DELETION_SAFETY_CAP


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    settings = load_sync_settings(str(tmp_path / "absent.json"))

    assert settings.deletion_cap == DELETION_SAFETY_CAP
    assert settings.csv_timeout_seconds == 10


def test_file_values_are_validated(tmp_path: Path) -> None:
    path = tmp_path / "sync_settings.json"
    path.write_text(
        json.dumps(
            {
                "database_path": str(tmp_path / "crm.db"),
                "deletion_cap": 75,
                "csv_timeout_seconds": 0,
                "clients_path": 42,
                "unknown": "ignored",
            }
        ),
        encoding="utf-8",
    )

    settings = load_sync_settings(str(path))

    assert settings.database_path == str(tmp_path / "crm.db")
    assert settings.deletion_cap == DELETION_SAFETY_CAP
    assert settings.csv_timeout_seconds == 1
    assert not hasattr(settings, "unknown")


def test_environment_overrides_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "sync_settings.json"
    save_sync_settings(SyncSettings(database_path="from-file.db", deletion_cap=5), str(path))
    monkeypatch.setenv("AGENCYSYNC_DB_PATH", "from-env.db")

    settings = load_sync_settings(str(path))

    assert settings.database_path == "from-env.db"
    assert settings.deletion_cap == 5


def test_save_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "sync_settings.json"
    original = SyncSettings(
        database_path="crm.db", credential_path="sa.json", clients_path="clients.json", deletion_cap=12, csv_timeout_seconds=30
    )

    save_sync_settings(original, str(path))

    assert load_sync_settings(str(path)) == original
