from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from agencysync.client_config import (
    DEFAULT_CLIENTS,
    ClientRegistry,
    ConfigurationError,
    SchemaNotFoundError,
    load_registry,
)
from agencysync.models import TAB_GENERAL, TAB_LEADS, TAB_LIFE


def test_builtin_registry_is_valid() -> None:
    registry = ClientRegistry.default()

    assert set(registry.keys()) == {"kmg", "joban"}
    joban = registry.get("joban")
    assert joban.tab(TAB_GENERAL).tab_name == "general_ins"
    assert joban.tab(TAB_LIFE).schema["premium_mode"] == "MD"
    assert registry.get("kmg").tab(TAB_LEADS).tab_name == "Lead_Management"


def test_clients_resolve_from_user_email() -> None:
    registry = ClientRegistry.default()

    assert registry.for_identifier("desk@JobanPutra.com").key == "joban"
    assert registry.for_identifier("someone@kmginsurance.in").key == "kmg"
    assert registry.for_identifier("unknown@example.com").key == "kmg"
    assert registry.for_identifier(None).key == "kmg"


def test_missing_tab_type_raises_schema_error() -> None:
    payload = {"solo": {"spreadsheet_id": "sheet-1", "tabs": {TAB_GENERAL: DEFAULT_CLIENTS["kmg"]["tabs"][TAB_GENERAL]}}}
    client = ClientRegistry.from_mapping(payload).get("solo")

    with pytest.raises(SchemaNotFoundError, match="No schema found for tab type 'life'"):
        client.tab(TAB_LIFE)


def test_required_fields_are_enforced() -> None:
    payload = copy.deepcopy({"kmg": DEFAULT_CLIENTS["kmg"]})
    del payload["kmg"]["tabs"][TAB_GENERAL]["schema"]["mobile_number"]

    with pytest.raises(ConfigurationError, match="missing fields: mobile_number"):
        ClientRegistry.from_mapping(payload)


def test_duplicate_headers_are_rejected() -> None:
    payload = copy.deepcopy({"kmg": DEFAULT_CLIENTS["kmg"]})
    payload["kmg"]["tabs"][TAB_GENERAL]["schema"]["notes"] = "NAME"

    with pytest.raises(ConfigurationError, match="maps 'NAME'"):
        ClientRegistry.from_mapping(payload)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda client: client.pop("spreadsheet_id"),
        lambda client: client.update(tabs={}),
        lambda client: client["tabs"][TAB_GENERAL].update(tab_name="  "),
        lambda client: client["tabs"][TAB_GENERAL].update(schema={}),
    ],
)
def test_structural_problems_are_rejected(mutate) -> None:
    payload = copy.deepcopy({"kmg": DEFAULT_CLIENTS["kmg"]})
    mutate(payload["kmg"])

    with pytest.raises(ConfigurationError):
        ClientRegistry.from_mapping(payload)


def test_registry_file_with_default_key(tmp_path: Path) -> None:
    path = tmp_path / "clients.json"
    path.write_text(json.dumps({"default": "joban", "clients": DEFAULT_CLIENTS}), encoding="utf-8")

    registry = load_registry(str(path))

    assert registry.default_client.key == "joban"
    assert registry.for_identifier("x@example.com").key == "joban"


def test_unreadable_registry_file(tmp_path: Path) -> None:
    path = tmp_path / "clients.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ConfigurationError):
        ClientRegistry.from_file(path)
