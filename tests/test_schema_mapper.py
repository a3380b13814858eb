from __future__ import annotations

import pytest

from agencysync.schema_mapper import ColumnMap, is_serial_header


def test_maps_follow_live_header_positions() -> None:
    column_map = ColumnMap.build(
        {"name": "NAME", "mobile_number": "MOBILE NO", "status": "STATUS"},
        ["STATUS", "Custom", " NAME ", "MOBILE NO"],
    )

    assert column_map.forward == {"status": 0, "name": 2, "mobile_number": 3}
    assert column_map.field_for("Custom") is None
    assert column_map.field_for("NAME") == "name"
    assert column_map.get_cell(["due", "x", " Asha ", "99"], "name") == "Asha"


def test_schema_fields_missing_from_sheet_are_skipped() -> None:
    column_map = ColumnMap.build({"name": "NAME", "g_code": "G CODE"}, ["NAME"])

    assert not column_map.has("g_code")
    assert column_map.get_cell(["Asha"], "g_code") == ""
    assert column_map.build_row({"name": "Asha", "g_code": "G1"}) == ["Asha"]


def test_alias_fields_resolve_to_stored_columns() -> None:
    column_map = ColumnMap.build({"chq_no_date": "CHQ NO & DATE", "others": "OTHERS"}, ["OTHERS", "CHQ NO & DATE"])

    assert column_map.column_for("cheque_no") == 1
    assert column_map.column_for("chq_no_date") == 1
    assert column_map.column_for("others_doc") == 0


def test_duplicate_sheet_headers_use_leftmost_column() -> None:
    column_map = ColumnMap.build({"name": "NAME"}, ["NAME", "NAME"])

    assert column_map.column_for("name") == 0


@pytest.mark.parametrize("header", ["S NO", "S.No.", "s no", "SNO", "Serial No", "S. NO", "S_NO"])
def test_serial_headers_are_recognised(header: str) -> None:
    assert is_serial_header(header)


@pytest.mark.parametrize("header", ["SNOW", "NAME", "", "Serial Number"])
def test_other_headers_are_not_serials(header: str) -> None:
    assert not is_serial_header(header)


def test_build_row_preserves_unmanaged_and_serial_columns() -> None:
    column_map = ColumnMap.build(
        {"name": "NAME", "email": "EMAIL", "notes": "REMARKS"},
        ["S NO", "NAME", "EMAIL", "REMARKS", "Agent Memo"],
    )
    existing = ["4", "Asha", "old@example.com", "keep", "  memo  "]

    row = column_map.build_row({"name": "Asha Rao", "email": "", "notes": ""}, existing, always_write={"email"})

    assert row == ["4", "Asha Rao", "", "keep", "  memo  "]


def test_build_row_for_new_row_uses_given_serial() -> None:
    column_map = ColumnMap.build({"name": "NAME"}, ["S.NO", "NAME", "Extra"])

    assert column_map.build_row({"name": "Asha"}, None, serial="12") == ["12", "Asha", ""]
