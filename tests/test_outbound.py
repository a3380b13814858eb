from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from conftest import GENERAL_HEADERS, GENERAL_TAB, FakeSpreadsheet, run

from agencysync.db import CustomerRepository
from agencysync.inbound import InboundReconciler
from agencysync.models import TAB_GENERAL
from agencysync.outbound import NO_CHANGES_MESSAGE, OutboundReconciler, trailing_block
from agencysync.sheets_client import SheetNotFoundError


def _row(serial: str, name: str, mobile: str, policy: str, notes: str = "", **overrides: str) -> List[str]:
    row = {
        "S NO": serial,
        "NAME": name,
        "MOBILE NO": mobile,
        "EMAIL ID": f"{name.split()[0].lower()}@example.com",
        "POLICY NO": policy,
        "Product Type": "Private Car",
        "TYPE": "Motor",
        "AMOUNT": "12,500",
        "MODIFIED EXPIRY DATE": "05/04/2025",
        "STATUS": "due",
        "VEH NO": "",
        "AGENT NOTES": notes,
    }
    row.update(overrides)
    return [row[header] for header in GENERAL_HEADERS]


def _seeded(repository, user_id, rows):
    sheet = FakeSpreadsheet({"general_ins": [GENERAL_HEADERS, *rows]})
    run(InboundReconciler(repository).sync(user_id, [("api", sheet)], GENERAL_TAB, TAB_GENERAL))
    sheet.calls.clear()
    return sheet


def _push(repository, user_id, sheet, **kwargs):
    return run(OutboundReconciler(repository).sync(user_id, sheet, GENERAL_TAB, TAB_GENERAL, **kwargs))


def _by_name(repository, user_id):
    return {record["name"]: record for record in run(repository.find_by_user(user_id))}


def test_unchanged_records_produce_no_writes(repository, user_id) -> None:
    sheet = _seeded(
        repository,
        user_id,
        [_row("1", "Asha Rao", "9900011122", "POL-100", "call after 6"), _row("2", "Ravi Kumar", "9900011123", "POL-101")],
    )

    result = _push(repository, user_id, sheet)

    assert result.message == NO_CHANGES_MESSAGE
    assert result.as_dict() == {
        "success": True,
        "exported": 0,
        "updated": 0,
        "added": 0,
        "deleted": 0,
        "message": NO_CHANGES_MESSAGE,
    }
    assert sheet.writes() == []


def test_changed_record_rewrites_row_and_keeps_unmanaged_columns(repository, user_id) -> None:
    sheet = _seeded(
        repository,
        user_id,
        [_row("1", "Asha Rao", "9900011122", "POL-100", "call after 6"), _row("2", "Ravi Kumar", "9900011123", "POL-101")],
    )
    asha = _by_name(repository, user_id)["Asha Rao"]
    run(repository.update(user_id, asha["id"], {"status": "renewed", "notes": ""}))

    result = _push(repository, user_id, sheet)

    assert (result.updated, result.added, result.deleted) == (1, 0, 0)
    assert result.exported == 2
    [(method, updates)] = sheet.writes()
    assert method == "batch_update_ranges"
    assert updates[0]["range"] == "A2:L2"
    row = sheet.tabs["general_ins"][1]
    assert row[GENERAL_HEADERS.index("STATUS")] == "renewed"
    assert row[GENERAL_HEADERS.index("AGENT NOTES")] == "call after 6"
    assert row[GENERAL_HEADERS.index("AMOUNT")] == "12500"


def test_in_process_status_is_rendered_for_humans(repository, user_id) -> None:
    sheet = _seeded(repository, user_id, [_row("1", "Asha Rao", "9900011122", "POL-100")])
    asha = _by_name(repository, user_id)["Asha Rao"]
    run(repository.update(user_id, asha["id"], {"status": "INPROCESS"}))

    _push(repository, user_id, sheet)

    assert sheet.tabs["general_ins"][1][GENERAL_HEADERS.index("STATUS")] == "IN PROCESS"
    sheet.calls.clear()
    assert _push(repository, user_id, sheet).message == NO_CHANGES_MESSAGE


def test_blank_email_is_written_through(repository, user_id) -> None:
    sheet = _seeded(repository, user_id, [_row("1", "Asha Rao", "9900011122", "POL-100")])
    asha = _by_name(repository, user_id)["Asha Rao"]
    run(repository.update(user_id, asha["id"], {"email": "", "company": ""}))

    result = _push(repository, user_id, sheet)

    assert result.updated == 1
    assert sheet.tabs["general_ins"][1][GENERAL_HEADERS.index("EMAIL ID")] == ""


def test_new_records_are_appended_with_next_serial(repository, user_id) -> None:
    sheet = _seeded(repository, user_id, [_row("1", "Asha Rao", "9900011122", "POL-100"), _row("7", "Ravi Kumar", "1", "P")])
    run(
        repository.insert(
            user_id,
            {"name": "Nina Shah", "mobile_number": "98", "current_policy_no": "POL-9", "product_type": "Bike",
             "vertical": "motor", "premium": 900.5, "status": "due"},
        )
    )
    run(repository.insert(user_id, {"name": "Om Das", "mobile_number": "97", "vertical": "health"}))

    result = _push(repository, user_id, sheet)

    assert (result.added, result.updated) == (2, 0)
    rows = sheet.tabs["general_ins"]
    assert rows[3][0] == "8"
    assert rows[3][GENERAL_HEADERS.index("AMOUNT")] == "900.5"
    assert rows[3][GENERAL_HEADERS.index("TYPE")] == "motor"
    assert rows[4][0] == "9"
    assert rows[4][GENERAL_HEADERS.index("TYPE")] == "health"


def test_trailing_rows_are_removed_and_middle_rows_cleared(repository, user_id) -> None:
    sheet = _seeded(
        repository,
        user_id,
        [
            _row("1", "Asha Rao", "1", "POL-1"),
            _row("2", "Ravi Kumar", "2", "POL-2", "keep me?"),
            _row("3", "Meera Iyer", "3", "POL-3"),
            _row("4", "Om Das", "4", "POL-4"),
            _row("5", "Nina Shah", "5", "POL-5"),
        ],
    )
    records = _by_name(repository, user_id)
    doomed = [records[name] for name in ("Ravi Kumar", "Om Das", "Nina Shah")]
    for record in doomed:
        run(repository.delete(user_id, record["id"]))

    result = _push(repository, user_id, sheet, deleted_customers=doomed)

    assert result.deleted == 3
    assert ("delete_row_range", (100, 4, 6)) in sheet.writes()
    rows = sheet.tabs["general_ins"]
    assert len(rows) == 4
    assert rows[2][0] == "2"
    assert all(cell == "" for cell in rows[2][1:])
    assert rows[3][1] == "Meera Iyer"


def test_deleted_records_are_not_re_added(repository, user_id) -> None:
    sheet = _seeded(repository, user_id, [_row("1", "Asha Rao", "1", "POL-1"), _row("2", "Ravi Kumar", "2", "POL-2")])
    ravi = _by_name(repository, user_id)["Ravi Kumar"]

    result = _push(repository, user_id, sheet, deleted_customers=[ravi])

    assert (result.deleted, result.added) == (1, 0)
    assert len(sheet.tabs["general_ins"]) == 2


def test_missing_tab_fails_before_writing(repository, user_id) -> None:
    sheet = FakeSpreadsheet({"other": [["x"]]})
    run(repository.insert(user_id, {"name": "Asha", "vertical": "motor"}))

    with pytest.raises(SheetNotFoundError):
        _push(repository, user_id, sheet)
    assert sheet.writes() == []


def test_empty_tab_gets_header_row(repository, user_id) -> None:
    sheet = FakeSpreadsheet({"general_ins": []})
    run(repository.insert(user_id, {"name": "Asha Rao", "mobile_number": "1", "vertical": "motor"}))

    result = _push(repository, user_id, sheet)

    assert result.added == 1
    rows = sheet.tabs["general_ins"]
    assert rows[0] == list(GENERAL_TAB.schema.values())
    assert rows[1][1] == "Asha Rao"


def test_round_trip_through_the_sheet(repository, user_id, tmp_path: Path) -> None:
    sheet = FakeSpreadsheet({"general_ins": [GENERAL_HEADERS]})
    original = {
        "name": "Asha Rao",
        "mobile_number": "9900011122",
        "email": "asha@example.com",
        "current_policy_no": "POL-100",
        "product_type": "Family Floater",
        "vertical": "health",
        "premium": 8400.0,
        "renewal_date": "01/02/2026",
        "status": "INPROCESS",
        "registration_no": "",
    }
    run(repository.insert(user_id, original))
    _push(repository, user_id, sheet)

    fresh = CustomerRepository(tmp_path / "fresh.db")
    fresh_user = fresh.add_user_sync("agent@kmginsurance.in")
    run(InboundReconciler(fresh).sync(fresh_user, [("api", sheet)], GENERAL_TAB, TAB_GENERAL))

    [imported] = run(fresh.find_by_user(fresh_user))
    for field, value in original.items():
        assert (imported[field] or "") == value, field


def test_trailing_block_only_counts_contiguous_targets() -> None:
    assert trailing_block({4, 6, 7}, 7) == [6, 7]
    assert trailing_block({3, 5}, 7) == []
    assert trailing_block({7}, 7) == [7]
