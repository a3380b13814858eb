from __future__ import annotations

import asyncio
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))
os.environ.setdefault("AGENCYSYNC_HOME", tempfile.mkdtemp(prefix="agencysync-tests-"))

from agencysync import sync_events  # noqa: E402
from agencysync.client_config import TabConfig  # noqa: E402
from agencysync.db import CustomerRepository  # noqa: E402
from agencysync.sheets_client import SheetNotFoundError, SheetsApiResponseError  # noqa: E402

_CELL_RE = re.compile(r"^([A-Z]+)(\d+)(?::([A-Z]+)(\d+))?$")


def _column_index(letters: str) -> int:
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - 64)
    return index - 1


def _parse_range(range_spec: str) -> Tuple[int, int, int, int]:
    match = _CELL_RE.match(range_spec)
    assert match, f"unexpected range {range_spec!r}"
    start_col, start_row, end_col, end_row = match.groups()
    end_col = end_col or start_col
    end_row = end_row or start_row
    return _column_index(start_col), int(start_row), _column_index(end_col), int(end_row)


class FakeSpreadsheet:
    """In-memory stand-in for :class:`SpreadsheetAdapter` that records writes."""

    def __init__(self, tabs: Optional[Mapping[str, Sequence[Sequence[Any]]]] = None) -> None:
        self.tabs: Dict[str, List[List[str]]] = {
            title: [[str(cell) for cell in row] for row in rows] for title, rows in (tabs or {}).items()
        }
        self.sheet_ids: Dict[str, int] = {title: 100 + offset for offset, title in enumerate(self.tabs)}
        self.calls: List[Tuple[str, Any]] = []
        self.fail_reads = False

    # -- helpers ------------------------------------------------------
    def rows(self, tab: str) -> List[List[str]]:
        """Return the tab the way the API does: trailing blanks trimmed."""

        trimmed = []
        for row in self.tabs.get(tab, []):
            cells = list(row)
            while cells and cells[-1] == "":
                cells.pop()
            trimmed.append(cells)
        while trimmed and not trimmed[-1]:
            trimmed.pop()
        return trimmed

    def writes(self) -> List[Tuple[str, Any]]:
        return [call for call in self.calls if call[0] != "read_range" and call[0] != "get_sheet_metadata"]

    def _ensure_row(self, tab: str, row_number: int) -> List[str]:
        rows = self.tabs.setdefault(tab, [])
        while len(rows) < row_number:
            rows.append([])
        return rows[row_number - 1]

    def _write(self, tab: str, range_spec: str, values: Sequence[Sequence[Any]]) -> None:
        start_col, start_row, _end_col, _end_row = _parse_range(range_spec)
        for offset, row_values in enumerate(values):
            row = self._ensure_row(tab, start_row + offset)
            for col_offset, value in enumerate(row_values):
                column = start_col + col_offset
                while len(row) <= column:
                    row.append("")
                row[column] = str(value)

    # -- adapter surface ----------------------------------------------
    async def read_range(self, tab: str, range_spec: str = "A:ZZ") -> List[List[str]]:
        self.calls.append(("read_range", tab))
        if self.fail_reads:
            raise SheetsApiResponseError("simulated outage", 503)
        return [list(row) for row in self.rows(tab)]

    async def batch_update_ranges(self, tab: str, updates: Sequence[Mapping[str, Any]]) -> int:
        self.calls.append(("batch_update_ranges", [dict(update) for update in updates]))
        for update in updates:
            self._write(tab, update["range"], update["values"])
        return len(updates)

    async def append_rows(self, tab: str, rows: Sequence[Sequence[Any]]) -> int:
        self.calls.append(("append_rows", [list(row) for row in rows]))
        current = self.rows(tab)
        self.tabs[tab] = [list(row) for row in current] + [[str(cell) for cell in row] for row in rows]
        return len(rows)

    async def clear_range(self, tab: str, range_spec: str) -> None:
        self.calls.append(("clear_range", range_spec))
        start_col, start_row, end_col, end_row = _parse_range(range_spec)
        for row_number in range(start_row, end_row + 1):
            row = self._ensure_row(tab, row_number)
            for column in range(start_col, min(end_col + 1, len(row))):
                row[column] = ""

    async def delete_row_range(self, sheet_id: int, start_index: int, end_index: int) -> None:
        self.calls.append(("delete_row_range", (sheet_id, start_index, end_index)))
        tab = next(title for title, value in self.sheet_ids.items() if value == sheet_id)
        del self.tabs[tab][start_index:end_index]

    async def get_sheet_metadata(self) -> Dict[str, int]:
        self.calls.append(("get_sheet_metadata", None))
        return dict(self.sheet_ids)

    async def sheet_id(self, tab: str) -> int:
        sheets = await self.get_sheet_metadata()
        if tab not in sheets:
            raise SheetNotFoundError(f"Sheet '{tab}' not found")
        return sheets[tab]


class FakeSheetsClient:
    def __init__(self, spreadsheet: Optional[FakeSpreadsheet]) -> None:
        self.spreadsheet = spreadsheet
        self.opened: List[str] = []

    @property
    def available(self) -> bool:
        return self.spreadsheet is not None

    def open(self, spreadsheet_id: str) -> FakeSpreadsheet:
        from agencysync.sheets_client import SheetsCredentialsError

        if self.spreadsheet is None:
            raise SheetsCredentialsError("no credentials")
        self.opened.append(spreadsheet_id)
        return self.spreadsheet


class StaticReader:
    """Read-only source returning fixed rows, used for the CSV path."""

    def __init__(self, rows: Sequence[Sequence[str]]) -> None:
        self._rows = [list(row) for row in rows]
        self.reads = 0

    async def read_range(self, tab: str, range_spec: str = "A:ZZ") -> List[List[str]]:
        self.reads += 1
        return [list(row) for row in self._rows]


SIMPLE_TAB = TabConfig(
    tab_name="Customers",
    schema={"name": "Name", "mobile_number": "Mobile", "current_policy_no": "Policy No", "status": "Status"},
)

GENERAL_HEADERS = [
    "S NO",
    "NAME",
    "MOBILE NO",
    "EMAIL ID",
    "POLICY NO",
    "Product Type",
    "TYPE",
    "AMOUNT",
    "MODIFIED EXPIRY DATE",
    "STATUS",
    "VEH NO",
    "AGENT NOTES",
]

GENERAL_TAB = TabConfig(
    tab_name="general_ins",
    schema={
        "s_no": "S NO",
        "name": "NAME",
        "mobile_number": "MOBILE NO",
        "email": "EMAIL ID",
        "current_policy_no": "POLICY NO",
        "product_type": "Product Type",
        "vertical": "TYPE",
        "premium": "AMOUNT",
        "renewal_date": "MODIFIED EXPIRY DATE",
        "status": "STATUS",
        "registration_no": "VEH NO",
    },
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def repository(tmp_path: Path) -> CustomerRepository:
    repo = CustomerRepository(tmp_path / "agencysync.db")
    repo.initialize()
    return repo


@pytest.fixture
def user_id(repository: CustomerRepository) -> int:
    return repository.add_user_sync("agent@kmginsurance.in")


@pytest.fixture(autouse=True)
def _reset_events():
    sync_events.clear()
    yield
    sync_events.clear()
