"""Database -> sheet reconciliation.

Explicit deletions are applied first: a deleted customer's row is physically
removed when it belongs to the contiguous block ending at the last row, and
cleared in place (serial number kept) otherwise, so rows other agents are
looking at do not move. Remaining customers are matched to sheet rows through
the natural-key cascade; matched rows are rewritten only when a cell actually
changes, unmatched customers are appended with the next serial number.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from agencysync.cell_format import (
    cells_equal,
    clean,
    format_date,
    format_number,
    is_blank_row,
    render_status,
)
from agencysync.client_config import TabConfig
from agencysync.db import CustomerRepository
from agencysync.identity import IdentityIndex
from agencysync.models import DATE_FIELDS, NUMERIC_FIELDS, TAB_LIFE, verticals_for_tab
from agencysync.schema_mapper import ColumnMap
from agencysync.sheets_client import FULL_RANGE, SpreadsheetAdapter, a1_row_range

logger = logging.getLogger(__name__)

NO_CHANGES_MESSAGE = "No changes to sync"
ALWAYS_WRITTEN_FIELDS = frozenset({"email"})


@dataclass(eq=False)
class SheetRow:
    """A non-blank data row as read in this pass; ``number`` is 1-based."""

    number: int
    cells: List[str]
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass
class OutboundResult:
    success: bool = True
    exported: int = 0
    updated: int = 0
    added: int = 0
    deleted: int = 0
    message: str = ""

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "success": self.success,
            "exported": self.exported,
            "updated": self.updated,
            "added": self.added,
            "deleted": self.deleted,
        }
        if self.message:
            payload["message"] = self.message
        return payload


def render_customer(customer: Mapping[str, Any], column_map: ColumnMap, tab_type: str) -> Dict[str, str]:
    """Return the sheet text of every mapped field for ``customer``."""

    values: Dict[str, str] = {}
    for name in column_map.forward:
        if name == "renewal_date":
            raw = (
                clean(customer.get("modified_expiry_date"))
                or clean(customer.get("renewal_date"))
                or clean(customer.get("od_expiry_date"))
            )
            values[name] = format_date(raw)
        elif name == "vertical":
            if tab_type == TAB_LIFE:
                values[name] = clean(customer.get("vertical"))
            else:
                values[name] = clean(customer.get("product")) or clean(customer.get("vertical"))
        elif name == "status":
            values[name] = render_status(customer.get("status"))
        elif name in NUMERIC_FIELDS:
            values[name] = format_number(customer.get(name))
        elif name in DATE_FIELDS:
            values[name] = format_date(customer.get(name))
        else:
            values[name] = clean(customer.get(name))
    return values


def rows_differ(column_map: ColumnMap, current: Sequence[Any], proposed: Sequence[Any]) -> bool:
    numeric_columns = {column_map.column_for(name) for name in NUMERIC_FIELDS}
    for index in range(column_map.width):
        old = current[index] if index < len(current) else ""
        new = proposed[index] if index < len(proposed) else ""
        if not cells_equal(old, new, numeric=index in numeric_columns):
            return True
    return False


def max_serial(column_map: ColumnMap, rows: Iterable[SheetRow]) -> int:
    if column_map.serial_index is None:
        return 0
    highest = 0
    for row in rows:
        cell = row.cells[column_map.serial_index] if column_map.serial_index < len(row.cells) else ""
        try:
            highest = max(highest, int(float(clean(cell).replace(",", ""))))
        except ValueError:
            continue
    return highest


def trailing_block(targets: Set[int], last_row: int) -> List[int]:
    """Return the targeted rows forming a contiguous run that ends at ``last_row``."""

    block: List[int] = []
    number = last_row
    while number in targets:
        block.append(number)
        number -= 1
    return sorted(block)


class OutboundReconciler:
    """Pushes stored customers of one tab to the sheet."""

    def __init__(self, repository: CustomerRepository) -> None:
        self.repository = repository

    async def sync(
        self,
        user_id: int,
        adapter: SpreadsheetAdapter,
        tab: TabConfig,
        tab_type: str,
        vertical_filter: Optional[Sequence[str]] = None,
        deleted_customers: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> OutboundResult:
        verticals = list(vertical_filter or [vertical.value for vertical in verticals_for_tab(tab_type)])
        customers = await self.repository.find_by_user(user_id, verticals)
        deleted_customers = list(deleted_customers or [])
        deleted_ids = {record.get("id") for record in deleted_customers if record.get("id") is not None}

        sheet_id = await adapter.sheet_id(tab.tab_name)
        rows = await adapter.read_range(tab.tab_name, FULL_RANGE)

        header_missing = not rows or is_blank_row(rows[0])
        headers = list(tab.schema.values()) if header_missing else rows[0]
        column_map = ColumnMap.build(tab.schema, headers)
        if header_missing:
            logger.warning("Sheet '%s' has no header row; writing one from the layout", tab.tab_name)

        sheet_rows: List[SheetRow] = []
        index: IdentityIndex[SheetRow] = IdentityIndex(use_product=column_map.has("product_type"))
        for offset, cells in enumerate(rows[1:]):
            if is_blank_row(cells):
                continue
            entry = SheetRow(
                number=offset + 2,
                cells=["" if cell is None else str(cell) for cell in cells],
                fields=column_map.read(cells),
            )
            sheet_rows.append(entry)
            index.add(entry, entry.fields, entry.number)

        result = OutboundResult()
        claimed: Set[int] = set()

        result.deleted = await self._apply_deletions(
            adapter, tab.tab_name, sheet_id, column_map, index, sheet_rows, deleted_customers, claimed, len(rows)
        )

        updates: List[Dict[str, Any]] = []
        appends: List[List[str]] = []
        next_serial = max_serial(column_map, sheet_rows) + 1
        for customer in customers:
            if customer.get("id") in deleted_ids:
                continue
            values = render_customer(customer, column_map, tab_type)
            match = index.resolve(customer, exclude=claimed)
            if match is not None:
                strategy, entry = match
                claimed.add(id(entry))
                proposed = column_map.build_row(values, entry.cells, always_write=ALWAYS_WRITTEN_FIELDS)
                if rows_differ(column_map, entry.cells, proposed):
                    logger.debug("Customer %s differs from row %d (%s)", customer.get("id"), entry.number, strategy)
                    updates.append(
                        {"range": a1_row_range(entry.number, columns=column_map.width), "values": [proposed]}
                    )
                continue
            serial = None
            if column_map.serial_index is not None:
                serial = str(next_serial)
                next_serial += 1
            appends.append(
                column_map.build_row(values, None, always_write=ALWAYS_WRITTEN_FIELDS, serial=serial)
            )

        if not updates and not appends and not result.deleted:
            logger.info("Outbound sync of '%s' for user %s: no changes", tab.tab_name, user_id)
            result.message = NO_CHANGES_MESSAGE
            return result

        if updates:
            await adapter.batch_update_ranges(tab.tab_name, updates)
        if appends:
            if header_missing:
                appends.insert(0, list(column_map.headers))
            await adapter.append_rows(tab.tab_name, appends)

        result.exported = len(customers)
        result.updated = len(updates)
        result.added = len(appends) - (1 if header_missing and appends else 0)
        logger.info(
            "Outbound sync of '%s' for user %s: %d updated, %d added, %d deleted",
            tab.tab_name,
            user_id,
            result.updated,
            result.added,
            result.deleted,
        )
        return result

    async def _apply_deletions(
        self,
        adapter: SpreadsheetAdapter,
        tab_name: str,
        sheet_id: int,
        column_map: ColumnMap,
        index: IdentityIndex[SheetRow],
        sheet_rows: List[SheetRow],
        deleted_customers: Sequence[Mapping[str, Any]],
        claimed: Set[int],
        last_row: int,
    ) -> int:
        targets: Dict[int, SheetRow] = {}
        for record in deleted_customers:
            match = index.resolve(record, exclude=claimed)
            if match is None:
                logger.debug("Deleted customer %s has no sheet row", record.get("id"))
                continue
            _, entry = match
            claimed.add(id(entry))
            targets[entry.number] = entry
        if not targets:
            return 0

        trailing = trailing_block(set(targets), last_row)
        middle = [number for number in sorted(targets) if number not in trailing]

        if middle:
            clears = []
            for number in middle:
                entry = targets[number]
                blank = [""] * column_map.width
                if column_map.serial_index is not None and column_map.serial_index < len(entry.cells):
                    blank[column_map.serial_index] = entry.cells[column_map.serial_index]
                clears.append({"range": a1_row_range(number, columns=column_map.width), "values": [blank]})
                entry.cells = blank
            await adapter.batch_update_ranges(tab_name, clears)
        if trailing:
            await adapter.delete_row_range(sheet_id, trailing[0] - 1, trailing[-1])

        for entry in targets.values():
            index.discard(entry)
            if entry.number in trailing:
                sheet_rows.remove(entry)
        logger.info(
            "Removed %d trailing and cleared %d middle rows on '%s'", len(trailing), len(middle), tab_name
        )
        return len(targets)


__all__ = [
    "NO_CHANGES_MESSAGE",
    "OutboundReconciler",
    "OutboundResult",
    "SheetRow",
    "render_customer",
    "rows_differ",
    "trailing_block",
]
