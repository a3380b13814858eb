"""Sheet -> database reconciliation.

One pass reads the whole tab, matches every data row to a stored customer
(row position first, then the natural-key cascade), updates or inserts, and
finally deletes stored customers that no row claimed. Deletions are capped
per pass and skipped entirely when the read produced no data rows.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from agencysync import sync_events
from agencysync.cell_format import (
    DEFAULT_VERTICAL,
    clean,
    cells_equal,
    format_date,
    is_blank_row,
    normalize_vertical,
    parse_premium,
    parse_status,
)
from agencysync.client_config import TabConfig
from agencysync.db import CustomerRepository
from agencysync.identity import IdentityIndex
from agencysync.models import (
    CUSTOMER_FIELDS,
    DATE_FIELDS,
    DEFAULT_STATUS,
    NUMERIC_FIELDS,
    TAB_LIFE,
    Vertical,
    verticals_for_tab,
)
from agencysync.schema_mapper import ColumnMap
from agencysync.settings import DELETION_SAFETY_CAP, clamp_deletion_cap
from agencysync.sheets_client import FULL_RANGE, SheetsClientError

logger = logging.getLogger(__name__)

# A row with none of these is treated like a blank spacer row.
IDENTITY_PRESENCE_FIELDS = ("name", "mobile_number", "email", "company", "registration_no")


class SheetAccessError(SheetsClientError):
    """Raised when no read source could return the tab."""


class RowReader(Protocol):
    async def read_range(self, tab: str, range_spec: str = FULL_RANGE) -> List[List[str]]:
        ...


ReadSource = Tuple[str, RowReader]


@dataclass
class InboundResult:
    imported: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    unchanged: int = 0
    source: str = ""
    deletion_capped: bool = False
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["success"] = True
        return payload


async def read_first_available(sources: Sequence[ReadSource], tab_name: str) -> Tuple[str, List[List[str]]]:
    """Return ``(label, rows)`` from the first source that answers."""

    last_error: Optional[Exception] = None
    for label, reader in sources:
        try:
            rows = await reader.read_range(tab_name, FULL_RANGE)
        except SheetsClientError as exc:
            logger.warning("Reading '%s' via %s failed: %s", tab_name, label, exc)
            last_error = exc
            continue
        return label, rows
    raise SheetAccessError(f"Unable to read sheet '{tab_name}' from any source") from last_error


def stored_value_changed(field_name: str, stored: Any, incoming: Any) -> bool:
    if field_name == "sheet_row_number":
        return (stored or None) != (incoming or None)
    if field_name in NUMERIC_FIELDS:
        return not cells_equal(stored, incoming, numeric=True)
    return clean(stored) != clean(incoming)


def changed_fields(stored: Mapping[str, Any], values: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        name: value
        for name, value in values.items()
        if stored_value_changed(name, stored.get(name), value)
    }


def parse_customer_row(column_map: ColumnMap, row: Sequence[Any], tab_type: str) -> Optional[Dict[str, Any]]:
    """Turn one sheet row into customer column values, or ``None`` to skip it.

    Only fields whose header is present in the sheet are returned, so an
    update never blanks a column this tab does not carry.
    """

    cells = column_map.read(row)
    if not any(cells.get(name) for name in IDENTITY_PRESENCE_FIELDS):
        return None

    values: Dict[str, Any] = {}
    for name in CUSTOMER_FIELDS:
        if name not in cells:
            continue
        text = cells[name]
        if name in DATE_FIELDS:
            values[name] = format_date(text)
        elif name == "premium":
            values[name] = parse_premium(text)
        elif name == "status":
            values[name] = parse_status(text, DEFAULT_STATUS)
        elif name == "vertical":
            continue
        else:
            values[name] = text

    if tab_type == TAB_LIFE:
        values["vertical"] = Vertical.LIFE.value
    elif column_map.has("vertical"):
        values["product"] = cells["vertical"]
        values["vertical"] = normalize_vertical(cells["vertical"]).value

    # The renewal column of a general tab is the modified expiry date; an
    # empty one falls back to the OD expiry date.
    if column_map.has("renewal_date") or column_map.has("modified_expiry_date"):
        modified = format_date(cells.get("renewal_date") or cells.get("modified_expiry_date"))
        values["modified_expiry_date"] = modified
        values["renewal_date"] = modified or values.get("od_expiry_date", "")
    elif column_map.has("od_expiry_date"):
        values["renewal_date"] = values.get("od_expiry_date", "")
    return values


async def apply_capped_deletions(
    stale: Sequence[Mapping[str, Any]],
    delete: Callable[[int], Awaitable[bool]],
    *,
    cap: int,
    user_id: int,
    tab_name: str,
    result: InboundResult,
) -> None:
    """Delete at most ``cap`` of ``stale`` in id order, recording a cap hit."""

    if len(stale) > cap:
        result.deletion_capped = True
        logger.warning(
            "Sheet '%s' is missing %d stored records for user %s; deleting only %d. Review manually.",
            tab_name,
            len(stale),
            user_id,
            cap,
        )
        sync_events.record(
            sync_events.EVENT_DELETION_CAP,
            user_id,
            {"tab": tab_name, "missing": len(stale), "cap": cap},
        )
    for record in list(stale)[:cap]:
        try:
            if await delete(int(record["id"])):
                result.deleted += 1
        except sqlite3.Error as exc:
            logger.error("Failed to delete record %s: %s", record.get("id"), exc)
            result.errors.append(f"delete {record.get('id')}: {exc}")


class InboundReconciler:
    """Makes the stored customers of one tab match the sheet."""

    def __init__(self, repository: CustomerRepository, *, deletion_cap: int = DELETION_SAFETY_CAP) -> None:
        self.repository = repository
        self.deletion_cap = clamp_deletion_cap(deletion_cap)

    async def sync(
        self,
        user_id: int,
        sources: Sequence[ReadSource],
        tab: TabConfig,
        tab_type: str,
    ) -> InboundResult:
        label, rows = await read_first_available(sources, tab.tab_name)
        result = InboundResult(source=label)

        data_rows = rows[1:] if rows else []
        column_map = ColumnMap.build(tab.schema, rows[0] if rows else [])
        verticals = [vertical.value for vertical in verticals_for_tab(tab_type)]
        existing = await self.repository.find_by_user(user_id, verticals)

        index: IdentityIndex[Dict[str, Any]] = IdentityIndex(use_product=column_map.has("product_type"))
        for record in existing:
            index.add(record, record, record.get("sheet_row_number"))

        seen: Set[int] = set()
        for offset, row in enumerate(data_rows):
            row_number = offset + 2
            if is_blank_row(row):
                result.skipped += 1
                continue
            values = parse_customer_row(column_map, row, tab_type)
            if values is None:
                result.skipped += 1
                continue
            values["sheet_row_number"] = row_number
            try:
                await self._upsert(user_id, values, row_number, index, seen, result)
            except sqlite3.Error as exc:
                logger.error("Row %d of '%s' could not be stored: %s", row_number, tab.tab_name, exc)
                result.skipped += 1
                result.errors.append(f"row {row_number}: {exc}")

        if result.imported + result.updated + result.unchanged == 0:
            # Nothing usable was read (empty tab, renamed headers, mangled export).
            logger.warning(
                "Sheet '%s' yielded no usable rows for user %s; skipping deletions", tab.tab_name, user_id
            )
        else:
            stale = [record for record in existing if record["id"] not in seen]
            await apply_capped_deletions(
                stale,
                lambda record_id: self.repository.delete(user_id, record_id),
                cap=self.deletion_cap,
                user_id=user_id,
                tab_name=tab.tab_name,
                result=result,
            )

        logger.info(
            "Inbound sync of '%s' for user %s via %s: %d imported, %d updated, %d deleted, %d skipped",
            tab.tab_name,
            user_id,
            label,
            result.imported,
            result.updated,
            result.deleted,
            result.skipped,
        )
        return result

    async def _upsert(
        self,
        user_id: int,
        values: Dict[str, Any],
        row_number: int,
        index: IdentityIndex[Dict[str, Any]],
        seen: Set[int],
        result: InboundResult,
    ) -> None:
        match = index.resolve_row_first(values, row_number, lambda record: record)
        if match is not None:
            strategy, record = match
            logger.debug("Row %d matched record %s by %s", row_number, record["id"], strategy)
            changes = changed_fields(record, values)
            if changes:
                await self.repository.update(user_id, record["id"], changes)
                result.updated += 1
            else:
                result.unchanged += 1
            merged = {**record, **changes}
            index.discard(record)
            index.add(merged, merged, row_number)
            seen.add(record["id"])
            return

        values.setdefault("status", DEFAULT_STATUS)
        values.setdefault("premium", 0.0)
        values.setdefault("vertical", DEFAULT_VERTICAL.value)
        record_id = await self.repository.insert(user_id, values)
        record = {"id": record_id, **values}
        index.add(record, record, row_number)
        seen.add(record_id)
        result.imported += 1


__all__ = [
    "InboundReconciler",
    "InboundResult",
    "SheetAccessError",
    "apply_capped_deletions",
    "changed_fields",
    "parse_customer_row",
    "read_first_available",
]
