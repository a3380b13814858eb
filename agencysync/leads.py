"""Lead-management tab sync.

Leads are matched by mobile number (name when the mobile cell is empty).
Inbound follows the customer rules for deletion: leads missing from a
non-empty sheet are removed up to the deletion cap. Outbound clears the rows
of deleted leads in place and never removes rows.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from agencysync.cell_format import clean, format_date, is_blank_row, normalize_mobile
from agencysync.client_config import TabConfig
from agencysync.db import CustomerRepository
from agencysync.inbound import (
    InboundResult,
    ReadSource,
    apply_capped_deletions,
    changed_fields,
    read_first_available,
)
from agencysync.models import DEFAULT_LEAD_PRIORITY, DEFAULT_LEAD_STATUS, LEAD_DATE_FIELDS, LEAD_FIELDS
from agencysync.outbound import NO_CHANGES_MESSAGE, OutboundResult, SheetRow, max_serial, rows_differ
from agencysync.schema_mapper import ColumnMap
from agencysync.settings import DELETION_SAFETY_CAP, clamp_deletion_cap
from agencysync.sheets_client import FULL_RANGE, SheetsClientError, SpreadsheetAdapter, a1_row_range

logger = logging.getLogger(__name__)


def lead_key(fields: Mapping[str, Any]) -> Optional[str]:
    mobile = normalize_mobile(fields.get("mobile_number")).lower()
    if mobile:
        return f"mobile:{mobile}"
    name = clean(fields.get("name")).lower()
    if name:
        return f"name:{name}"
    return None


def parse_lead_row(column_map: ColumnMap, row: Sequence[Any]) -> Optional[Dict[str, Any]]:
    cells = column_map.read(row, [name for name in LEAD_FIELDS if column_map.has(name)])
    if not cells.get("name") and not cells.get("mobile_number"):
        return None
    values: Dict[str, Any] = {}
    for name, text in cells.items():
        values[name] = format_date(text) if name in LEAD_DATE_FIELDS else text
    if "lead_status" in values:
        values["lead_status"] = values["lead_status"] or DEFAULT_LEAD_STATUS
    if "priority" in values:
        values["priority"] = values["priority"] or DEFAULT_LEAD_PRIORITY
    return values


def render_lead(lead: Mapping[str, Any], column_map: ColumnMap) -> Dict[str, str]:
    return {
        name: format_date(lead.get(name)) if name in LEAD_DATE_FIELDS else clean(lead.get(name))
        for name in column_map.forward
    }


class LeadReconciler:
    def __init__(self, repository: CustomerRepository, *, deletion_cap: int = DELETION_SAFETY_CAP) -> None:
        self.repository = repository
        self.deletion_cap = clamp_deletion_cap(deletion_cap)

    async def sync_from_sheet(self, user_id: int, sources: Sequence[ReadSource], tab: TabConfig) -> InboundResult:
        label, rows = await read_first_available(sources, tab.tab_name)
        result = InboundResult(source=label)
        column_map = ColumnMap.build(tab.schema, rows[0] if rows else [])
        data_rows = rows[1:] if rows else []

        existing = await self.repository.find_leads(user_id)
        by_key: Dict[str, Dict[str, Any]] = {}
        for lead in existing:
            key = lead_key(lead)
            if key:
                by_key[key] = lead

        seen: Set[int] = set()
        for offset, row in enumerate(data_rows):
            row_number = offset + 2
            values = None if is_blank_row(row) else parse_lead_row(column_map, row)
            if values is None:
                result.skipped += 1
                continue
            values["sheet_row_number"] = row_number
            key = lead_key(values)
            stored = by_key.get(key) if key else None
            try:
                if stored is not None:
                    changes = changed_fields(stored, values)
                    if changes:
                        await self.repository.update_lead(user_id, stored["id"], changes)
                        result.updated += 1
                    else:
                        result.unchanged += 1
                    stored.update(changes)
                    seen.add(stored["id"])
                    continue
                values.setdefault("lead_status", DEFAULT_LEAD_STATUS)
                values.setdefault("priority", DEFAULT_LEAD_PRIORITY)
                lead_id = await self.repository.insert_lead(user_id, values)
            except sqlite3.Error as exc:
                logger.error("Lead row %d of '%s' could not be stored: %s", row_number, tab.tab_name, exc)
                result.skipped += 1
                result.errors.append(f"row {row_number}: {exc}")
                continue
            record = {"id": lead_id, **values}
            if key:
                by_key[key] = record
            seen.add(lead_id)
            result.imported += 1

        if result.imported + result.updated + result.unchanged:
            await apply_capped_deletions(
                [lead for lead in existing if lead["id"] not in seen],
                lambda lead_id: self.repository.delete_lead(user_id, lead_id),
                cap=self.deletion_cap,
                user_id=user_id,
                tab_name=tab.tab_name,
                result=result,
            )
        else:
            logger.warning("Lead sheet '%s' yielded no usable rows; skipping deletions", tab.tab_name)

        logger.info(
            "Lead import of '%s' for user %s: %d imported, %d updated, %d deleted",
            tab.tab_name,
            user_id,
            result.imported,
            result.updated,
            result.deleted,
        )
        return result

    async def sync_to_sheet(
        self,
        user_id: int,
        adapter: SpreadsheetAdapter,
        tab: TabConfig,
        deleted_leads: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> OutboundResult:
        leads = await self.repository.find_leads(user_id)
        rows = await adapter.read_range(tab.tab_name, FULL_RANGE)
        if not rows:
            raise SheetsClientError(f"Lead sheet '{tab.tab_name}' has no header row")
        column_map = ColumnMap.build(tab.schema, rows[0])

        by_key: Dict[str, SheetRow] = {}
        sheet_rows: List[SheetRow] = []
        for offset, cells in enumerate(rows[1:]):
            if is_blank_row(cells):
                continue
            entry = SheetRow(
                number=offset + 2,
                cells=[str(cell) for cell in cells],
                fields=column_map.read(cells),
            )
            sheet_rows.append(entry)
            key = lead_key(entry.fields)
            if key:
                by_key[key] = entry

        result = OutboundResult()
        deleted_ids = set()
        for lead in deleted_leads or ():
            deleted_ids.add(lead.get("id"))
            key = lead_key(lead)
            entry = by_key.pop(key, None) if key else None
            if entry is None:
                continue
            await adapter.clear_range(tab.tab_name, a1_row_range(entry.number, columns=column_map.width))
            result.deleted += 1

        updates: List[Dict[str, Any]] = []
        appends: List[List[str]] = []
        next_serial = max_serial(column_map, sheet_rows) + 1
        for lead in leads:
            if lead.get("id") in deleted_ids:
                continue
            values = render_lead(lead, column_map)
            key = lead_key(lead)
            entry = by_key.pop(key, None) if key else None
            if entry is not None:
                proposed = column_map.build_row(values, entry.cells)
                if rows_differ(column_map, entry.cells, proposed):
                    updates.append(
                        {"range": a1_row_range(entry.number, columns=column_map.width), "values": [proposed]}
                    )
                continue
            serial = None
            if column_map.serial_index is not None:
                serial = str(next_serial)
                next_serial += 1
            appends.append(column_map.build_row(values, None, serial=serial))

        if not updates and not appends and not result.deleted:
            result.message = NO_CHANGES_MESSAGE
            return result
        if updates:
            await adapter.batch_update_ranges(tab.tab_name, updates)
        if appends:
            await adapter.append_rows(tab.tab_name, appends)
        result.exported = len(leads)
        result.updated = len(updates)
        result.added = len(appends)
        logger.info(
            "Lead export of '%s' for user %s: %d updated, %d added, %d cleared",
            tab.tab_name,
            user_id,
            result.updated,
            result.added,
            result.deleted,
        )
        return result


__all__ = ["LeadReconciler", "lead_key", "parse_lead_row", "render_lead"]
