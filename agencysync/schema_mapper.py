"""Bind a tab layout to the live header row of a worksheet.

Column positions are never assumed: they are resolved from the header row read
in the same sync pass. Columns the layout does not name are left alone on
write.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Mapping, Optional, Sequence

from agencysync.cell_format import clean, is_blank
from agencysync.models import FIELD_ALIASES

logger = logging.getLogger(__name__)

SERIAL_HEADER_TOKENS = frozenset({"SNO", "SERIALNO"})


def _header_key(header: Any) -> str:
    return clean(header)


def is_serial_header(header: Any) -> bool:
    """Return ``True`` for ``S NO``, ``S.No.``, ``S_NO``, ``Serial No`` and friends."""

    return re.sub(r"[\s._]", "", clean(header).upper()) in SERIAL_HEADER_TOKENS


def canonical_field(field_name: str) -> str:
    return FIELD_ALIASES.get(field_name, field_name)


@dataclass
class ColumnMap:
    """Resolved ``field <-> column`` mapping for one worksheet."""

    headers: List[str]
    forward: Dict[str, int] = field(default_factory=dict)
    reverse: Dict[str, str] = field(default_factory=dict)
    serial_index: Optional[int] = None

    @classmethod
    def build(cls, schema: Mapping[str, str], headers: Sequence[Any]) -> "ColumnMap":
        header_cells = [clean(cell) for cell in headers]
        positions: Dict[str, int] = {}
        for index, header in enumerate(header_cells):
            # Duplicate headers in the sheet: the leftmost column wins.
            positions.setdefault(header, index)

        forward: Dict[str, int] = {}
        reverse: Dict[str, str] = {}
        for field_name, header in schema.items():
            name = canonical_field(field_name)
            key = _header_key(header)
            reverse[key] = name
            if key in positions and name not in forward:
                forward[name] = positions[key]

        missing = [header for header in schema.values() if _header_key(header) not in positions]
        if missing:
            logger.debug("Headers not present in sheet: %s", ", ".join(missing))

        serial_index = next(
            (index for index, header in enumerate(header_cells) if is_serial_header(header)),
            None,
        )
        return cls(headers=header_cells, forward=forward, reverse=reverse, serial_index=serial_index)

    @property
    def width(self) -> int:
        return len(self.headers)

    def has(self, field_name: str) -> bool:
        return canonical_field(field_name) in self.forward

    def column_for(self, field_name: str) -> Optional[int]:
        return self.forward.get(canonical_field(field_name))

    def field_for(self, header: Any) -> Optional[str]:
        return self.reverse.get(_header_key(header))

    def get_cell(self, row: Sequence[Any], field_name: str) -> str:
        """Return the trimmed text of ``field_name`` in ``row`` or ``""``."""

        index = self.column_for(field_name)
        if index is None or index >= len(row):
            return ""
        return clean(row[index])

    def read(self, row: Sequence[Any], field_names: Optional[Collection[str]] = None) -> Dict[str, str]:
        names = self.forward.keys() if field_names is None else field_names
        return {name: self.get_cell(row, name) for name in names}

    def build_row(
        self,
        values: Mapping[str, Any],
        existing: Optional[Sequence[Any]] = None,
        *,
        always_write: Collection[str] = (),
        serial: Optional[str] = None,
    ) -> List[str]:
        """Return a full-width row vector for ``values``.

        Serial and unmapped columns keep the text of ``existing``. A mapped
        column takes the new value when it is non-blank and keeps the sheet
        text otherwise, except for ``always_write`` fields which are written
        even when blank.
        """

        row: List[str] = []
        for index, header in enumerate(self.headers):
            current = ""
            if existing is not None and index < len(existing):
                current = "" if existing[index] is None else str(existing[index])
            if index == self.serial_index:
                row.append(current if existing is not None else (serial or ""))
                continue
            name = self.reverse.get(header)
            if name is None or name not in values:
                row.append(current)
                continue
            value = values[name]
            if name in always_write:
                row.append(clean(value))
            elif not is_blank(value):
                row.append(clean(value))
            else:
                row.append(current)
        return row


__all__ = [
    "ColumnMap",
    "SERIAL_HEADER_TOKENS",
    "canonical_field",
    "is_serial_header",
]
