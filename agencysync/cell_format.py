"""Cell-level conversion between sheet text and stored values.

Nothing in this module raises on bad input. A sync pass covers hundreds of
hand-typed rows, so an unreadable premium becomes ``0.0`` and an unreadable
date is kept as the original text.
"""
from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any, Optional, Sequence

from dateutil import parser as date_parser

from agencysync.models import INPROCESS_LABEL, INPROCESS_TOKEN, Vertical

DISPLAY_DATE_FORMAT = "%d/%m/%Y"

_DMY_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_DIGIT_RE = re.compile(r"\d")

# Collapsed sheet text -> vertical. Anything not listed falls through to the
# substring rules in ``normalize_vertical`` and then to ``DEFAULT_VERTICAL``.
# There is no ``life`` entry: this table only reads general tabs, and a row
# stored as life there would leave the general record set and be imported
# again on every pass. Life rows come from the life tab, which sets the
# vertical itself. The original TYPE text is kept in ``product``.
_VERTICAL_TOKENS = {
    "motor": Vertical.MOTOR,
    "2wheeler": Vertical.MOTOR,
    "twowheeler": Vertical.MOTOR,
    "health": Vertical.HEALTH,
    "nonmotor": Vertical.NON_MOTOR,
}
DEFAULT_VERTICAL = Vertical.NON_MOTOR


def is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def is_blank_row(row: Optional[Sequence[Any]]) -> bool:
    """Return ``True`` for missing rows and rows holding only whitespace."""

    return not row or all(is_blank(cell) for cell in row)


def clean(value: Any) -> str:
    return "" if value is None else str(value).strip()


def format_date(value: Any) -> str:
    """Return ``value`` as ``DD/MM/YYYY`` or, when unparseable, unchanged.

    ``DD/MM/YYYY`` passes through, ISO ``YYYY-MM-DD`` is reordered, and other
    text is parsed day-first. Short or digit-free text is never guessed at.
    """

    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(DISPLAY_DATE_FORMAT)
    text = str(value).strip()
    if not text:
        return ""
    if _DMY_RE.match(text):
        return text
    iso = _ISO_DATE_RE.match(text)
    if iso:
        year, month, day = iso.groups()
        return f"{day}/{month}/{year}"
    if len(text) < 6 or not _DIGIT_RE.search(text):
        return str(value)
    try:
        parsed = date_parser.parse(text, dayfirst=True)
    except (ValueError, OverflowError):
        return str(value)
    return parsed.strftime(DISPLAY_DATE_FORMAT)


def _to_number(value: Any) -> Optional[float]:
    text = clean(value).replace(",", "")
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_premium(value: Any) -> float:
    """Parse a premium cell such as ``"12,500"``; unreadable input is ``0.0``."""

    number = _to_number(value)
    return 0.0 if number is None else number


def format_number(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def parse_status(value: Any, default: str) -> str:
    """Map a sheet status to its stored token.

    ``IN PROCESS`` in any spacing or case becomes ``INPROCESS``; other text is
    stored as typed.
    """

    text = clean(value)
    if not text:
        return default
    if re.sub(r"[\s_-]", "", text).upper() == INPROCESS_TOKEN:
        return INPROCESS_TOKEN
    return text


def render_status(value: Any) -> str:
    text = clean(value)
    if text == INPROCESS_TOKEN:
        return INPROCESS_LABEL
    return text


def _collapse(value: Any) -> str:
    return re.sub(r"[\s_-]", "", clean(value).lower())


def normalize_vertical(value: Any) -> Vertical:
    """Map the free-text TYPE column of a general tab onto :class:`Vertical`.

    Known tokens (``Motor``, ``non-motor``, ``NONMOTOR``, ``Health``...) are
    looked up after removing case, spaces, dashes and underscores. Unknown text
    mentioning "motor" (without "non") is motor, text mentioning "health" is
    health, and everything else, blank included, is ``non-motor``.
    """

    token = _collapse(value)
    if token in _VERTICAL_TOKENS:
        return _VERTICAL_TOKENS[token]
    if "motor" in token and "non" not in token:
        return Vertical.MOTOR
    if "health" in token:
        return Vertical.HEALTH
    return DEFAULT_VERTICAL


def cells_equal(left: Any, right: Any, *, numeric: bool = False) -> bool:
    """Compare two cells as a human would read them.

    With ``numeric`` set, ``"12,500"`` and ``"12500"`` are the same value.
    """

    left_text, right_text = clean(left), clean(right)
    if left_text == right_text:
        return True
    if numeric:
        left_number, right_number = _to_number(left_text), _to_number(right_text)
        if left_number is not None and right_number is not None:
            return math.isclose(left_number, right_number)
    return False


def normalize_mobile(value: Any) -> str:
    """Strip spacing and punctuation from a phone number for key matching."""

    return re.sub(r"[\s\-().]", "", clean(value))


__all__ = [
    "DEFAULT_VERTICAL",
    "DISPLAY_DATE_FORMAT",
    "cells_equal",
    "clean",
    "format_date",
    "format_number",
    "is_blank",
    "is_blank_row",
    "normalize_mobile",
    "normalize_vertical",
    "parse_premium",
    "parse_status",
    "render_status",
]
