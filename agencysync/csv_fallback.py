"""Read-only access to a worksheet through its public CSV export.

Used by inbound sync when the API read fails, for spreadsheets shared as
"anyone with the link can view". There is no write path.
"""
from __future__ import annotations

import asyncio
import csv
import io
import logging
import urllib.error
import urllib.request
from typing import Callable, List, Optional
from urllib.parse import quote

from agencysync.sheets_client import SheetsClientError

logger = logging.getLogger(__name__)

CSV_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq?tqx=out:csv&sheet={sheet}"
USER_AGENT = "agencysync"


class CsvFallbackError(SheetsClientError):
    """Raised when the public CSV export cannot be downloaded."""


def export_url(spreadsheet_id: str, tab: str) -> str:
    return CSV_EXPORT_URL.format(spreadsheet_id=spreadsheet_id, sheet=quote(tab, safe=""))


def parse_csv(text: str) -> List[List[str]]:
    """Split CSV text into rows, dropping completely empty lines."""

    reader = csv.reader(io.StringIO(text.lstrip("\ufeff")))
    return [row for row in reader if row]


class PublicCsvReader:
    """Duck-types :meth:`SpreadsheetAdapter.read_range` for inbound sync."""

    def __init__(
        self,
        spreadsheet_id: str,
        *,
        timeout: float = 10,
        opener: Optional[Callable[..., object]] = None,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id
        self.timeout = timeout
        self._opener = opener or urllib.request.urlopen

    def _fetch(self, tab: str) -> List[List[str]]:
        url = export_url(self.spreadsheet_id, tab)
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        try:
            with self._opener(request, timeout=self.timeout) as response:
                status = getattr(response, "status", 200)
                if status != 200:
                    raise CsvFallbackError(f"CSV export of '{tab}' returned HTTP {status}")
                payload = response.read()
        except urllib.error.HTTPError as exc:
            raise CsvFallbackError(f"CSV export of '{tab}' returned HTTP {exc.code}") from exc
        except (urllib.error.URLError, OSError) as exc:
            raise CsvFallbackError(f"CSV export of '{tab}' failed: {exc}") from exc
        rows = parse_csv(payload.decode("utf-8", errors="replace"))
        logger.info("Read %d rows from public CSV export of '%s'", len(rows), tab)
        return rows

    async def read_range(self, tab: str, range_spec: Optional[str] = None) -> List[List[str]]:
        """Return every row of ``tab``; ``range_spec`` is ignored by the export."""

        return await asyncio.to_thread(self._fetch, tab)


__all__ = ["CSV_EXPORT_URL", "CsvFallbackError", "PublicCsvReader", "export_url", "parse_csv"]
