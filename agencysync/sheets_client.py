"""Google Sheets access for the sync engine.

The reconcilers only see :class:`SpreadsheetAdapter`, a small async surface
over the Sheets v4 REST API. Every request goes through
:func:`_call_with_retry` so rate limiting and transient server errors are
absorbed here instead of failing a sync pass. Blocking ``execute()`` calls run
in a worker thread.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableSequence, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from agencysync.google_credentials import (
    CredentialsFileInvalidError,
    load_service_account_file,
    service_account_info_from_env,
)

logger = logging.getLogger(__name__)

SCOPES: Sequence[str] = ("https://www.googleapis.com/auth/spreadsheets",)

FULL_RANGE = "A:ZZ"
APPEND_RANGE = "A:A"
RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})
MAX_RETRY_ATTEMPTS = 5
BACKOFF_SCHEDULE = (1, 2, 4, 8, 16)


class SheetsClientError(RuntimeError):
    """Base error raised for Sheets API failures."""


class SheetsCredentialsError(SheetsClientError):
    """Raised when no usable service account is configured."""


class SheetsApiResponseError(SheetsClientError):
    """Raised when the Google API returns an error response."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SheetNotFoundError(SheetsClientError):
    """Raised when a worksheet title is not present in the spreadsheet."""


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise SheetsClientError("Worksheet title must not be empty.")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    """Return the A1 letters for the 1-based column ``index``."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_range(title: str, range_spec: str) -> str:
    return f"{quote_title(title)}!{range_spec}"


def a1_row_range(row_number: int, *, columns: int, first_column: int = 1) -> str:
    """Return ``A5:F5`` style notation covering ``columns`` cells of one row."""

    if row_number < 1:
        raise ValueError("Row number must be >= 1")
    last = first_column + max(1, columns) - 1
    return f"{column_letter(first_column)}{row_number}:{column_letter(last)}{row_number}"


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _call_with_retry(
    func: Callable[[], Any],
    description: str,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Execute ``func`` applying exponential backoff for retriable errors."""

    attempt = 0
    while True:
        try:
            return func()
        except HttpError as exc:
            status = _http_status(exc)
            if status not in RETRY_STATUSES or attempt >= MAX_RETRY_ATTEMPTS - 1:
                raise SheetsApiResponseError(f"Sheets API {description} failed: {exc}", status) from exc
            delay = BACKOFF_SCHEDULE[min(attempt, len(BACKOFF_SCHEDULE) - 1)]
            attempt += 1
            logger.warning(
                "Sheets API %s error (%s). Retrying in %ss (%d/%d)",
                description,
                status,
                delay,
                attempt,
                MAX_RETRY_ATTEMPTS,
            )
            sleep(delay)
        except GoogleAuthError as exc:
            raise SheetsCredentialsError(f"Sheets API {description} rejected the credentials: {exc}") from exc
        except OSError as exc:
            raise SheetsApiResponseError(f"Sheets API {description} failed: {exc}") from exc


def _stringify(rows: Sequence[Sequence[Any]]) -> List[List[str]]:
    return [["" if cell is None else str(cell) for cell in row] for row in rows]


class SpreadsheetAdapter:
    """Async operations against one spreadsheet."""

    def __init__(
        self,
        service,
        spreadsheet_id: str,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._service = service
        self.spreadsheet_id = spreadsheet_id
        self._sleep = sleep

    def _execute(self, build_request: Callable[[], Any], description: str) -> Any:
        return _call_with_retry(lambda: build_request().execute(), description, sleep=self._sleep)

    async def _run(self, build_request: Callable[[], Any], description: str) -> Any:
        return await asyncio.to_thread(self._execute, build_request, description)

    async def read_range(self, tab: str, range_spec: str = FULL_RANGE) -> List[List[str]]:
        """Return the rows of ``tab!range_spec``; trailing blank cells are omitted by the API."""

        result = await self._run(
            lambda: self._service.spreadsheets()
            .values()
            .get(spreadsheetId=self.spreadsheet_id, range=a1_range(tab, range_spec), majorDimension="ROWS"),
            "values.get",
        )
        return _stringify(result.get("values", []))

    async def batch_update_ranges(self, tab: str, updates: Sequence[Mapping[str, Any]]) -> int:
        """Write several ``{"range": "A5:F5", "values": [[...]]}`` blocks in one request."""

        if not updates:
            return 0
        data = [
            {
                "range": a1_range(tab, str(update["range"])),
                "majorDimension": "ROWS",
                "values": _stringify(update["values"]),
            }
            for update in updates
        ]
        result = await self._run(
            lambda: self._service.spreadsheets()
            .values()
            .batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={"valueInputOption": "RAW", "data": data},
            ),
            "values.batchUpdate",
        )
        return int((result or {}).get("totalUpdatedRows", len(data)))

    async def append_rows(self, tab: str, rows: Sequence[Sequence[Any]]) -> int:
        if not rows:
            return 0
        values = _stringify(rows)
        await self._run(
            lambda: self._service.spreadsheets()
            .values()
            .append(
                spreadsheetId=self.spreadsheet_id,
                range=a1_range(tab, APPEND_RANGE),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": values},
            ),
            "values.append",
        )
        return len(values)

    async def clear_range(self, tab: str, range_spec: str) -> None:
        await self._run(
            lambda: self._service.spreadsheets()
            .values()
            .clear(spreadsheetId=self.spreadsheet_id, range=a1_range(tab, range_spec), body={}),
            "values.clear",
        )

    async def delete_row_range(self, sheet_id: int, start_index: int, end_index: int) -> None:
        """Remove rows ``[start_index, end_index)`` (0-based) from the grid."""

        if end_index <= start_index:
            return
        body = {
            "requests": [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": start_index,
                            "endIndex": end_index,
                        }
                    }
                }
            ]
        }
        await self._run(
            lambda: self._service.spreadsheets().batchUpdate(spreadsheetId=self.spreadsheet_id, body=body),
            "spreadsheets.batchUpdate",
        )

    async def get_sheet_metadata(self) -> Dict[str, int]:
        """Return ``{title: sheetId}`` for every worksheet."""

        result = await self._run(
            lambda: self._service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                includeGridData=False,
                fields="sheets.properties",
            ),
            "spreadsheets.get",
        )
        sheets: Dict[str, int] = {}
        for sheet in result.get("sheets", []):
            properties = sheet.get("properties", {})
            title = properties.get("title")
            if title is not None:
                sheets[str(title)] = int(properties.get("sheetId", 0))
        return sheets

    async def sheet_id(self, tab: str) -> int:
        sheets = await self.get_sheet_metadata()
        if tab not in sheets:
            raise SheetNotFoundError(f"Sheet '{tab}' not found in spreadsheet {self.spreadsheet_id}")
        return sheets[tab]


def _build_service(info: Mapping[str, Any]):
    try:
        credentials = service_account.Credentials.from_service_account_info(dict(info), scopes=SCOPES)
    except ValueError as exc:
        raise SheetsCredentialsError(str(exc)) from exc
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


def resolve_service_account(
    credential_path: Optional[Path], environ: Optional[Mapping[str, str]] = None
) -> Optional[Dict[str, Any]]:
    """Return service-account info from the environment or ``credential_path``.

    Environment credentials win. ``None`` means sync is not configured.
    """

    try:
        info = service_account_info_from_env(environ)
        if info is not None:
            return info
        if credential_path is not None and Path(credential_path).exists():
            return load_service_account_file(Path(credential_path))
    except CredentialsFileInvalidError as exc:
        raise SheetsCredentialsError(str(exc)) from exc
    return None


class GoogleSheetsClient:
    """Factory for :class:`SpreadsheetAdapter` instances sharing one API service."""

    def __init__(self, service=None, *, sleep: Callable[[float], None] = time.sleep) -> None:
        self._service = service
        self._sleep = sleep

    @classmethod
    def from_credentials(
        cls, credential_path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None
    ) -> "GoogleSheetsClient":
        environ = os.environ if environ is None else environ
        info = resolve_service_account(credential_path, environ)
        if info is None:
            logger.warning("Google Sheets credentials not configured; sheet sync is disabled")
            return cls(None)
        return cls(_build_service(info))

    @property
    def available(self) -> bool:
        return self._service is not None

    def open(self, spreadsheet_id: str) -> SpreadsheetAdapter:
        if self._service is None:
            raise SheetsCredentialsError(
                "Google Sheets credentials not configured. Set GOOGLE_CLIENT_EMAIL and "
                "GOOGLE_PRIVATE_KEY or provide a service account file."
            )
        return SpreadsheetAdapter(self._service, spreadsheet_id, sleep=self._sleep)


__all__ = [
    "APPEND_RANGE",
    "BACKOFF_SCHEDULE",
    "FULL_RANGE",
    "GoogleSheetsClient",
    "MAX_RETRY_ATTEMPTS",
    "SCOPES",
    "SheetNotFoundError",
    "SheetsApiResponseError",
    "SheetsClientError",
    "SheetsCredentialsError",
    "SpreadsheetAdapter",
    "a1_range",
    "a1_row_range",
    "column_letter",
    "quote_title",
    "resolve_service_account",
]
