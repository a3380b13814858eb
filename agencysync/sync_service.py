"""Entry points used by the application layer.

:class:`InsuranceSyncService` is built once at start-up and owns the Sheets
client, the repository and the sync queue. The ``sync_*`` coroutines run
a pass immediately; the ``queue_*`` variants hand the pass to the queue of
the spreadsheet it touches and return a future without waiting.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from agencysync import sync_events
from agencysync.client_config import ClientConfig, ClientRegistry, ConfigurationError, TabConfig, load_registry
from agencysync.csv_fallback import PublicCsvReader
from agencysync.db import CustomerRepository
from agencysync.inbound import InboundReconciler, ReadSource, RowReader
from agencysync.leads import LeadReconciler
from agencysync.logging_config import configure_logging
from agencysync.models import CUSTOMER_TAB_TYPES, TAB_GENERAL, TAB_LEADS, tab_type_for_verticals
from agencysync.outbound import OutboundReconciler
from agencysync.settings import DEFAULT_CSV_TIMEOUT, DELETION_SAFETY_CAP, SyncSettings, load_sync_settings
from agencysync.sheets_client import GoogleSheetsClient
from agencysync.sync_queue import DIRECTION_INBOUND, DIRECTION_OUTBOUND, SyncQueue

logger = logging.getLogger(__name__)

SOURCE_API = "api"
SOURCE_CSV = "csv"

CsvReaderFactory = Callable[[str], RowReader]


class InsuranceSyncService:
    def __init__(
        self,
        repository: CustomerRepository,
        sheets: GoogleSheetsClient,
        registry: Optional[ClientRegistry] = None,
        *,
        queue: Optional[SyncQueue] = None,
        deletion_cap: int = DELETION_SAFETY_CAP,
        csv_timeout: float = DEFAULT_CSV_TIMEOUT,
        csv_reader_factory: Optional[CsvReaderFactory] = None,
    ) -> None:
        self.repository = repository
        self.sheets = sheets
        self.registry = registry or ClientRegistry.default()
        self.queue = queue or SyncQueue()
        self.inbound = InboundReconciler(repository, deletion_cap=deletion_cap)
        self.outbound = OutboundReconciler(repository)
        self.leads = LeadReconciler(repository, deletion_cap=deletion_cap)
        self._csv_reader_factory = csv_reader_factory or (
            lambda spreadsheet_id: PublicCsvReader(spreadsheet_id, timeout=csv_timeout)
        )
        self._last_sync: Dict[Tuple[int, str], datetime] = {}

    @classmethod
    def from_settings(cls, settings: Optional[SyncSettings] = None) -> "InsuranceSyncService":
        configure_logging()
        settings = settings or load_sync_settings()
        repository = CustomerRepository(Path(settings.database_path))
        repository.initialize()
        credential_path = Path(settings.credential_path) if settings.credential_path else None
        return cls(
            repository,
            GoogleSheetsClient.from_credentials(credential_path),
            load_registry(settings.clients_path or None),
            deletion_cap=settings.deletion_cap,
            csv_timeout=settings.csv_timeout_seconds,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def client_for_user(self, user_id: int) -> ClientConfig:
        email = await self.repository.user_email(user_id)
        return self.registry.for_identifier(email)

    async def _resolve_tab(
        self, user_id: int, tab_type: str, spreadsheet_id: Optional[str], tab_name: Optional[str]
    ) -> Tuple[str, TabConfig]:
        client = await self.client_for_user(user_id)
        tab = client.tab(tab_type)
        if tab_name:
            tab = dataclasses.replace(tab, tab_name=tab_name)
        return spreadsheet_id or client.spreadsheet_id, tab

    def _read_sources(self, spreadsheet_id: str) -> List[ReadSource]:
        sources: List[ReadSource] = []
        if self.sheets.available:
            sources.append((SOURCE_API, self.sheets.open(spreadsheet_id)))
        sources.append((SOURCE_CSV, self._csv_reader_factory(spreadsheet_id)))
        return sources

    def _after_read(self, user_id: int, tab_name: str, source: str) -> None:
        if source == SOURCE_CSV:
            sync_events.record(sync_events.EVENT_CSV_FALLBACK, user_id, {"tab": tab_name})
        self._mark_synced(user_id, tab_name)

    def _mark_synced(self, user_id: int, tab_name: str) -> None:
        self._last_sync[(user_id, tab_name)] = datetime.now(timezone.utc).replace(microsecond=0)

    def last_sync_time(self, user_id: int, tab_name: str) -> Optional[datetime]:
        return self._last_sync.get((user_id, tab_name))

    def get_status(self, user_id: int) -> Dict[str, object]:
        return self.queue.get_status(user_id)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    async def sync_from_sheet(
        self,
        user_id: int,
        spreadsheet_id: Optional[str] = None,
        tab_name: Optional[str] = None,
        tab_type: str = TAB_GENERAL,
    ) -> Dict[str, object]:
        """Import one customer tab into the database (sheet is the source of truth)."""

        if tab_type not in CUSTOMER_TAB_TYPES:
            raise ConfigurationError(f"'{tab_type}' is not a customer tab type")
        spreadsheet_id, tab = await self._resolve_tab(user_id, tab_type, spreadsheet_id, tab_name)
        result = await self.inbound.sync(user_id, self._read_sources(spreadsheet_id), tab, tab_type)
        self._after_read(user_id, tab.tab_name, result.source)
        return result.as_dict()

    async def sync_to_sheet(
        self,
        user_id: int,
        spreadsheet_id: Optional[str] = None,
        tab_name: Optional[str] = None,
        vertical_filter: Optional[Sequence[str]] = None,
        deleted_customers: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Dict[str, object]:
        """Push stored customers to the sheet (database is the source of truth).

        The target layout is the life tab when ``vertical_filter`` asks for
        life and not motor, the general tab otherwise. Requires API
        credentials; there is no read-only fallback for writes.
        """

        tab_type = tab_type_for_verticals(vertical_filter)
        spreadsheet_id, tab = await self._resolve_tab(user_id, tab_type, spreadsheet_id, tab_name)
        adapter = self.sheets.open(spreadsheet_id)
        result = await self.outbound.sync(
            user_id, adapter, tab, tab_type, vertical_filter=vertical_filter, deleted_customers=deleted_customers
        )
        self._mark_synced(user_id, tab.tab_name)
        return result.as_dict()

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------
    async def sync_leads_from_sheet(
        self, user_id: int, spreadsheet_id: Optional[str] = None, tab_name: Optional[str] = None
    ) -> Dict[str, object]:
        spreadsheet_id, tab = await self._resolve_tab(user_id, TAB_LEADS, spreadsheet_id, tab_name)
        result = await self.leads.sync_from_sheet(user_id, self._read_sources(spreadsheet_id), tab)
        self._after_read(user_id, tab.tab_name, result.source)
        return result.as_dict()

    async def sync_leads_to_sheet(
        self,
        user_id: int,
        spreadsheet_id: Optional[str] = None,
        tab_name: Optional[str] = None,
        deleted_leads: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Dict[str, object]:
        spreadsheet_id, tab = await self._resolve_tab(user_id, TAB_LEADS, spreadsheet_id, tab_name)
        adapter = self.sheets.open(spreadsheet_id)
        result = await self.leads.sync_to_sheet(user_id, adapter, tab, deleted_leads)
        self._mark_synced(user_id, tab.tab_name)
        return result.as_dict()

    # ------------------------------------------------------------------
    # Queued variants
    # ------------------------------------------------------------------
    def _queue_key(self, user_id: int, args: Sequence[Any], kwargs: Mapping[str, Any]) -> Tuple[str, str]:
        # Agents of one client share a spreadsheet, so their passes share a queue.
        client = self.registry.for_identifier(self.repository.user_email_sync(user_id))
        spreadsheet_id = kwargs.get("spreadsheet_id") or (args[0] if args else None)
        return client.key, spreadsheet_id or client.spreadsheet_id

    def _enqueue(
        self, user_id: int, direction: str, pass_fn: Callable[..., Any], args: Sequence[Any], kwargs: Mapping[str, Any]
    ) -> "asyncio.Future[Any]":
        return self.queue.enqueue(
            user_id,
            direction,
            lambda: pass_fn(user_id, *args, **kwargs),
            key=self._queue_key(user_id, args, kwargs),
        )

    def queue_sync_from_sheet(self, user_id: int, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        return self._enqueue(user_id, DIRECTION_INBOUND, self.sync_from_sheet, args, kwargs)

    def queue_sync_to_sheet(self, user_id: int, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        return self._enqueue(user_id, DIRECTION_OUTBOUND, self.sync_to_sheet, args, kwargs)

    def queue_sync_leads_from_sheet(self, user_id: int, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        return self._enqueue(user_id, DIRECTION_INBOUND, self.sync_leads_from_sheet, args, kwargs)

    def queue_sync_leads_to_sheet(self, user_id: int, *args: Any, **kwargs: Any) -> "asyncio.Future[Any]":
        return self._enqueue(user_id, DIRECTION_OUTBOUND, self.sync_leads_to_sheet, args, kwargs)


__all__ = ["InsuranceSyncService", "SOURCE_API", "SOURCE_CSV"]
