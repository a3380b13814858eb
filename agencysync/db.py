"""SQLite persistence for customers, leads and users.

Every query is scoped by ``user_id``; one agent never sees another agent's
book. Connections are opened per call so the repository is safe to share
between the sync queue's worker tasks, and blocking work runs in a thread.
"""
from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence

from agencysync.models import CUSTOMER_FIELDS, DEFAULT_LEAD_PRIORITY, DEFAULT_LEAD_STATUS, DEFAULT_STATUS, LEAD_FIELDS

logger = logging.getLogger(__name__)

USER_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "email": "TEXT NOT NULL UNIQUE",
    "name": "TEXT",
    "created_at": "TEXT",
}

_CUSTOMER_TYPES = {
    "premium": "REAL DEFAULT 0",
    "vertical": "TEXT NOT NULL DEFAULT 'motor'",
    "status": f"TEXT NOT NULL DEFAULT '{DEFAULT_STATUS}'",
}
CUSTOMER_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "user_id": "INTEGER NOT NULL",
    **{name: _CUSTOMER_TYPES.get(name, "TEXT") for name in CUSTOMER_FIELDS},
    "sheet_row_number": "INTEGER",
    "created_at": "TEXT",
    "updated_at": "TEXT",
}

_LEAD_TYPES = {
    "lead_status": f"TEXT NOT NULL DEFAULT '{DEFAULT_LEAD_STATUS}'",
    "priority": f"TEXT NOT NULL DEFAULT '{DEFAULT_LEAD_PRIORITY}'",
}
LEAD_COLUMN_DEFINITIONS: Dict[str, str] = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "user_id": "INTEGER NOT NULL",
    **{name: _LEAD_TYPES.get(name, "TEXT") for name in LEAD_FIELDS},
    "sheet_row_number": "INTEGER",
    "created_at": "TEXT",
    "updated_at": "TEXT",
}

_TABLES = {
    "users": USER_COLUMN_DEFINITIONS,
    "customers": CUSTOMER_COLUMN_DEFINITIONS,
    "leads": LEAD_COLUMN_DEFINITIONS,
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _ensure_schema(conn: sqlite3.Connection) -> None:
    for table, definitions in _TABLES.items():
        columns = ",\n        ".join(f"{column} {definition}" for column, definition in definitions.items())
        conn.execute(f"CREATE TABLE IF NOT EXISTS {table} (\n        {columns}\n    )")

        existing = {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}
        for column, definition in definitions.items():
            if column not in existing:
                # SQLite refuses NOT NULL without a default on ALTER; keep the default only.
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition.replace('NOT NULL ', '')}")

    conn.execute("CREATE INDEX IF NOT EXISTS idx_customers_user_vertical ON customers(user_id, vertical)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_customers_user_policy ON customers(user_id, current_policy_no)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_leads_user ON leads(user_id)")


def _filter(values: Mapping[str, Any], allowed: Iterable[str]) -> Dict[str, Any]:
    allowed_set = set(allowed)
    return {key: value for key, value in values.items() if key in allowed_set}


class CustomerRepository:
    """Per-user CRUD over the customer and lead tables."""

    customer_columns: Sequence[str] = tuple(CUSTOMER_FIELDS) + ("sheet_row_number",)
    lead_columns: Sequence[str] = tuple(LEAD_FIELDS) + ("sheet_row_number",)

    def __init__(self, database_path: Path) -> None:
        self.database_path = Path(database_path)
        self._schema_ready = False
        self._schema_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection helpers
    # ------------------------------------------------------------------
    def initialize(self) -> None:
        if self._schema_ready:
            return
        with self._schema_lock:
            if self._schema_ready:
                return
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.database_path)
            try:
                _ensure_schema(conn)
                conn.commit()
            finally:
                conn.close()
            self._schema_ready = True

    def get_connection(self) -> sqlite3.Connection:
        self.initialize()
        conn = sqlite3.connect(self.database_path, timeout=5)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            conn.execute("BEGIN")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Generic row helpers
    # ------------------------------------------------------------------
    def _select(self, sql: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        conn = self.get_connection()
        try:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    def _insert(self, table: str, columns: Sequence[str], user_id: int, values: Mapping[str, Any]) -> int:
        record = _filter(values, columns)
        now = _utc_now_iso()
        record.update({"user_id": user_id, "created_at": now, "updated_at": now})
        names = list(record)
        placeholders = ", ".join("?" for _ in names)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders})",
                [record[name] for name in names],
            )
            return int(cursor.lastrowid)

    def _update(self, table: str, columns: Sequence[str], user_id: int, row_id: int, values: Mapping[str, Any]) -> bool:
        record = _filter(values, columns)
        if not record:
            return False
        record["updated_at"] = _utc_now_iso()
        assignments = ", ".join(f"{name} = ?" for name in record)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ? AND user_id = ?",
                [*record.values(), row_id, user_id],
            )
            return cursor.rowcount > 0

    def _delete(self, table: str, user_id: int, row_id: int) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ? AND user_id = ?", (row_id, user_id))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def add_user_sync(self, email: str, name: Optional[str] = None) -> int:
        with self.transaction() as conn:
            row = conn.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
            if row is not None:
                return int(row["id"])
            cursor = conn.execute(
                "INSERT INTO users (email, name, created_at) VALUES (?, ?, ?)",
                (email, name, _utc_now_iso()),
            )
            return int(cursor.lastrowid)

    async def add_user(self, email: str, name: Optional[str] = None) -> int:
        return await asyncio.to_thread(self.add_user_sync, email, name)

    def user_email_sync(self, user_id: int) -> Optional[str]:
        rows = self._select("SELECT email FROM users WHERE id = ?", (user_id,))
        return rows[0]["email"] if rows else None

    async def user_email(self, user_id: int) -> Optional[str]:
        return await asyncio.to_thread(self.user_email_sync, user_id)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    async def find_by_user(self, user_id: int, verticals: Optional[Sequence[str]] = None) -> List[Dict[str, Any]]:
        """Return ``user_id``'s customers, optionally limited to ``verticals``, by id."""

        sql = "SELECT * FROM customers WHERE user_id = ?"
        params: List[Any] = [user_id]
        if verticals:
            values = [str(getattr(v, "value", v)) for v in verticals]
            sql += f" AND vertical IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        sql += " ORDER BY id"
        return await asyncio.to_thread(self._select, sql, params)

    async def find_by_composite_key(
        self, user_id: int, policy_no: str, product_type: str
    ) -> Optional[Dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._select,
            "SELECT * FROM customers WHERE user_id = ? AND LOWER(TRIM(current_policy_no)) = ? "
            "AND LOWER(TRIM(COALESCE(product_type, ''))) = ? ORDER BY id DESC LIMIT 1",
            (user_id, (policy_no or "").strip().lower(), (product_type or "").strip().lower()),
        )
        return rows[0] if rows else None

    async def get(self, user_id: int, customer_id: int) -> Optional[Dict[str, Any]]:
        rows = await asyncio.to_thread(
            self._select, "SELECT * FROM customers WHERE id = ? AND user_id = ?", (customer_id, user_id)
        )
        return rows[0] if rows else None

    async def insert(self, user_id: int, values: Mapping[str, Any]) -> int:
        return await asyncio.to_thread(self._insert, "customers", self.customer_columns, user_id, values)

    async def update(self, user_id: int, customer_id: int, values: Mapping[str, Any]) -> bool:
        return await asyncio.to_thread(
            self._update, "customers", self.customer_columns, user_id, customer_id, values
        )

    async def delete(self, user_id: int, customer_id: int) -> bool:
        return await asyncio.to_thread(self._delete, "customers", user_id, customer_id)

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------
    async def find_leads(self, user_id: int) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(
            self._select, "SELECT * FROM leads WHERE user_id = ? ORDER BY id", (user_id,)
        )

    async def insert_lead(self, user_id: int, values: Mapping[str, Any]) -> int:
        return await asyncio.to_thread(self._insert, "leads", self.lead_columns, user_id, values)

    async def update_lead(self, user_id: int, lead_id: int, values: Mapping[str, Any]) -> bool:
        return await asyncio.to_thread(self._update, "leads", self.lead_columns, user_id, lead_id, values)

    async def delete_lead(self, user_id: int, lead_id: int) -> bool:
        return await asyncio.to_thread(self._delete, "leads", user_id, lead_id)


__all__ = [
    "CUSTOMER_COLUMN_DEFINITIONS",
    "LEAD_COLUMN_DEFINITIONS",
    "CustomerRepository",
]
