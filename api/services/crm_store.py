"""
CRM Store for the client intelligence pipeline.

SQLite-backed implementation of the generic datastore the pipeline talks to:
select / insert / update / upsert over a fixed set of tables, with JSON
columns encoded transparently. Typed accessors on top return the dataclasses
from crm_types.

Idempotency relies on two unique indexes:
- intelligence(source, source_id)
- processing_queue(source, source_id)
"""
import json
import logging
import sqlite3
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

from api.services.crm_types import (
    Client,
    ClientHealth,
    Intelligence,
    KnowledgeSource,
    ProcessingQueueItem,
    TeamMember,
    utcnow,
)
from api.utils.db_paths import get_crm_db_path

logger = logging.getLogger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS clients (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        domain TEXT,
        contacts TEXT DEFAULT '[]',
        tags TEXT DEFAULT '[]',
        status TEXT DEFAULT 'active',
        created_at TEXT NOT NULL,
        updated_at TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_clients_domain ON clients(domain);

    CREATE TABLE IF NOT EXISTS team_members (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT,
        role TEXT,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS knowledge_sources (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        source_type TEXT NOT NULL,
        enabled INTEGER DEFAULT 1,
        configuration TEXT DEFAULT '{}',
        sync_interval_minutes INTEGER DEFAULT 60,
        last_synced_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS processing_queue (
        id TEXT PRIMARY KEY,
        source TEXT NOT NULL,
        source_id TEXT NOT NULL,
        knowledge_source_id TEXT,
        raw_content TEXT,
        status TEXT NOT NULL,
        client_id TEXT,
        error_message TEXT,
        created_at TEXT NOT NULL,
        processed_at TEXT
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_queue_source_key
        ON processing_queue(source, source_id);
    CREATE INDEX IF NOT EXISTS idx_queue_created ON processing_queue(created_at DESC);

    CREATE TABLE IF NOT EXISTS intelligence (
        id TEXT PRIMARY KEY,
        client_id TEXT,
        source TEXT NOT NULL,
        source_id TEXT NOT NULL,
        knowledge_source_id TEXT,
        summary TEXT NOT NULL,
        key_points TEXT DEFAULT '[]',
        sentiment TEXT NOT NULL,
        action_items TEXT DEFAULT '[]',
        people_mentioned TEXT DEFAULT '[]',
        topics TEXT DEFAULT '[]',
        raw_ai_response TEXT DEFAULT '{}',
        created_at TEXT NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_intelligence_source_key
        ON intelligence(source, source_id);
    CREATE INDEX IF NOT EXISTS idx_intelligence_client ON intelligence(client_id, created_at DESC);

    CREATE TABLE IF NOT EXISTS tasks (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT,
        status TEXT DEFAULT 'todo',
        priority TEXT DEFAULT 'medium',
        assignee_id TEXT,
        due_date TEXT,
        intelligence_id TEXT,
        source TEXT DEFAULT 'manual',
        created_at TEXT NOT NULL,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS client_health (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL UNIQUE,
        status TEXT DEFAULT 'healthy',
        satisfaction_score INTEGER DEFAULT 5,
        last_positive_signal TEXT,
        last_negative_signal TEXT,
        notes TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT
    );

    CREATE TABLE IF NOT EXISTS health_alerts (
        id TEXT PRIMARY KEY,
        client_id TEXT NOT NULL,
        intelligence_id TEXT,
        alert_type TEXT NOT NULL,
        severity TEXT NOT NULL,
        message TEXT NOT NULL,
        acknowledged INTEGER DEFAULT 0,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_alerts_client ON health_alerts(client_id, created_at DESC);

    CREATE TABLE IF NOT EXISTS sync_logs (
        id TEXT PRIMARY KEY,
        knowledge_source_id TEXT NOT NULL,
        status TEXT NOT NULL,
        items_processed INTEGER DEFAULT 0,
        error_message TEXT,
        created_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_sync_logs_source ON sync_logs(knowledge_source_id, created_at DESC);
"""

JSON_COLUMNS = {
    "clients": {"contacts", "tags"},
    "knowledge_sources": {"configuration"},
    "intelligence": {"key_points", "action_items", "people_mentioned", "topics", "raw_ai_response"},
}

BOOL_COLUMNS = {
    "knowledge_sources": {"enabled"},
    "health_alerts": {"acknowledged"},
}


class StoreError(Exception):
    """Raised when the datastore rejects an operation."""


class DuplicateRowError(StoreError):
    """Raised when an insert violates a unique key."""


class CRMStore:
    """
    SQLite-backed CRM storage.

    A fresh connection is opened per call, so one store instance can be shared
    across requests and the scheduler.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize CRM store.

        Args:
            db_path: Path to SQLite database (default from settings)
        """
        self.db_path = str(db_path) if db_path else get_crm_db_path()
        self._columns: dict[str, set[str]] = {}
        self._init_db()

    def _init_db(self):
        """Create database tables if they don't exist."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.executescript(SCHEMA)
            conn.commit()
            for (table,) in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
            ).fetchall():
                cursor = conn.execute(f"PRAGMA table_info({table})")
                self._columns[table] = {row[1] for row in cursor.fetchall()}
            logger.info(f"Initialized CRM database at {self.db_path}")
        finally:
            conn.close()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def _check(self, table: str, columns: Iterable[str]) -> None:
        known = self._columns.get(table)
        if known is None:
            raise StoreError(f"Unknown table: {table}")
        unknown = [c for c in columns if c not in known]
        if unknown:
            raise StoreError(f"Unknown column(s) for {table}: {', '.join(unknown)}")

    def _encode(self, table: str, column: str, value: Any) -> Any:
        if column in JSON_COLUMNS.get(table, ()):
            return json.dumps(value, default=str)
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, bool):
            return int(value)
        return value

    def _decode(self, table: str, row: sqlite3.Row) -> dict:
        data = dict(row)
        for column in JSON_COLUMNS.get(table, ()):
            if column in data and isinstance(data[column], str):
                try:
                    data[column] = json.loads(data[column])
                except json.JSONDecodeError:
                    logger.warning(f"Corrupt JSON in {table}.{column} for row {data.get('id')}")
                    data[column] = None
        for column in BOOL_COLUMNS.get(table, ()):
            if column in data and data[column] is not None:
                data[column] = bool(data[column])
        return data

    def _where(self, table: str, filters: dict) -> tuple[str, list]:
        self._check(table, filters.keys())
        clauses = []
        params = []
        for column, value in filters.items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(self._encode(table, column, value))
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", params

    def _execute(self, sql: str, params: list) -> None:
        conn = self._get_connection()
        try:
            conn.execute(sql, params)
            conn.commit()
        except sqlite3.IntegrityError as e:
            raise DuplicateRowError(str(e)) from e
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    def select(
        self,
        table: str,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
        **filters,
    ) -> list[dict]:
        """
        Select rows matching equality filters (None matches NULL).

        Args:
            table: Table name
            order_by: Column name, optionally suffixed with " DESC"
            limit: Maximum rows to return
            offset: Rows to skip (only with limit)
        """
        where, params = self._where(table, filters)
        sql = f"SELECT * FROM {table}{where}"
        if order_by:
            column, _, direction = order_by.partition(" ")
            self._check(table, [column])
            direction = "DESC" if direction.strip().upper() == "DESC" else "ASC"
            # rowid breaks ties between rows written within the same timestamp
            sql += f" ORDER BY {column} {direction}, rowid {direction}"
        else:
            sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params += [int(limit), int(offset)]

        conn = self._get_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()
        return [self._decode(table, row) for row in rows]

    def select_one(self, table: str, **filters) -> Optional[dict]:
        rows = self.select(table, limit=1, **filters)
        return rows[0] if rows else None

    def count(self, table: str, **filters) -> int:
        where, params = self._where(table, filters)
        conn = self._get_connection()
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0]
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def insert(self, table: str, row: dict) -> dict:
        """Insert a row (id and created_at filled in when absent) and return it as stored."""
        data = dict(row)
        data.setdefault("id", str(uuid.uuid4()))
        if "created_at" in self._columns.get(table, ()):
            data.setdefault("created_at", utcnow())
        self._check(table, data.keys())

        columns = list(data.keys())
        placeholders = ", ".join("?" for _ in columns)
        params = [self._encode(table, c, data[c]) for c in columns]
        self._execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            params,
        )
        return self.select_one(table, id=data["id"])

    def update(self, table: str, row_id: str, changes: dict) -> Optional[dict]:
        """Apply changes to one row by id. Returns the updated row, or None if it doesn't exist."""
        data = dict(changes)
        if "updated_at" in self._columns.get(table, ()):
            data.setdefault("updated_at", utcnow())
        self._check(table, data.keys())
        if not data:
            return self.select_one(table, id=row_id)

        assignments = ", ".join(f"{c} = ?" for c in data)
        params = [self._encode(table, c, v) for c, v in data.items()] + [row_id]
        self._execute(f"UPDATE {table} SET {assignments} WHERE id = ?", params)
        return self.select_one(table, id=row_id)

    def update_where(self, table: str, changes: dict, **filters) -> int:
        """Apply changes to every row matching the filters. Returns the row count touched."""
        data = dict(changes)
        if "updated_at" in self._columns.get(table, ()):
            data.setdefault("updated_at", utcnow())
        self._check(table, data.keys())
        where, where_params = self._where(table, filters)
        assignments = ", ".join(f"{c} = ?" for c in data)
        params = [self._encode(table, c, v) for c, v in data.items()] + where_params

        conn = self._get_connection()
        try:
            cursor = conn.execute(f"UPDATE {table} SET {assignments}{where}", params)
            conn.commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def upsert(self, table: str, row: dict, conflict: tuple[str, ...]) -> dict:
        """
        Insert a row, or update the existing row sharing the `conflict` columns.

        The conflict columns must be backed by a unique index.
        """
        key = {c: row[c] for c in conflict}
        existing = self.select_one(table, **key)
        if existing:
            changes = {k: v for k, v in row.items() if k not in conflict and k != "id"}
            return self.update(table, existing["id"], changes)
        return self.insert(table, row)

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def list_enabled_sources(self) -> list[KnowledgeSource]:
        return [
            KnowledgeSource.from_row(r)
            for r in self.select("knowledge_sources", order_by="created_at", enabled=True)
        ]

    def get_source(self, source_id: str) -> Optional[KnowledgeSource]:
        row = self.select_one("knowledge_sources", id=source_id)
        return KnowledgeSource.from_row(row) if row else None

    def mark_source_synced(self, source_id: str, synced_at: datetime) -> None:
        self.update("knowledge_sources", source_id, {"last_synced_at": synced_at})

    def list_clients(self) -> list[Client]:
        return [Client.from_row(r) for r in self.select("clients", order_by="created_at")]

    def get_client(self, client_id: str) -> Optional[Client]:
        row = self.select_one("clients", id=client_id)
        return Client.from_row(row) if row else None

    def list_team_members(self) -> list[TeamMember]:
        return [TeamMember.from_row(r) for r in self.select("team_members", order_by="created_at")]

    def find_intelligence(self, source: str, source_id: str) -> Optional[Intelligence]:
        row = self.select_one("intelligence", source=source, source_id=source_id)
        return Intelligence.from_row(row) if row else None

    def find_queue_item(self, source: str, source_id: str) -> Optional[ProcessingQueueItem]:
        row = self.select_one("processing_queue", source=source, source_id=source_id)
        return ProcessingQueueItem.from_row(row) if row else None

    def get_client_health(self, client_id: str) -> Optional[ClientHealth]:
        row = self.select_one("client_health", client_id=client_id)
        return ClientHealth.from_row(row) if row else None


# Singleton instance
_crm_store: Optional[CRMStore] = None


def get_crm_store() -> CRMStore:
    """Get or create the process-wide CRM store."""
    global _crm_store
    if _crm_store is None:
        _crm_store = CRMStore()
    return _crm_store


def reset_crm_store() -> None:
    """Reset the singleton (for testing)."""
    global _crm_store
    _crm_store = None
