"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (default persistence) and PostgreSQL. All monetary values are stored as
Decimal strings. Every backend supports ``atomic()`` units of work: changes made
inside the block are committed together or rolled back together.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Set, Union
from decimal import Decimal
from datetime import datetime, date, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .logging_config import get_logger


logger = get_logger("bms.storage")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are UTC-aware; naive bounds are read as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to JSON-safe values: Decimals and dates become strings"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
        return result


class StorageInterface(ABC):
    """
    Table/document store used by every component.

    Records are plain dicts keyed by id. ``find`` matches top-level keys by
    equality and, like ``load_all``, returns records in insertion order.
    """

    _lock: threading.RLock
    _atomic_depth: int = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @property
    def in_transaction(self) -> bool:
        return self._atomic_depth > 0

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic units of work.

        The storage lock is held for the whole block, so a unit of work never
        interleaves with writes from other threads. Nested blocks join the
        outermost one; only the outermost block commits or rolls back.
        """
        with self._lock:
            outermost = self._atomic_depth == 0
            if outermost:
                self.begin_transaction()
            self._atomic_depth += 1
            try:
                yield
            except Exception:
                self._atomic_depth -= 1
                if outermost:
                    self.rollback()
                    logger.debug("Unit of work rolled back")
                raise
            else:
                self._atomic_depth -= 1
                if outermost:
                    self.commit()


def _copy(record: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(record, default=str))


class InMemoryStorage(StorageInterface):
    """Dict-backed storage for tests and the memory:// URL"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None

    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._table(table).get(record_id)
            return _copy(record) if record is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [_copy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                _copy(record)
                for record in self._table(table).values()
                if all(key in record and record[key] == value for key, value in filters.items())
            ]

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def begin_transaction(self) -> None:
        """Snapshot all tables so a rollback can restore them"""
        with self._lock:
            self._snapshot = _copy(self._data)

    def commit(self) -> None:
        with self._lock:
            self._snapshot = None

    def rollback(self) -> None:
        with self._lock:
            if self._snapshot is not None:
                self._data = self._snapshot
                self._snapshot = None

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """SQLite-backed storage, one JSON document per row"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # Commits are issued by _autocommit or the outermost atomic() block
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: Set[str] = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _autocommit(self) -> None:
        if not self.in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self._connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} "
            "(id TEXT PRIMARY KEY, data TEXT NOT NULL, created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
        )
        self._connection.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_created_at ON {table}(created_at)")
        self._autocommit()
        self._tables.add(table)

    def _rows(self, table: str, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(sql.format(table=table), params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def _write(self, table: str, sql: str, params: Sequence[Any]) -> int:
        with self._lock:
            self._ensure_table(table)
            affected = self._connection.execute(sql.format(table=table), params).rowcount
            self._autocommit()
            return affected

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._write(
            table,
            "INSERT INTO {table} (id, data, created_at, updated_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
            (record_id, json.dumps(data, default=str), now, now)
        )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self._rows(table, "SELECT data FROM {table} WHERE id = ?", (record_id,))
        return rows[0] if rows else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self._rows(table, "SELECT data FROM {table} ORDER BY created_at")

    def delete(self, table: str, record_id: str) -> bool:
        return self._write(table, "DELETE FROM {table} WHERE id = ?", (record_id,)) > 0

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Match top-level JSON keys with json_extract"""
        if not filters:
            return self.load_all(table)
        where = " AND ".join("json_extract(data, ?) = ?" for _ in filters)
        params: List[Any] = []
        for key, value in filters.items():
            params.extend([f"$.{key}", value])
        return self._rows(table, f"SELECT data FROM {{table}} WHERE {where} ORDER BY created_at", params)

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def commit(self) -> None:
        with self._lock:
            self._connection.commit()

    def rollback(self) -> None:
        with self._lock:
            self._connection.rollback()
            # Tables created inside the rolled back transaction are gone too
            self._tables.clear()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL backend storing each record as a JSONB document"""

    def __init__(self, connection_string: str):
        import psycopg2
        import psycopg2.extras

        self.connection_string = connection_string
        self._lock = threading.RLock()
        self._tables: Set[str] = set()
        self._connection = psycopg2.connect(connection_string, cursor_factory=psycopg2.extras.RealDictCursor)
        self._connection.autocommit = False

    def _autocommit(self) -> None:
        if not self.in_transaction:
            self._connection.commit()

    @contextmanager
    def _cursor(self, table: str):
        """Cursor on a connection where ``table`` exists; caller holds the lock"""
        if table not in self._tables:
            with self._connection.cursor() as cursor:
                cursor.execute(
                    f"CREATE TABLE IF NOT EXISTS {table} (id TEXT PRIMARY KEY, data JSONB NOT NULL, "
                    "created_at TIMESTAMPTZ DEFAULT NOW(), updated_at TIMESTAMPTZ DEFAULT NOW())"
                )
                cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_data ON {table} USING gin(data)")
            self._autocommit()
            self._tables.add(table)
        with self._connection.cursor() as cursor:
            yield cursor

    def _rows(self, table: str, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(sql.format(table=table), params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def _write(self, table: str, sql: str, params: Sequence[Any]) -> int:
        with self._lock:
            with self._cursor(table) as cursor:
                cursor.execute(sql.format(table=table), params)
                affected = cursor.rowcount
            self._autocommit()
            return affected

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Upsert; created_at keeps its first value"""
        now = datetime.now(timezone.utc)
        self._write(
            table,
            "INSERT INTO {table} (id, data, created_at, updated_at) VALUES (%s, %s, %s, %s) "
            "ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data, updated_at = EXCLUDED.updated_at",
            (record_id, json.dumps(data, default=str), now, now)
        )

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        rows = self._rows(table, "SELECT data FROM {table} WHERE id = %s", (record_id,))
        return rows[0] if rows else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        return self._rows(table, "SELECT data FROM {table} ORDER BY created_at")

    def delete(self, table: str, record_id: str) -> bool:
        return self._write(table, "DELETE FROM {table} WHERE id = %s", (record_id,)) > 0

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """JSONB containment match on top-level keys"""
        if not filters:
            return self.load_all(table)
        return self._rows(table, "SELECT data FROM {table} WHERE data @> %s::jsonb ORDER BY created_at",
                          (json.dumps(filters, default=str),))

    def count(self, table: str) -> int:
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"SELECT COUNT(*) AS total FROM {table}")
            return cursor.fetchone()['total']

    def commit(self) -> None:
        with self._lock:
            self._connection.commit()

    def rollback(self) -> None:
        with self._lock:
            self._connection.rollback()
            self._tables.clear()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL.

    ``memory://`` gives InMemoryStorage, ``sqlite:///path.db`` (or
    ``sqlite://`` for an in-memory database) gives SQLiteStorage and
    ``postgresql://...`` gives PostgreSQLStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:")
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url)
    raise ValueError(f"Unsupported database URL: {database_url}")
