"""
Storage Backend Module

Key/value tables of JSON documents used by the persistence layer. The
in-memory backend serves tests and throwaway ledgers; the SQLite backend is
the durable one. Both support atomic units of work with rollback.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path
from contextlib import contextmanager

from .exceptions import ConfigurationError


MEMORY_URL = "memory://"
SQLITE_URL_PREFIX = "sqlite:///"

Record = Dict[str, Any]


def _copy(record: Any) -> Any:
    # Round-trip through JSON so callers never share nested objects with the store
    return json.loads(json.dumps(record, default=str))


class StorageInterface(ABC):
    """Tables of records keyed by id, kept in insertion order"""

    _atomic_depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Record) -> None:
        """Insert or overwrite a record, keeping its original position"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Record]:
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Record]:
        """Every record of a table in insertion order"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Remove a record; False if it was not there"""

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def begin_transaction(self) -> None:
        pass

    def commit(self) -> None:
        pass

    def rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """
        Run a block as one unit of work

        Nested blocks join the outermost one: only the outermost block
        commits, and a failure anywhere rolls back the whole unit.
        """
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
            raise
        self._atomic_depth -= 1
        if outermost:
            try:
                self.commit()
            except Exception:
                # A unit that failed to commit must not leak into the next one
                self.rollback()
                raise


class InMemoryStorage(StorageInterface):
    """Dict-of-dicts backend; rollback restores a copy taken at begin"""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Record]] = {}
        self._saved_state: Optional[Dict[str, Dict[str, Record]]] = None
        self._lock = threading.RLock()

    def _table(self, table: str) -> Dict[str, Record]:
        return self._tables.setdefault(table, {})

    def save(self, table: str, record_id: str, data: Record) -> None:
        with self._lock:
            self._table(table)[record_id] = _copy(data)

    def load(self, table: str, record_id: str) -> Optional[Record]:
        with self._lock:
            record = self._table(table).get(record_id)
            return None if record is None else _copy(record)

    def load_all(self, table: str) -> List[Record]:
        with self._lock:
            return [_copy(record) for record in self._table(table).values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            return self._table(table).pop(record_id, None) is not None

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._tables[table] = {}

    def begin_transaction(self) -> None:
        with self._lock:
            self._saved_state = _copy(self._tables)

    def commit(self) -> None:
        with self._lock:
            self._saved_state = None

    def rollback(self) -> None:
        with self._lock:
            if self._saved_state is not None:
                self._tables = self._saved_state
                self._saved_state = None

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    One SQLite table per record table: a sequence column for insertion
    order, the record id and its JSON payload
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        # DEFERRED: sqlite3 opens a transaction before the first write and
        # leaves the commit to us
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._known_tables = set()

        if self.db_path != ":memory:":
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._known_tables.add(table)

    def _query(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(sql.format(table=table), params)

    def _write(self, table: str, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        with self._lock:
            cursor = self._query(table, sql, params)
            if not self._in_transaction:
                self._connection.commit()
            return cursor

    def save(self, table: str, record_id: str, data: Record) -> None:
        now = datetime.now(timezone.utc).isoformat()
        self._write(table, """
            INSERT INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
        """, (record_id, json.dumps(data, default=str), now, now))

    def load(self, table: str, record_id: str) -> Optional[Record]:
        row = self._query(table, "SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return json.loads(row['data']) if row else None

    def load_all(self, table: str) -> List[Record]:
        rows = self._query(table, "SELECT data FROM {table} ORDER BY seq").fetchall()
        return [json.loads(row['data']) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        return self._write(table, "DELETE FROM {table} WHERE id = ?", (record_id,)).rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        return self._query(table, "SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,)).fetchone() is not None

    def count(self, table: str) -> int:
        return self._query(table, "SELECT COUNT(*) AS n FROM {table}").fetchone()['n']

    def clear_table(self, table: str) -> None:
        self._write(table, "DELETE FROM {table}")

    def begin_transaction(self) -> None:
        with self._lock:
            self._in_transaction = True

    def commit(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.commit()
                self._in_transaction = False

    def rollback(self) -> None:
        # Unconditional so it also discards writes left behind by a failed commit
        with self._lock:
            self._connection.rollback()
            self._in_transaction = False
            # A table created inside the unit may be gone again
            self._known_tables.clear()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a database URL

    Supports ``memory://`` and ``sqlite:///<path>`` (``sqlite:///:memory:``
    for a throwaway SQLite database).
    """
    if database_url == MEMORY_URL:
        return InMemoryStorage()
    if database_url.startswith(SQLITE_URL_PREFIX):
        path = database_url[len(SQLITE_URL_PREFIX):]
        if not path:
            raise ConfigurationError(f"SQLite URL has no database path: {database_url}")
        return SQLiteStorage(path)
    raise ConfigurationError(f"Unsupported database URL: {database_url}")
