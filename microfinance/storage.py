"""
Storage Backend Module

Document storage for customers, loans, requests and team members. Records are
JSON documents keyed by id inside named tables. The in-memory backend serves
tests; the SQLite backend keeps one table of JSON documents per collection.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union
from decimal import Decimal
from datetime import date, datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager


def _encode(value: Any) -> Any:
    """Default JSON encoder: dates as ISO strings, Decimals as strings"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return str(value)


def _copy(document: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(document, default=_encode))


def _quote(identifier: str) -> str:
    """Double-quote an SQLite identifier; SQL keywords such as ``order`` are valid table names"""
    return '"' + identifier.replace('"', '""') + '"'


def matches(document: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    """True when every filter key is present with an equal value"""
    for key, value in filters.items():
        if key not in document or document[key] != value:
            return False
    return True


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result
    
    def touch(self) -> None:
        """Bump ``updated_at`` to now"""
        self.updated_at = datetime.now(timezone.utc)


class StorageInterface(ABC):
    """Abstract interface for document storage backends"""
    
    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a document"""
    
    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a document by id"""
    
    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load every document of a table in insertion order"""
    
    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a document, returning whether it existed"""
    
    @abstractmethod
    def close(self) -> None:
        """Release backend resources"""
    
    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None
    
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find documents whose top-level fields equal ``filters``"""
        return [doc for doc in self.load_all(table) if matches(doc, filters)]
    
    def find_one(self, table: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        found = self.find(table, filters)
        return found[0] if found else None
    
    def find_where(self, table: str, predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        """Find documents accepted by an arbitrary predicate"""
        return [doc for doc in self.load_all(table) if predicate(doc)]
    
    def count(self, table: str) -> int:
        return len(self.load_all(table))
    
    def begin_transaction(self) -> None:
        """Start a transaction (default no-op)"""
    
    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
    
    def rollback(self) -> None:
        """Roll back current transaction (default no-op)"""
    
    @contextmanager
    def atomic(self):
        """Context manager for atomic multi-document writes"""
        self.begin_transaction()
        try:
            yield
            self.commit()
        except Exception:
            self.rollback()
            raise


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""
    
    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshot: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
        self._depth = 0
    
    def _table(self, table: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(table, {})
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            # Copies keep callers from mutating stored documents
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
    
    def close(self) -> None:
        pass
    
    def begin_transaction(self) -> None:
        with self._lock:
            # Nested transactions join the outermost one
            if self._depth == 0:
                self._snapshot = _copy(self._data)
            self._depth += 1
    
    def commit(self) -> None:
        with self._lock:
            if self._depth > 0:
                self._depth -= 1
            if self._depth == 0:
                self._snapshot = None
    
    def rollback(self) -> None:
        with self._lock:
            if self._snapshot is not None:
                self._data = self._snapshot
            self._snapshot = None
            self._depth = 0


class SQLiteStorage(StorageInterface):
    """SQLite storage: one table of JSON documents per collection"""
    
    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level='DEFERRED')
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._depth = 0
        self._known_tables = set()
        
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
    
    def _ensure_table(self, table: str) -> None:
        if table in self._known_tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {_quote(table)} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS {_quote('idx_' + table + '_created_at')}
                ON {_quote(table)}(created_at)
            """)
            if not self._in_transaction:
                self._connection.commit()
            self._known_tables.add(table)
    
    def _maybe_commit(self) -> None:
        if not self._in_transaction:
            self._connection.commit()
    
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._connection.execute(f"""
                INSERT OR REPLACE INTO {_quote(table)} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {_quote(table)} WHERE id = ?), ?),
                    ?)
            """, (record_id, json.dumps(data, default=_encode), record_id, now, now))
            self._maybe_commit()
    
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            row = self._connection.execute(
                f"SELECT data FROM {_quote(table)} WHERE id = ?", (record_id,)
            ).fetchone()
            return json.loads(row['data']) if row else None
    
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT data FROM {_quote(table)} ORDER BY created_at, rowid"
            )
            return [json.loads(row['data']) for row in cursor.fetchall()]
    
    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"DELETE FROM {_quote(table)} WHERE id = ?", (record_id,))
            self._maybe_commit()
            return cursor.rowcount > 0
    
    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(
                f"SELECT 1 FROM {_quote(table)} WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None
    
    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._connection.execute(f"SELECT COUNT(*) AS n FROM {_quote(table)}").fetchone()['n']
    
    def begin_transaction(self) -> None:
        with self._lock:
            self._in_transaction = True
            self._depth += 1
    
    def commit(self) -> None:
        with self._lock:
            if self._depth > 0:
                self._depth -= 1
            if self._in_transaction and self._depth == 0:
                self._connection.commit()
                self._in_transaction = False
    
    def rollback(self) -> None:
        with self._lock:
            if self._in_transaction:
                self._connection.rollback()
                self._in_transaction = False
            # Tables created inside the transaction may be gone
            self._known_tables.clear()
            self._depth = 0
    
    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
