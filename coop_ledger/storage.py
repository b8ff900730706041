"""
Storage Backend Module

Provides the whole-collection persistence interface and implementations for
in-memory (testing) and SQLite (persistence). Each logical collection is read
and written as one JSON document; all monetary values are stored as Decimal
strings by the models before they reach this layer.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional, Union
from datetime import datetime, timezone
import sqlite3
import json
import threading
from pathlib import Path


class StorageError(Exception):
    """Raised when a backend cannot read or write a collection"""
    pass


# Logical collection names persisted by the cooperative
COLLECTIONS = (
    "config",
    "members",
    "loans",
    "contributions",
    "expenses",
    "transactions",
    "refunds",
    "activities",
    "cashbox",
)


class CollectionStore(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def get(self, name: str) -> Optional[Any]:
        """Load a whole collection, or None when it was never written"""
        pass

    @abstractmethod
    def set(self, name: str, value: Any) -> None:
        """Replace a whole collection"""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every collection"""
        pass

    @abstractmethod
    def names(self) -> List[str]:
        """Names of the collections currently stored"""
        pass

    def close(self) -> None:
        """Close storage connection (default no-op)"""
        pass


class InMemoryStore(CollectionStore):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: dict = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> Optional[Any]:
        with self._lock:
            if name not in self._data:
                return None
            # Deep copy to prevent external mutation
            return json.loads(self._data[name])

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            self._data[name] = json.dumps(value, default=str)

    def clear(self) -> None:
        with self._lock:
            self._data = {}

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class SQLiteStore(CollectionStore):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        with self._lock:
            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    name TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._connection.commit()

    def get(self, name: str) -> Optional[Any]:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT data FROM collections WHERE name = ?", (name,)
            )
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            now = datetime.now(timezone.utc).isoformat()
            try:
                self._connection.execute(
                    "INSERT OR REPLACE INTO collections (name, data, updated_at) VALUES (?, ?, ?)",
                    (name, json.dumps(value, default=str), now)
                )
                self._connection.commit()
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StorageError(f"Could not write collection {name}: {e}") from e

    def clear(self) -> None:
        with self._lock:
            self._connection.execute("DELETE FROM collections")
            self._connection.commit()

    def names(self) -> List[str]:
        with self._lock:
            cursor = self._connection.execute("SELECT name FROM collections ORDER BY name")
            return [row['name'] for row in cursor.fetchall()]

    def close(self) -> None:
        with self._lock:
            self._connection.close()
