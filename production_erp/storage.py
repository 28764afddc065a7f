"""SQLite-backed persistence helpers for production tracking."""

from __future__ import annotations

import logging
import pickle
import sqlite3
from datetime import datetime
from typing import Callable, Generic, Iterator, List, TypeVar

from .domain import Worker, WorkerAttendance, WorkLog, WorkOrder
from .errors import PersistenceFailure
from .repository import DuplicateRecordError, RecordNotFoundError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class SQLiteRepository(Generic[T]):
    """Repository implementation that persists records inside SQLite.

    Records are pickled into a single ``payload`` column and listed in the
    order they were first stored, matching :class:`InMemoryRepository`.
    Failed writes are rolled back and surface as :class:`PersistenceFailure`.
    """

    def __init__(self, connection: sqlite3.Connection, table: str) -> None:
        self._connection = connection
        self._table = table
        connection.execute(
            f"CREATE TABLE IF NOT EXISTS {table} ("  # nosec - static table names
            "id TEXT PRIMARY KEY, payload BLOB NOT NULL, updated_at TEXT NOT NULL)"
        )
        connection.commit()

    def _query(self, clause: str, params: tuple = ()) -> List[sqlite3.Row]:
        return self._connection.execute(
            f"SELECT id, payload FROM {self._table} {clause}", params
        ).fetchall()

    def __contains__(self, item_id: object) -> bool:
        return isinstance(item_id, str) and bool(self._query("WHERE id = ?", (item_id,)))

    def __iter__(self) -> Iterator[T]:
        return iter(self.list())

    def __len__(self) -> int:
        (count,) = self._connection.execute(f"SELECT COUNT(*) FROM {self._table}").fetchone()
        return int(count)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, item_id: str) -> T:
        rows = self._query("WHERE id = ?", (item_id,))
        if not rows:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        return pickle.loads(rows[0]["payload"])

    def list(self) -> List[T]:
        return [pickle.loads(row["payload"]) for row in self._query("ORDER BY rowid")]

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [item for item in self.list() if predicate(item)]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def add(self, item_id: str, item: T) -> None:
        if item_id in self:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._write("INSERT INTO {table} (id, payload, updated_at) VALUES (?, ?, ?)", item_id, item)

    def upsert(self, item_id: str, item: T) -> None:
        # DO UPDATE keeps the rowid, so listing order is stable across saves
        self._write(
            "INSERT INTO {table} (id, payload, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET payload = excluded.payload, "
            "updated_at = excluded.updated_at",
            item_id,
            item,
        )

    def remove(self, item_id: str) -> None:
        if item_id not in self:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        self._execute(f"DELETE FROM {self._table} WHERE id = ?", (item_id,))

    def _write(self, template: str, item_id: str, item: T) -> None:
        params = (item_id, pickle.dumps(item), datetime.utcnow().isoformat())
        self._execute(template.format(table=self._table), params)

    def _execute(self, statement: str, params: tuple) -> None:
        try:
            self._connection.execute(statement, params)
            self._connection.commit()
        except sqlite3.Error as exc:
            self._connection.rollback()
            logger.error("Write to %s failed: %s", self._table, exc)
            raise PersistenceFailure(f"Could not write to {self._table}") from exc


class ProductionDatabase:
    """One SQLite file holding every production table.

    Usable as a context manager; leaving the block closes the connection.
    """

    def __init__(self, path: str) -> None:
        self._connection = sqlite3.connect(path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self.workers: SQLiteRepository[Worker] = SQLiteRepository(self._connection, "workers")
        self.work_orders: SQLiteRepository[WorkOrder] = SQLiteRepository(self._connection, "work_orders")
        self.work_logs: SQLiteRepository[WorkLog] = SQLiteRepository(self._connection, "work_logs")
        self.attendance: SQLiteRepository[WorkerAttendance] = SQLiteRepository(
            self._connection, "attendance"
        )
        logger.debug("Opened production database at %s", path)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "ProductionDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


__all__ = ["SQLiteRepository", "ProductionDatabase"]
