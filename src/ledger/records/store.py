"""SQLite-backed record store, the source of truth for transactions."""

import sqlite3
import threading
from collections.abc import Callable, Iterable
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog
from pydantic import ValidationError

from ledger.errors import (
    DeleteFailed,
    InvalidData,
    LoadFailed,
    NotFound,
    SaveFailed,
    UpdateFailed,
)
from ledger.records.schemas import TransactionRecord

logger = structlog.get_logger()

_COLUMNS = (
    "id",
    "merchant_name",
    "amount",
    "timestamp",
    "currency",
    "location",
    "category",
    "description",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM transactions"

# SQLite caps host parameters per statement
_MAX_PARAMS = 500


class RecordSort(str, Enum):
    """Ordering applied to fetched records; ties keep insertion order."""

    NEWEST_FIRST = "newest_first"
    OLDEST_FIRST = "oldest_first"

    @property
    def order_by(self) -> str:
        direction = "DESC" if self is RecordSort.NEWEST_FIRST else "ASC"
        return f"ORDER BY timestamp {direction}, seq ASC"


def _serialize_timestamp(value: datetime) -> str:
    # Fixed-width ISO strings sort chronologically
    return value.isoformat(timespec="microseconds")


def _to_row(record: TransactionRecord) -> tuple[Any, ...]:
    return (
        record.id,
        record.merchant_name,
        str(record.amount),
        _serialize_timestamp(record.timestamp),
        record.currency,
        record.location,
        record.category,
        record.description,
    )


def _from_row(row: tuple[Any, ...]) -> TransactionRecord:
    data = dict(zip(_COLUMNS, row))
    data["amount"] = Decimal(data["amount"])
    data["timestamp"] = datetime.fromisoformat(data["timestamp"])
    return TransactionRecord(**data)


class RecordStore:
    """Transactional store for transaction records.

    Thread-safe via a lock around a single SQLite connection opened with
    check_same_thread=False, since searches read from worker threads.
    Every write runs in its own transaction and is rolled back on error.
    """

    def __init__(self, path: str = ":memory:") -> None:
        """Initialize record store (call initialize() before use).

        Args:
            path: SQLite database path, ":memory:" for an ephemeral store.
        """
        self._path = path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def initialize(self) -> None:
        """Open the database and create the transactions table."""
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                merchant_name TEXT NOT NULL CHECK (length(merchant_name) > 0),
                amount TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                currency TEXT NOT NULL,
                location TEXT,
                category TEXT,
                description TEXT
            )
            """)
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS transactions_timestamp ON transactions (timestamp)"
        )
        self._conn.commit()
        logger.info("record_store_initialized", path=self._path)

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise LoadFailed("record store is not initialized")
        return self._conn

    def create(self, record: TransactionRecord) -> str:
        """Insert a new record.

        Args:
            record: Validated record with its id assigned.

        Returns:
            The id of the stored record.

        Raises:
            SaveFailed: If the insert fails (including duplicate ids).
        """
        self.create_many([record])
        return record.id

    def create_many(self, records: Iterable[TransactionRecord]) -> list[str]:
        """Insert several records in one transaction.

        Args:
            records: Validated records to insert.

        Returns:
            Ids of the stored records, in input order.

        Raises:
            SaveFailed: If any insert fails; nothing is stored in that case.
        """
        rows = [_to_row(r) for r in records]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._lock:
            conn = self._connection()
            try:
                conn.executemany(
                    f"INSERT INTO transactions ({', '.join(_COLUMNS)}) "
                    f"VALUES ({placeholders})",
                    rows,
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.warning("record_save_failed", error=str(e), count=len(rows))
                raise SaveFailed(str(e)) from e

        logger.info("records_created", count=len(rows))
        return [row[0] for row in rows]

    def update(self, record_id: str, fields: dict[str, Any]) -> TransactionRecord:
        """Apply a partial update to an existing record.

        Args:
            record_id: Id of the record to update.
            fields: Field values to overwrite; "id" is ignored.

        Returns:
            The record as stored after the update.

        Raises:
            NotFound: If the id does not exist.
            InvalidData: If the merged record fails validation.
            UpdateFailed: If the write fails.
        """
        changes = {k: v for k, v in fields.items() if k != "id"}
        with self._lock:
            conn = self._connection()
            current = self._get_locked(conn, record_id)
            try:
                updated = TransactionRecord(**{**current.model_dump(), **changes})
            except ValidationError as e:
                raise InvalidData(str(e)) from e

            assignments = ", ".join(f"{col} = ?" for col in _COLUMNS[1:])
            try:
                conn.execute(
                    f"UPDATE transactions SET {assignments} WHERE id = ?",
                    (*_to_row(updated)[1:], record_id),
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.warning("record_update_failed", id=record_id, error=str(e))
                raise UpdateFailed(str(e)) from e

        logger.info("record_updated", id=record_id, fields=sorted(changes))
        return updated

    def delete(self, record_id: str) -> None:
        """Delete a record.

        Raises:
            NotFound: If the id does not exist.
            DeleteFailed: If the write fails.
        """
        with self._lock:
            conn = self._connection()
            try:
                cursor = conn.execute(
                    "DELETE FROM transactions WHERE id = ?", (record_id,)
                )
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                logger.warning("record_delete_failed", id=record_id, error=str(e))
                raise DeleteFailed(str(e)) from e
            if cursor.rowcount == 0:
                raise NotFound(record_id)

        logger.info("record_deleted", id=record_id)

    def get(self, record_id: str) -> TransactionRecord:
        """Fetch a single record by id.

        Raises:
            NotFound: If the id does not exist.
        """
        with self._lock:
            return self._get_locked(self._connection(), record_id)

    def _get_locked(self, conn: sqlite3.Connection, record_id: str) -> TransactionRecord:
        row = self._query(conn, f"{_SELECT} WHERE id = ?", (record_id,))
        if not row:
            raise NotFound(record_id)
        return _from_row(row[0])

    def exists(self, record_id: str) -> bool:
        """Check whether a record id is present."""
        try:
            self.get(record_id)
        except NotFound:
            return False
        return True

    def fetch_all(
        self, sort: RecordSort = RecordSort.NEWEST_FIRST
    ) -> list[TransactionRecord]:
        """Fetch every record in the requested order."""
        with self._lock:
            rows = self._query(self._connection(), f"{_SELECT} {sort.order_by}")
        return [_from_row(r) for r in rows]

    def fetch_by_ids(
        self,
        ids: Iterable[str],
        sort: RecordSort = RecordSort.NEWEST_FIRST,
    ) -> list[TransactionRecord]:
        """Resolve ids to records; unknown ids are skipped.

        Args:
            ids: Record ids, duplicates allowed.
            sort: Ordering of the returned records.

        Returns:
            Records that exist, in the requested order.
        """
        unique = list(dict.fromkeys(ids))
        if not unique:
            return []

        rows: list[tuple[Any, ...]] = []
        with self._lock:
            conn = self._connection()
            for start in range(0, len(unique), _MAX_PARAMS):
                chunk = unique[start : start + _MAX_PARAMS]
                marks = ", ".join("?" for _ in chunk)
                rows.extend(
                    self._query(
                        conn,
                        f"SELECT seq, {', '.join(_COLUMNS)} FROM transactions "
                        f"WHERE id IN ({marks})",
                        tuple(chunk),
                    )
                )

        # Re-sort in Python since chunks were fetched separately
        rows.sort(key=lambda r: r[0])
        rows.sort(key=lambda r: r[4], reverse=sort is RecordSort.NEWEST_FIRST)
        return [_from_row(r[1:]) for r in rows]

    def fetch_by_predicate(
        self,
        predicate: Callable[[TransactionRecord], bool],
        sort: RecordSort = RecordSort.NEWEST_FIRST,
    ) -> list[TransactionRecord]:
        """Fetch records for which predicate returns True.

        Args:
            predicate: Filter applied to each stored record.
            sort: Ordering of the returned records.

        Returns:
            Matching records in the requested order.
        """
        return [r for r in self.fetch_all(sort) if predicate(r)]

    def count(self) -> int:
        """Number of stored records."""
        with self._lock:
            rows = self._query(self._connection(), "SELECT COUNT(*) FROM transactions")
        return int(rows[0][0])

    def _query(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: tuple[Any, ...] = (),
    ) -> list[tuple[Any, ...]]:
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.warning("record_load_failed", error=str(e))
            raise LoadFailed(str(e)) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("record_store_closed")
