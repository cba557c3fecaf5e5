"""FTS5-backed search index holding a projection of transaction records."""

import re
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import structlog

from ledger.errors import IndexUnavailable, InvalidQuery, SearchIndexError
from ledger.search.schemas import (
    BatchAck,
    IndexMatch,
    IndexSuggestion,
    QueryContext,
    QueryEvent,
    SearchIndexEntry,
    UpsertResult,
)

logger = structlog.get_logger()

# Characters with FTS5 query meaning; tokens are re-quoted after stripping
_QUERY_NOISE = re.compile(r"[\"*(){}\[\]^~:+\-]")

_MAX_SUGGESTIONS = 5


def _timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _build_match(raw: str) -> str | None:
    """Turn raw user text into an FTS5 MATCH expression.

    Every token becomes a quoted prefix term so typeahead text matches
    partial words; tokens are implicitly AND-ed.

    Args:
        raw: Raw user query string.

    Returns:
        MATCH expression, or None if nothing searchable remains.
    """
    tokens = _QUERY_NOISE.sub(" ", raw).split()
    if not tokens:
        return None
    return " ".join(f'"{token}"*' for token in tokens)


class IndexBatch:
    """Open write batch; holds the index lock until committed or discarded.

    Each upserted entry is written inside its own savepoint so a failing
    entry leaves the previously indexed version untouched.
    """

    def __init__(self, index: "SearchIndex", conn: sqlite3.Connection) -> None:
        self._index = index
        self._conn = conn
        self._upserted = 0
        self._removed = 0
        self._failed = 0
        self.closed = False

    def upsert(self, entries: Iterable[SearchIndexEntry]) -> list[UpsertResult]:
        """Write or replace entries.

        Args:
            entries: Entries keyed by record id.

        Returns:
            One result per entry, in input order.
        """
        self._check_open()
        results: list[UpsertResult] = []
        for entry in entries:
            try:
                self._conn.execute("SAVEPOINT entry_upsert")
                self._conn.execute(
                    "DELETE FROM entries_fts WHERE entry_id = ?", (entry.id,)
                )
                self._conn.execute(
                    """
                    INSERT INTO entries_fts
                        (title, content, entry_id, display_label, last_used, expires_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.title,
                        entry.content,
                        entry.id,
                        entry.display_label,
                        _timestamp(entry.last_used),
                        _timestamp(entry.expires_at),
                    ),
                )
                self._conn.execute("RELEASE entry_upsert")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK TO entry_upsert")
                self._conn.execute("RELEASE entry_upsert")
                self._failed += 1
                logger.warning("search_entry_upsert_failed", id=entry.id, error=str(e))
                results.append(UpsertResult(id=entry.id, ok=False, error=str(e)))
                continue
            self._upserted += 1
            results.append(UpsertResult(id=entry.id, ok=True))
        return results

    def remove(self, ids: Iterable[str]) -> None:
        """Remove entries; ids that are not indexed are ignored."""
        self._check_open()
        id_list = list(ids)
        self._conn.executemany(
            "DELETE FROM entries_fts WHERE entry_id = ?", [(i,) for i in id_list]
        )
        self._removed += len(id_list)

    def clear(self) -> None:
        """Remove every entry."""
        self._check_open()
        self._conn.execute("DELETE FROM entries_fts")

    def remove_expired(self, now: str) -> int:
        """Remove entries expiring at or before the given ISO timestamp."""
        self._check_open()
        cursor = self._conn.execute(
            "DELETE FROM entries_fts WHERE expires_at <= ?", (now,)
        )
        self._removed += cursor.rowcount
        return cursor.rowcount

    def commit(self, client_state: str | None = None) -> BatchAck:
        """Commit staged writes and release the index.

        Args:
            client_state: Marker stored with the commit; None keeps the
                previous marker.

        Returns:
            Acknowledgement with write counts.
        """
        self._check_open()
        try:
            if client_state is not None:
                self._conn.execute(
                    "INSERT OR REPLACE INTO index_meta (key, value) "
                    "VALUES ('client_state', ?)",
                    (client_state,),
                )
            self._conn.execute("COMMIT")
        except sqlite3.Error as e:
            self.discard()
            raise IndexUnavailable(str(e)) from e
        self._release()
        return BatchAck(
            client_state=client_state,
            upserted=self._upserted,
            removed=self._removed,
            failed=self._failed,
        )

    def discard(self) -> None:
        """Roll back every write in the batch and release the index."""
        if self.closed:
            return
        try:
            self._conn.execute("ROLLBACK")
        finally:
            self._release()

    def _release(self) -> None:
        self.closed = True
        self._index._lock.release()

    def _check_open(self) -> None:
        if self.closed:
            raise SearchIndexError("index batch is already closed")


class SearchIndex:
    """SQLite FTS5 index for transaction search.

    Thread-safe via a reentrant lock; the connection uses
    check_same_thread=False because queries are stepped from worker
    threads. Transactions are controlled explicitly (autocommit mode).
    """

    def __init__(self, path: str = ":memory:") -> None:
        """Initialize search index (call initialize() before use).

        Args:
            path: SQLite path; the index is a rebuildable projection so an
                in-memory database is the default.
        """
        self._path = path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    def initialize(self) -> None:
        """Create the database, FTS5 virtual table and metadata table."""
        self._conn = sqlite3.connect(
            self._path, check_same_thread=False, isolation_level=None
        )
        self._conn.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS entries_fts USING fts5(
                title,
                content,
                entry_id UNINDEXED,
                display_label UNINDEXED,
                last_used UNINDEXED,
                expires_at UNINDEXED,
                tokenize='unicode61 remove_diacritics 2'
            )
            """)
        self._conn.execute(
            "CREATE TABLE IF NOT EXISTS index_meta (key TEXT PRIMARY KEY, value TEXT)"
        )
        logger.info("search_index_initialized", path=self._path)

    @property
    def is_available(self) -> bool:
        """Whether the index is open for reads and writes."""
        return self._conn is not None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise IndexUnavailable("search index is not initialized")
        return self._conn

    def begin_batch(self) -> IndexBatch:
        """Open a write batch.

        Blocks other writers and readers until the batch is committed
        with end_batch() or discarded.

        Raises:
            IndexUnavailable: If the index is not open.
        """
        self._lock.acquire()
        try:
            conn = self._connection()
            conn.execute("BEGIN")
        except IndexUnavailable:
            self._lock.release()
            raise
        except sqlite3.Error as e:
            self._lock.release()
            raise IndexUnavailable(str(e)) from e
        return IndexBatch(self, conn)

    def end_batch(self, batch: IndexBatch, client_state: str | None = None) -> BatchAck:
        """Commit a batch opened with begin_batch()."""
        ack = batch.commit(client_state)
        logger.debug(
            "search_batch_committed",
            upserted=ack.upserted,
            removed=ack.removed,
            failed=ack.failed,
        )
        return ack

    @contextmanager
    def batch(self, client_state: str | None = None) -> Iterator[IndexBatch]:
        """Context manager committing the batch on success.

        Any exception raised inside the block discards every write.
        """
        batch = self.begin_batch()
        try:
            yield batch
        except BaseException:
            batch.discard()
            raise
        self.end_batch(batch, client_state)

    def upsert(self, entries: Iterable[SearchIndexEntry]) -> list[UpsertResult]:
        """Write entries in a single committed batch."""
        with self.batch() as batch:
            return batch.upsert(entries)

    def remove(self, ids: Iterable[str]) -> None:
        """Remove entries in a single committed batch; idempotent."""
        with self.batch() as batch:
            batch.remove(ids)

    def rebuild(
        self,
        entries: Iterable[SearchIndexEntry],
        client_state: str | None = None,
    ) -> int:
        """Replace the whole index with the given entries.

        Args:
            entries: Full projection of the record store.
            client_state: Marker stored with the commit.

        Returns:
            Number of entries indexed.
        """
        with self.batch(client_state) as batch:
            batch.clear()
            results = batch.upsert(entries)

        count = sum(1 for r in results if r.ok)
        logger.info("search_index_rebuilt", document_count=count)
        return count

    def query(
        self,
        text: str,
        context: QueryContext | None = None,
    ) -> Iterator[QueryEvent]:
        """Start a ranked lookup.

        Validation happens immediately; matching rows are then read lazily,
        one page per step, so a consumer can stop between steps.

        Args:
            text: Raw user query text.
            context: Limit and paging options.

        Returns:
            Iterator of match events followed by suggestion events.

        Raises:
            InvalidQuery: If the text has no searchable tokens.
            IndexUnavailable: If the index is not open.
        """
        match = _build_match(text)
        if match is None:
            raise InvalidQuery(text)
        self._connection()
        return self._iter_events(match, context or QueryContext())

    def _iter_events(self, match: str, context: QueryContext) -> Iterator[QueryEvent]:
        now = _timestamp(datetime.now(UTC))
        titles: dict[str, None] = {}
        emitted = 0

        while emitted < context.limit:
            size = min(context.page_size, context.limit - emitted)
            rows = self._fetch_page(match, now, size, emitted)
            for entry_id, title, score in rows:
                titles.setdefault(title)
                yield IndexMatch(id=entry_id, score=round(score, 4))
            emitted += len(rows)
            if len(rows) < size:
                break

        if context.suggestions:
            for title in list(titles)[:_MAX_SUGGESTIONS]:
                yield IndexSuggestion(text=title)

    def _fetch_page(
        self, match: str, now: str, limit: int, offset: int
    ) -> list[tuple[str, str, float]]:
        with self._lock:
            conn = self._connection()
            try:
                return conn.execute(
                    "SELECT entry_id, title, bm25(entries_fts, 10.0, 1.0) AS score "
                    "FROM entries_fts "
                    "WHERE entries_fts MATCH ? AND expires_at > ? "
                    "ORDER BY score, last_used DESC "
                    "LIMIT ? OFFSET ?",
                    (match, now, limit, offset),
                ).fetchall()
            except sqlite3.OperationalError as e:
                logger.warning("search_query_failed", match=match, error=str(e))
                if "syntax error" in str(e):
                    raise InvalidQuery(str(e)) from e
                raise IndexUnavailable(str(e)) from e

    def get_entry(self, entry_id: str) -> SearchIndexEntry | None:
        """Fetch the indexed entry for a record id, if any."""
        with self._lock:
            row = self._connection().execute(
                "SELECT entry_id, title, content, display_label, last_used, expires_at "
                "FROM entries_fts WHERE entry_id = ?",
                (entry_id,),
            ).fetchone()
        if row is None:
            return None
        return SearchIndexEntry(
            id=row[0],
            title=row[1],
            content=row[2],
            display_label=row[3],
            last_used=datetime.fromisoformat(row[4]),
            expires_at=datetime.fromisoformat(row[5]),
        )

    def count(self) -> int:
        """Number of indexed entries."""
        with self._lock:
            return int(
                self._connection().execute("SELECT COUNT(*) FROM entries_fts").fetchone()[0]
            )

    @property
    def client_state(self) -> str | None:
        """Marker stored by the most recent batch commit that set one."""
        with self._lock:
            row = self._connection().execute(
                "SELECT value FROM index_meta WHERE key = 'client_state'"
            ).fetchone()
        return row[0] if row else None

    def purge_expired(self) -> int:
        """Drop entries whose expiration horizon has passed.

        Returns:
            Number of entries removed.

        Raises:
            IndexUnavailable: If the index is closed or the delete fails.
        """
        now = _timestamp(datetime.now(UTC))
        try:
            with self.batch() as batch:
                removed = batch.remove_expired(now)
        except sqlite3.Error as e:
            raise IndexUnavailable(str(e)) from e
        if removed:
            logger.info("search_index_purged", removed=removed)
        return removed

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None
                logger.info("search_index_closed")
