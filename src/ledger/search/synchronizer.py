"""Keeps the search index consistent with record store writes."""

import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

import structlog

from ledger.records.schemas import TransactionRecord
from ledger.search.index import IndexBatch, SearchIndex
from ledger.search.schemas import SearchIndexEntry

logger = structlog.get_logger()


class IndexSynchronizer:
    """Projects record mutations into the search index.

    Called synchronously after each store write commits. Index writes are
    best-effort: failures are logged and counted but never raised, so a
    committed record write is never reported as failed because of the
    index. Calls made inside batch() on the same thread share one commit.

    Attributes:
        failures: Number of index writes that failed since startup.
    """

    def __init__(self, index: SearchIndex) -> None:
        """Initialize synchronizer.

        Args:
            index: Search index receiving the projection.
        """
        self._index = index
        self._local = threading.local()
        self.failures = 0

    def on_create(self, record: TransactionRecord) -> None:
        """Index a newly created record."""
        self._upsert(record, "create")

    def on_update(self, record: TransactionRecord) -> None:
        """Replace the entry of an updated record."""
        self._upsert(record, "update")

    def on_delete(self, record_id: str) -> None:
        """Remove the entry of a deleted record; idempotent."""
        self._write(lambda b: b.remove([record_id]), "delete", record_id)

    def _upsert(self, record: TransactionRecord, action: str) -> None:
        entry = SearchIndexEntry.from_record(record)

        def write(batch: IndexBatch) -> None:
            for result in batch.upsert([entry]):
                if not result.ok:
                    self.failures += 1
                    logger.error(
                        "search_index_write_failed",
                        action=action,
                        id=result.id,
                        error=result.error,
                    )

        self._write(write, action, record.id)

    def _write(
        self,
        operation: Callable[[IndexBatch], None],
        action: str,
        record_id: str,
    ) -> None:
        active: IndexBatch | None = getattr(self._local, "batch", None)
        try:
            if active is not None:
                operation(active)
                return
            with self._index.batch() as batch:
                operation(batch)
        except Exception as e:
            self.failures += 1
            logger.error(
                "search_index_write_failed",
                action=action,
                id=record_id,
                error=str(e),
            )
            return
        logger.debug("search_index_synced", action=action, id=record_id)

    @contextmanager
    def batch(self, client_state: str | None = None) -> Iterator[None]:
        """Group index writes made on this thread into one commit.

        Nested calls join the outer batch. Staged writes mirror store
        writes that already committed, so they are committed even when the
        block raises. If the batch cannot be opened or committed the
        failure is logged and swallowed.

        Args:
            client_state: Marker stored with the commit.
        """
        if getattr(self._local, "batch", None) is not None:
            yield
            return

        try:
            batch = self._index.begin_batch()
        except Exception as e:
            self.failures += 1
            logger.error("search_index_batch_failed", stage="begin", error=str(e))
            yield
            return

        self._local.batch = batch
        try:
            yield
        finally:
            self._local.batch = None
            self._commit(batch, client_state)

    def _commit(self, batch: IndexBatch, client_state: str | None) -> None:
        try:
            ack = self._index.end_batch(batch, client_state)
        except Exception as e:
            self.failures += 1
            logger.error("search_index_batch_failed", stage="commit", error=str(e))
            return
        logger.info(
            "search_index_batch_synced",
            upserted=ack.upserted,
            removed=ack.removed,
            failed=ack.failed,
        )

    def on_create_many(
        self, records: Iterable[TransactionRecord], client_state: str | None = None
    ) -> None:
        """Index freshly stored records in a single batch commit."""
        with self.batch(client_state=client_state):
            for record in records:
                self.on_create(record)

    def rebuild(
        self,
        records: Iterable[TransactionRecord],
        client_state: str | None = None,
    ) -> int:
        """Drop the index and re-project every record.

        Args:
            records: Every record in the store.
            client_state: Marker stored with the commit.

        Returns:
            Number of entries indexed, or 0 if the rebuild failed.
        """
        entries = [SearchIndexEntry.from_record(r) for r in records]
        try:
            return self._index.rebuild(entries, client_state)
        except Exception as e:
            self.failures += 1
            logger.error("search_index_rebuild_failed", error=str(e))
            return 0
