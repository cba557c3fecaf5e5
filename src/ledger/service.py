"""Caller-facing API: record writes with index sync and change events."""

import asyncio
import uuid

import structlog

from ledger.errors import InvalidData, LedgerError
from ledger.events.hub import BroadcastHub
from ledger.events.types import EventType, Topic
from ledger.records.schemas import (
    TransactionCreate,
    TransactionRecord,
    TransactionUpdate,
)
from ledger.records.store import RecordSort, RecordStore
from ledger.search.coordinator import ErrorCallback, QueryCoordinator, ResultCallback
from ledger.search.index import SearchIndex
from ledger.search.schemas import QueryContext, SearchOutcome
from ledger.search.synchronizer import IndexSynchronizer

logger = structlog.get_logger()


class LedgerService:
    """Coordinates the record store, the search index and change events.

    Every mutation commits to the store first, then updates the index
    through the synchronizer, then announces the change. Store failures
    propagate as typed errors; index failures never do.
    """

    def __init__(
        self,
        store: RecordStore,
        index: SearchIndex | None,
        hub: BroadcastHub | None = None,
        default_currency: str = "CAD",
        debounce_ms: int = 300,
        result_limit: int = 200,
    ) -> None:
        """Initialize service.

        Args:
            store: Source-of-truth record store.
            index: Search index, or None to search the store only.
            hub: Broadcast hub for change notifications.
            default_currency: Currency applied when a payload omits one.
            debounce_ms: Debounce delay for coordinators created here.
            result_limit: Maximum index matches consumed per query.
        """
        self.store = store
        self.index = index
        self.synchronizer = IndexSynchronizer(index) if index is not None else None
        self._hub = hub
        self._default_currency = default_currency
        self._debounce_ms = debounce_ms
        self._context = QueryContext(limit=result_limit)
        self._searcher = self.create_coordinator(debounce_ms=0)

    async def _announce(
        self, event_type: EventType, ids: list[str], topic: Topic = "transactions"
    ) -> None:
        if self._hub is not None:
            await self._hub.announce(event_type, ids, topic=topic)

    async def add_transaction(self, payload: TransactionCreate) -> TransactionRecord:
        """Store a new transaction and index it.

        Raises:
            SaveFailed: If the store write fails.
        """
        record = payload.to_record(self._default_currency)
        await asyncio.to_thread(self.store.create, record)
        if self.synchronizer is not None:
            await asyncio.to_thread(self.synchronizer.on_create, record)
        await self._announce(EventType.TRANSACTION_CREATED, [record.id])
        return record

    async def import_transactions(
        self, payloads: list[TransactionCreate]
    ) -> list[TransactionRecord]:
        """Store many transactions in one write and index them in one batch.

        Raises:
            SaveFailed: If the store write fails; nothing is stored then.
        """
        records = [p.to_record(self._default_currency) for p in payloads]
        if not records:
            return []
        await asyncio.to_thread(self.store.create_many, records)
        if self.synchronizer is not None:
            # Batch state is thread-local, so the whole batch runs on one worker
            await asyncio.to_thread(
                self.synchronizer.on_create_many, records, f"import:{uuid.uuid4().hex}"
            )
        await self._announce(EventType.TRANSACTIONS_IMPORTED, [r.id for r in records])
        logger.info("transactions_imported", count=len(records))
        return records

    async def update_transaction(
        self, record_id: str, payload: TransactionUpdate
    ) -> TransactionRecord:
        """Apply a partial update and re-index the record.

        Raises:
            NotFound: If the id does not exist.
            InvalidData: If the update would clear a required field.
            UpdateFailed: If the store write fails.
        """
        try:
            changes = payload.changes()
        except ValueError as e:
            raise InvalidData(str(e)) from e
        record = await asyncio.to_thread(self.store.update, record_id, changes)
        if self.synchronizer is not None:
            await asyncio.to_thread(self.synchronizer.on_update, record)
        await self._announce(EventType.TRANSACTION_UPDATED, [record_id])
        return record

    async def delete_transaction(self, record_id: str) -> None:
        """Delete a transaction and drop its index entry.

        Raises:
            NotFound: If the id does not exist.
            DeleteFailed: If the store write fails.
        """
        await asyncio.to_thread(self.store.delete, record_id)
        if self.synchronizer is not None:
            await asyncio.to_thread(self.synchronizer.on_delete, record_id)
        await self._announce(EventType.TRANSACTION_DELETED, [record_id])

    async def get_transaction(self, record_id: str) -> TransactionRecord:
        """Fetch one transaction.

        Raises:
            NotFound: If the id does not exist.
        """
        return await asyncio.to_thread(self.store.get, record_id)

    async def list_transactions(
        self, sort: RecordSort = RecordSort.NEWEST_FIRST
    ) -> list[TransactionRecord]:
        """Fetch every transaction."""
        return await asyncio.to_thread(self.store.fetch_all, sort)

    async def search(self, text: str) -> SearchOutcome:
        """Run a one-shot two-tier search without debouncing."""
        return await self._searcher.execute(text)

    def create_coordinator(
        self,
        debounce_ms: int | None = None,
        on_results: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> QueryCoordinator:
        """Build a debounced coordinator sharing this service's store and index."""
        return QueryCoordinator(
            self.store,
            self.index,
            debounce_ms=self._debounce_ms if debounce_ms is None else debounce_ms,
            context=self._context,
            on_results=on_results,
            on_error=on_error,
        )

    async def reindex(self) -> int:
        """Rebuild the search index from the store.

        Returns:
            Number of indexed entries (0 when no index is configured).
        """
        if self.synchronizer is None:
            return 0
        records = await asyncio.to_thread(self.store.fetch_all, RecordSort.OLDEST_FIRST)
        count = await asyncio.to_thread(
            self.synchronizer.rebuild, records, f"rebuild:{uuid.uuid4().hex}"
        )
        await self._announce(EventType.INDEX_REBUILT, [], topic="system")
        return count

    async def purge_index(self) -> int:
        """Drop expired index entries; returns how many were removed."""
        if self.index is None:
            return 0
        try:
            return await asyncio.to_thread(self.index.purge_expired)
        except LedgerError as e:
            logger.warning("search_index_purge_failed", error=str(e))
            return 0

    async def purge_periodically(self, interval: float) -> None:
        """Run index housekeeping every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.purge_index()
