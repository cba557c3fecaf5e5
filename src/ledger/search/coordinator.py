"""Debounced, cancelable two-tier transaction search."""

import asyncio
from collections.abc import Callable
from functools import partial

import structlog

from ledger.errors import SearchFailed
from ledger.records.store import RecordSort, RecordStore
from ledger.search.filter import matches_query
from ledger.search.index import SearchIndex
from ledger.search.schemas import (
    IndexMatch,
    QueryContext,
    SearchOutcome,
    SearchSource,
)

logger = structlog.get_logger()

ResultCallback = Callable[[SearchOutcome], None]
ErrorCallback = Callable[[SearchFailed], None]


class QueryCoordinator:
    """Turns a stream of query submissions into at most one delivered result.

    Each submission invalidates the previous one: its debounce sleep and
    any in-flight index lookup are cancelled, and a result that still
    completes is discarded. After the debounce delay the query runs against
    the search index; when the index has no match or fails, records are
    filtered directly from the store.

    Owned by a single event loop. Index steps and store reads run in worker
    threads via asyncio.to_thread.

    Attributes:
        debounce_ms: Delay between the last submission and execution.
    """

    def __init__(
        self,
        store: RecordStore,
        index: SearchIndex | None = None,
        debounce_ms: int = 300,
        context: QueryContext | None = None,
        on_results: ResultCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        """Initialize coordinator.

        Args:
            store: Source-of-truth record store.
            index: Search index; None searches the store only.
            debounce_ms: Debounce delay in milliseconds.
            context: Options passed to each index query.
            on_results: Called with every delivered outcome.
            on_error: Called when a search fails outright.
        """
        self._store = store
        self._index = index
        self.debounce_ms = debounce_ms
        self._context = context or QueryContext()
        self._on_results = on_results
        self._on_error = on_error
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._future: asyncio.Future[SearchOutcome] | None = None

    @property
    def has_pending(self) -> bool:
        """Whether a submitted query has not been delivered yet."""
        return self._future is not None and not self._future.done()

    def submit_query(self, text: str) -> asyncio.Future[SearchOutcome]:
        """Schedule a search, superseding any pending one.

        Must be called from the owning event loop.

        Args:
            text: Raw query text as typed.

        Returns:
            Future resolved with the outcome, or cancelled if a newer
            submission or cancel_pending() supersedes it.
        """
        self.cancel_pending()
        loop = asyncio.get_running_loop()
        future: asyncio.Future[SearchOutcome] = loop.create_future()
        generation = self._generation
        query = text.strip()

        if not query:
            self._deliver(generation, future, SearchOutcome.empty(query), None)
            return future

        self._future = future
        self._task = loop.create_task(self._run(generation, query, future))
        return future

    def cancel_pending(self) -> None:
        """Cancel the scheduled or in-flight query, if any."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._task = None
        self._future = None

    async def search(self, text: str) -> SearchOutcome | None:
        """Submit a query and wait for it.

        Returns:
            The outcome, or None if the query was superseded.
        """
        future = self.submit_query(text)
        await asyncio.wait({future})
        if future.cancelled():
            return None
        return future.result()

    async def execute(self, text: str) -> SearchOutcome:
        """Run the two-tier search immediately, without debouncing.

        Args:
            text: Raw query text.

        Returns:
            Ordered outcome; failures are reported in its error field.
        """
        outcome, _ = await self._execute(text.strip(), None)
        return outcome

    async def _run(
        self,
        generation: int,
        query: str,
        future: asyncio.Future[SearchOutcome],
    ) -> None:
        try:
            await asyncio.sleep(self.debounce_ms / 1000.0)
            outcome, error = await self._execute(query, generation)
        except asyncio.CancelledError:
            logger.debug("search_cancelled", query=query)
            raise
        self._deliver(generation, future, outcome, error)

    def _deliver(
        self,
        generation: int,
        future: asyncio.Future[SearchOutcome],
        outcome: SearchOutcome,
        error: SearchFailed | None,
    ) -> None:
        if generation != self._generation or future.done():
            logger.debug("search_result_discarded", query=outcome.query)
            return

        future.set_result(outcome)
        if error is not None and self._on_error is not None:
            self._on_error(error)
        if self._on_results is not None:
            self._on_results(outcome)

    def _is_stale(self, generation: int | None) -> bool:
        return generation is not None and generation != self._generation

    async def _execute(
        self, query: str, generation: int | None
    ) -> tuple[SearchOutcome, SearchFailed | None]:
        if not query:
            return SearchOutcome.empty(query), None

        ids = await self._lookup(query, generation)
        if ids:
            try:
                records = await asyncio.to_thread(
                    self._store.fetch_by_ids, ids, RecordSort.NEWEST_FIRST
                )
            except Exception as e:
                logger.warning("search_resolve_failed", query=query, error=str(e))
                records = []

            if records:
                logger.info(
                    "search_completed",
                    query=query,
                    source=SearchSource.INDEX.value,
                    result_count=len(records),
                )
                return (
                    SearchOutcome(
                        query=query, results=records, source=SearchSource.INDEX
                    ),
                    None,
                )
            logger.info("search_index_stale", query=query, match_count=len(ids))

        if self._is_stale(generation):
            raise asyncio.CancelledError()

        try:
            records = await asyncio.to_thread(
                self._store.fetch_by_predicate,
                partial(matches_query, query=query),
                RecordSort.NEWEST_FIRST,
            )
        except Exception as e:
            error = SearchFailed(str(e))
            logger.error("search_failed", query=query, error=str(e))
            return SearchOutcome.empty(query, error=error.description), error

        logger.info(
            "search_completed",
            query=query,
            source=SearchSource.FALLBACK.value,
            result_count=len(records),
        )
        return (
            SearchOutcome(query=query, results=records, source=SearchSource.FALLBACK),
            None,
        )

    async def _lookup(self, query: str, generation: int | None) -> list[str]:
        """Consume the lazy index query, collecting matched ids in rank order."""
        if self._index is None:
            return []

        matched: dict[str, None] = {}
        try:
            events = self._index.query(query, self._context)
            while True:
                event = await asyncio.to_thread(next, events, None)
                if self._is_stale(generation):
                    raise asyncio.CancelledError()
                if event is None:
                    break
                if isinstance(event, IndexMatch):
                    matched.setdefault(event.id)
        except Exception as e:
            logger.warning("search_index_lookup_failed", query=query, error=str(e))
            return []

        return list(matched)
