"""Query coordinator tests: debouncing, cancellation and two-tier retrieval."""

import asyncio
import time
from unittest.mock import patch

from conftest import RecordFactory

from ledger.errors import IndexUnavailable, SearchFailed
from ledger.records import RecordStore, TransactionRecord
from ledger.search.coordinator import QueryCoordinator
from ledger.search.index import SearchIndex
from ledger.search.schemas import SearchOutcome, SearchSource
from ledger.search.synchronizer import IndexSynchronizer


def _seed(
    store: RecordStore,
    index: SearchIndex | None,
    records: list[TransactionRecord],
) -> None:
    store.create_many(records)
    if index is not None:
        IndexSynchronizer(index).rebuild(records)


def _names(outcome: SearchOutcome) -> list[str]:
    return [r.merchant_name for r in outcome.results]


def test_rapid_submissions_deliver_only_the_last(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks"), make_record("Metro")])
    delivered: list[SearchOutcome] = []

    async def scenario() -> list[asyncio.Future[SearchOutcome]]:
        coordinator = QueryCoordinator(
            store, index, debounce_ms=30, on_results=delivered.append
        )
        futures = [coordinator.submit_query(t) for t in ("s", "st", "sta", "star")]
        await asyncio.wait(futures)
        return futures

    with patch.object(index, "query", wraps=index.query) as query:
        futures = asyncio.run(scenario())

    assert query.call_count == 1
    assert [o.query for o in delivered] == ["star"]
    assert _names(delivered[0]) == ["Starbucks"]
    assert all(f.cancelled() for f in futures[:-1])
    assert futures[-1].result() is delivered[0]


def test_blank_query_delivers_empty_immediately(
    store: RecordStore, index: SearchIndex
) -> None:
    delivered: list[SearchOutcome] = []

    async def scenario() -> asyncio.Future[SearchOutcome]:
        coordinator = QueryCoordinator(
            store, index, debounce_ms=1000, on_results=delivered.append
        )
        return coordinator.submit_query("   ")

    with (
        patch.object(index, "query", wraps=index.query) as query,
        patch.object(
            store, "fetch_by_predicate", wraps=store.fetch_by_predicate
        ) as fallback,
    ):
        future = asyncio.run(scenario())

    assert future.done()
    assert future.result().results == []
    assert future.result().source is SearchSource.NONE
    assert len(delivered) == 1
    assert query.call_count == 0
    assert fallback.call_count == 0


def test_index_hit_skips_fallback(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    older = make_record("Starbucks", minutes=0)
    newer = make_record("Star Market", minutes=30)
    _seed(store, index, [older, newer, make_record("Metro", minutes=60)])

    coordinator = QueryCoordinator(store, index, debounce_ms=0)
    with patch.object(
        store, "fetch_by_predicate", wraps=store.fetch_by_predicate
    ) as fallback:
        outcome = asyncio.run(coordinator.search("star"))

    assert outcome is not None
    assert outcome.source is SearchSource.INDEX
    assert _names(outcome) == ["Star Market", "Starbucks"]
    assert fallback.call_count == 0


def test_zero_index_matches_fall_back_to_store(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    # Records reach the store but never the index
    _seed(store, None, [make_record("Café Olimpico", category="Coffee")])

    coordinator = QueryCoordinator(store, index, debounce_ms=0)
    outcome = asyncio.run(coordinator.search("cafe"))

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert _names(outcome) == ["Café Olimpico"]


def test_index_unavailable_falls_back_newest_first(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(
        store,
        index,
        [
            make_record("Starbucks", minutes=0),
            make_record("Star Market", minutes=30),
        ],
    )

    coordinator = QueryCoordinator(store, index, debounce_ms=0)
    with patch.object(index, "query", side_effect=IndexUnavailable("offline")):
        outcome = asyncio.run(coordinator.search("star"))

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert _names(outcome) == ["Star Market", "Starbucks"]
    assert outcome.error is None


def test_error_midway_through_lookup_falls_back(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])

    def broken_query(*args: object, **kwargs: object):
        yield from ()
        raise IndexUnavailable("connection reset")

    coordinator = QueryCoordinator(store, index, debounce_ms=0)
    with patch.object(index, "query", side_effect=broken_query):
        outcome = asyncio.run(coordinator.search("star"))

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert _names(outcome) == ["Starbucks"]


def test_stale_index_entries_are_never_returned(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    kept = make_record("Starbucks Reserve", minutes=0)
    deleted = make_record("Starbucks", minutes=30)
    _seed(store, index, [kept, deleted])
    # Store delete without index removal
    store.delete(deleted.id)

    outcome = asyncio.run(QueryCoordinator(store, index, debounce_ms=0).search("starbucks"))

    assert outcome is not None
    assert [r.id for r in outcome.results] == [kept.id]


def test_only_stale_matches_trigger_fallback(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    ghost = make_record("Starbucks")
    _seed(store, index, [ghost])
    store.delete(ghost.id)

    outcome = asyncio.run(QueryCoordinator(store, index, debounce_ms=0).search("starbucks"))

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert outcome.results == []


def test_both_tiers_failing_reports_search_failed(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])
    index.close()
    store.close()
    delivered: list[SearchOutcome] = []
    errors: list[SearchFailed] = []

    coordinator = QueryCoordinator(
        store,
        index,
        debounce_ms=0,
        on_results=delivered.append,
        on_error=errors.append,
    )
    outcome = asyncio.run(coordinator.search("star"))

    assert outcome is not None
    assert outcome.results == []
    assert outcome.error is not None
    assert outcome.error.startswith("Search failed")
    assert delivered == [outcome]
    assert len(errors) == 1
    assert isinstance(errors[0], SearchFailed)


def test_cancel_pending_suppresses_delivery(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])
    delivered: list[SearchOutcome] = []

    async def scenario() -> asyncio.Future[SearchOutcome]:
        coordinator = QueryCoordinator(
            store, index, debounce_ms=20, on_results=delivered.append
        )
        future = coordinator.submit_query("star")
        coordinator.cancel_pending()
        assert not coordinator.has_pending
        await asyncio.sleep(0.1)
        return future

    future = asyncio.run(scenario())

    assert future.cancelled()
    assert delivered == []


def test_in_flight_result_is_discarded_when_superseded(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, None, [make_record("Starbucks"), make_record("Metro")])
    delivered: list[SearchOutcome] = []
    real_fetch = store.fetch_by_predicate

    def slow_fetch(*args: object, **kwargs: object) -> list[TransactionRecord]:
        time.sleep(0.1)
        return real_fetch(*args, **kwargs)

    async def scenario() -> None:
        coordinator = QueryCoordinator(
            store, index, debounce_ms=0, on_results=delivered.append
        )
        first = coordinator.submit_query("star")
        # Let the first query reach the slow store read
        await asyncio.sleep(0.03)
        second = coordinator.submit_query("metro")
        await asyncio.wait({first, second})
        # Give the abandoned worker thread time to finish
        await asyncio.sleep(0.15)

    with patch.object(store, "fetch_by_predicate", side_effect=slow_fetch):
        asyncio.run(scenario())

    assert [o.query for o in delivered] == ["metro"]
    assert _names(delivered[0]) == ["Metro"]


def test_superseded_search_returns_none(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])

    async def scenario() -> tuple[SearchOutcome | None, SearchOutcome | None]:
        coordinator = QueryCoordinator(store, index, debounce_ms=20)
        first = asyncio.create_task(coordinator.search("sta"))
        await asyncio.sleep(0)
        second = await coordinator.search("star")
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second is not None
    assert _names(second) == ["Starbucks"]


def test_without_index_the_content_filter_is_the_only_tier(
    store: RecordStore, make_record: RecordFactory
) -> None:
    _seed(store, None, [make_record("Tim Hortons", location="Montréal")])

    outcome = asyncio.run(QueryCoordinator(store, None, debounce_ms=0).search("montreal"))

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert _names(outcome) == ["Tim Hortons"]


def test_execute_runs_without_debounce(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])
    coordinator = QueryCoordinator(store, index, debounce_ms=60_000)

    outcome = asyncio.run(coordinator.execute("  star  "))

    assert outcome.query == "star"
    assert _names(outcome) == ["Starbucks"]


def test_unexpected_resolve_error_falls_back_instead_of_hanging(
    store: RecordStore, index: SearchIndex, make_record: RecordFactory
) -> None:
    _seed(store, index, [make_record("Starbucks")])

    async def scenario() -> SearchOutcome | None:
        coordinator = QueryCoordinator(store, index, debounce_ms=0)
        return await asyncio.wait_for(coordinator.search("star"), timeout=5)

    with patch.object(store, "fetch_by_ids", side_effect=ValueError("corrupt row")):
        outcome = asyncio.run(scenario())

    assert outcome is not None
    assert outcome.source is SearchSource.FALLBACK
    assert _names(outcome) == ["Starbucks"]
