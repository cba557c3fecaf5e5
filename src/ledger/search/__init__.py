"""Transaction search: FTS5 index, content-filter fallback and index sync."""

from ledger.search.coordinator import QueryCoordinator
from ledger.search.filter import filter_records, fold, matches_query
from ledger.search.index import IndexBatch, SearchIndex
from ledger.search.schemas import (
    SearchIndexEntry,
    SearchOutcome,
    SearchResponse,
    SearchSource,
)
from ledger.search.sessions import SearchSessions
from ledger.search.synchronizer import IndexSynchronizer

__all__ = [
    "IndexBatch",
    "IndexSynchronizer",
    "QueryCoordinator",
    "SearchIndex",
    "SearchIndexEntry",
    "SearchOutcome",
    "SearchResponse",
    "SearchSessions",
    "SearchSource",
    "filter_records",
    "fold",
    "matches_query",
]
