"""Pydantic schemas for index entries, query events and search results."""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ledger.records.schemas import Statistics, TransactionRecord

# Entries never expire through index housekeeping
NEVER_EXPIRES = datetime(9999, 12, 31, tzinfo=UTC)


class SearchIndexEntry(BaseModel):
    """Derived, rebuildable index projection of one transaction.

    Attributes:
        id: Id of the source transaction record.
        title: Merchant name.
        content: Space-joined searchable text of the record.
        display_label: Short label shown next to a match.
        last_used: Record timestamp, used as a ranking tie-break.
        expires_at: Expiration horizon for index housekeeping.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    content: str
    display_label: str
    last_used: datetime
    expires_at: datetime = NEVER_EXPIRES

    @classmethod
    def from_record(cls, record: TransactionRecord) -> "SearchIndexEntry":
        """Project a record's current (already trimmed) state into an entry."""
        parts = [
            record.merchant_name,
            record.category,
            record.location,
            record.description,
        ]
        return cls(
            id=record.id,
            title=record.merchant_name,
            content=" ".join(p for p in parts if p),
            display_label=f"{record.merchant_name} {record.amount} {record.currency}",
            last_used=record.timestamp,
        )


class IndexMatch(BaseModel):
    """Query event naming a matched record id.

    Attributes:
        id: Matched record id.
        score: BM25 relevance score (lower is better).
    """

    id: str
    score: float


class IndexSuggestion(BaseModel):
    """Query event suggesting a completion; ignored by search."""

    text: str


QueryEvent = IndexMatch | IndexSuggestion


class QueryContext(BaseModel):
    """Options for a single index query.

    Attributes:
        limit: Maximum number of matches yielded.
        page_size: Rows fetched per lazy step.
        suggestions: Whether to yield title suggestions after matches.
    """

    limit: int = Field(default=200, ge=1)
    page_size: int = Field(default=50, ge=1)
    suggestions: bool = True


class UpsertResult(BaseModel):
    """Per-entry outcome of an index upsert."""

    id: str
    ok: bool
    error: str | None = None


class BatchAck(BaseModel):
    """Acknowledgement returned when an index batch commits.

    Attributes:
        client_state: Opaque marker persisted with the commit.
        upserted: Entries written successfully.
        removed: Ids removed (including ids that were absent).
        failed: Entries whose write was rolled back.
    """

    client_state: str | None
    upserted: int
    removed: int
    failed: int


class SearchSource(str, Enum):
    """Which retrieval tier produced a search outcome."""

    INDEX = "index"
    FALLBACK = "fallback"
    NONE = "none"


class SearchOutcome(BaseModel):
    """Ordered result of one executed search.

    Attributes:
        query: Trimmed query text.
        results: Matching records, newest first.
        source: Retrieval tier that produced the results.
        error: Failure description when the fallback itself failed.
    """

    query: str
    results: list[TransactionRecord]
    source: SearchSource
    error: str | None = None

    @classmethod
    def empty(cls, query: str, error: str | None = None) -> "SearchOutcome":
        """Build an outcome with no results."""
        return cls(query=query, results=[], source=SearchSource.NONE, error=error)


class SearchResponse(BaseModel):
    """HTTP search response envelope.

    Attributes:
        query: The trimmed search query.
        results: Matching transactions, newest first.
        total: Number of results.
        source: Retrieval tier that answered the query.
        error: Failure description, if the search failed.
        statistics: Summary over the returned transactions.
    """

    query: str
    results: list[TransactionRecord]
    total: int
    source: SearchSource
    error: str | None = None
    statistics: Statistics

    @classmethod
    def from_outcome(cls, outcome: SearchOutcome) -> "SearchResponse":
        """Wrap a coordinator outcome for the HTTP layer."""
        return cls(
            query=outcome.query,
            results=outcome.results,
            total=len(outcome.results),
            source=outcome.source,
            error=outcome.error,
            statistics=Statistics.from_records(outcome.results),
        )
