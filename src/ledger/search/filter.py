"""Direct content filter used when the index yields nothing or fails."""

import unicodedata
from collections.abc import Iterable

from ledger.records.schemas import TransactionRecord

SEARCHABLE_FIELDS: tuple[str, ...] = (
    "merchant_name",
    "description",
    "category",
    "location",
)


def fold(text: str) -> str:
    """Normalize text for case- and diacritic-insensitive comparison.

    Args:
        text: Any user or stored text.

    Returns:
        Casefolded text with combining marks removed ("Café" -> "cafe").
    """
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return stripped.casefold()


def matches_query(record: TransactionRecord, query: str) -> bool:
    """Check whether any searchable field contains the query.

    Args:
        record: Record to test.
        query: Raw query text; folded before comparison.

    Returns:
        True if at least one field contains the folded query.
    """
    needle = fold(query.strip())
    if not needle:
        return False
    for name in SEARCHABLE_FIELDS:
        value = getattr(record, name)
        if value and needle in fold(value):
            return True
    return False


def filter_records(
    records: Iterable[TransactionRecord], query: str
) -> list[TransactionRecord]:
    """Return matching records, newest first.

    The sort is stable, so records sharing a timestamp keep their input
    order. A blank query matches nothing.

    Args:
        records: Candidate records in insertion order.
        query: Raw query text.

    Returns:
        Matching records ordered by timestamp descending.
    """
    matched = [r for r in records if matches_query(r, query)]
    return sorted(matched, key=lambda r: r.timestamp, reverse=True)
