"""Transaction records and their SQLite source-of-truth store."""

from ledger.records.schemas import (
    Statistics,
    TransactionCreate,
    TransactionRecord,
    TransactionUpdate,
)
from ledger.records.store import RecordSort, RecordStore

__all__ = [
    "RecordSort",
    "RecordStore",
    "Statistics",
    "TransactionCreate",
    "TransactionRecord",
    "TransactionUpdate",
]
