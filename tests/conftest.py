"""Pytest configuration and fixtures."""

import sys
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from fastapi.testclient import TestClient

from ledger.app import create_app
from ledger.config import Settings
from ledger.records import RecordStore, TransactionRecord
from ledger.search import SearchIndex

BASE_TIME = datetime(2025, 2, 11, 12, 0, tzinfo=UTC)

RecordFactory = Callable[..., TransactionRecord]


@pytest.fixture
def settings() -> Settings:
    """Create test settings."""
    return Settings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        database_path=":memory:",
        search_debounce_ms=20,
    )


@pytest.fixture
def client(settings: Settings) -> Iterator[TestClient]:
    """Create test client with the lifespan running."""
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def store() -> Iterator[RecordStore]:
    """Empty in-memory record store."""
    record_store = RecordStore()
    record_store.initialize()
    yield record_store
    record_store.close()


@pytest.fixture
def index() -> Iterator[SearchIndex]:
    """Empty in-memory search index."""
    search_index = SearchIndex()
    search_index.initialize()
    yield search_index
    search_index.close()


@pytest.fixture
def make_record() -> RecordFactory:
    """Build records whose timestamps are offsets in minutes from BASE_TIME."""

    def factory(
        merchant_name: str,
        minutes: int = 0,
        amount: str = "-10.00",
        **fields: str,
    ) -> TransactionRecord:
        return TransactionRecord(
            merchant_name=merchant_name,
            amount=Decimal(amount),
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            currency=fields.pop("currency", "CAD"),
            **fields,
        )

    return factory
