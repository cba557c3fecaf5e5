"""Search, session and admin endpoint tests."""

import asyncio
import time
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from ledger.app import create_app
from ledger.config import Settings
from ledger.records import RecordStore
from ledger.search.coordinator import QueryCoordinator
from ledger.search.sessions import SearchSessions

SEARCH = "/api/v1/search"


def _seed(client: TestClient) -> None:
    response = client.post(
        "/api/v1/transactions/import",
        json={
            "transactions": [
                {
                    "merchant_name": "Starbucks",
                    "amount": "-5.25",
                    "timestamp": "2025-02-10T08:00:00Z",
                    "category": "Coffee",
                },
                {
                    "merchant_name": "Star Market",
                    "amount": "-62.10",
                    "timestamp": "2025-02-11T17:30:00Z",
                    "location": "Montréal",
                },
                {
                    "merchant_name": "Metro",
                    "amount": "-18.00",
                    "timestamp": "2025-02-12T12:00:00Z",
                },
            ]
        },
    )
    assert response.status_code == 201


def _merchants(response_json: dict) -> list[str]:
    return [t["merchant_name"] for t in response_json["results"]]


def test_search_returns_matches_newest_first(client: TestClient) -> None:
    _seed(client)

    data = client.get(SEARCH, params={"q": "star"}).json()

    assert data["query"] == "star"
    assert data["source"] == "index"
    assert _merchants(data) == ["Star Market", "Starbucks"]
    assert data["total"] == 2
    assert data["statistics"]["total_amount"] == "-67.35"


def test_search_is_diacritic_insensitive(client: TestClient) -> None:
    _seed(client)

    data = client.get(SEARCH, params={"q": "montreal"}).json()

    assert _merchants(data) == ["Star Market"]


def test_blank_search_returns_nothing(client: TestClient) -> None:
    _seed(client)

    data = client.get(SEARCH, params={"q": "   "}).json()

    assert data["results"] == []
    assert data["source"] == "none"


def test_search_falls_back_when_index_disabled(settings: Settings) -> None:
    settings.search_index_enabled = False
    with TestClient(create_app(settings)) as client:
        _seed(client)
        data = client.get(SEARCH, params={"q": "coffee"}).json()

        ready = client.get("/api/v1/health/ready").json()

    assert data["source"] == "fallback"
    assert _merchants(data) == ["Starbucks"]
    checks = {c["name"]: c["status"] for c in ready["checks"]}
    assert checks["search_index"] == "degraded"


def test_search_sees_updates_and_deletes(client: TestClient) -> None:
    _seed(client)
    starbucks = client.get(SEARCH, params={"q": "starbucks"}).json()["results"][0]
    url = f"/api/v1/transactions/{starbucks['id']}"

    client.patch(url, json={"merchant_name": "Second Cup"})
    assert _merchants(client.get(SEARCH, params={"q": "second"}).json()) == ["Second Cup"]

    client.delete(url)
    assert client.get(SEARCH, params={"q": "second"}).json()["results"] == []


def test_session_search_returns_results(client: TestClient) -> None:
    _seed(client)

    response = client.get(f"{SEARCH}/sessions/box-1", params={"q": "metro"})

    assert response.status_code == 200
    assert _merchants(response.json()) == ["Metro"]


def test_session_id_is_validated(client: TestClient) -> None:
    response = client.get(f"{SEARCH}/sessions/bad id!", params={"q": "metro"})
    assert response.status_code == 422


@pytest.fixture
def slow_client(settings: Settings) -> Iterator[TestClient]:
    """Client whose search sessions debounce long enough to be superseded."""
    settings.search_debounce_ms = 300
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def test_superseded_session_request_gets_no_content(slow_client: TestClient) -> None:
    _seed(slow_client)
    url = f"{SEARCH}/sessions/box-1"

    with ThreadPoolExecutor(max_workers=2) as pool:
        first = pool.submit(slow_client.get, url, params={"q": "sta"})
        time.sleep(0.1)
        second = pool.submit(slow_client.get, url, params={"q": "star"})
        first_response, second_response = first.result(), second.result()

    assert first_response.status_code == 204
    assert second_response.status_code == 200
    assert second_response.json()["query"] == "star"


def test_reindex_reports_counts(client: TestClient) -> None:
    _seed(client)

    data = client.post("/api/v1/admin/reindex").json()

    assert data == {"indexed": 3, "records": 3, "sync_failures": 0}
    assert client.get(SEARCH, params={"q": "metro"}).json()["source"] == "index"


def test_sessions_are_reused_and_evicted(store: RecordStore) -> None:
    async def scenario() -> None:
        sessions = SearchSessions(
            lambda: QueryCoordinator(store, None, debounce_ms=1000), max_sessions=2
        )
        first = sessions.get("a")
        assert sessions.get("a") is first

        pending = first.submit_query("metro")
        sessions.get("b")
        sessions.get("c")

        assert len(sessions) == 2
        assert pending.cancelled()
        assert sessions.get("a") is not first

        later = sessions.get("a").submit_query("iga")
        sessions.close()
        assert later.cancelled()
        assert len(sessions) == 0

    asyncio.run(scenario())


def test_ending_session_cancels_its_pending_request(slow_client: TestClient) -> None:
    _seed(slow_client)
    url = f"{SEARCH}/sessions/box-1"

    with ThreadPoolExecutor(max_workers=1) as pool:
        pending = pool.submit(slow_client.get, url, params={"q": "star"})
        time.sleep(0.1)
        ended = slow_client.delete(url)
        pending_response = pending.result()

    assert ended.status_code == 204
    assert pending_response.status_code == 204
    assert len(slow_client.app.state.search_sessions) == 0
    assert slow_client.delete(f"{SEARCH}/sessions/unknown").status_code == 204


def test_discarded_session_starts_fresh(store: RecordStore) -> None:
    async def scenario() -> None:
        sessions = SearchSessions(lambda: QueryCoordinator(store, None, debounce_ms=1000))
        first = sessions.get("a")
        pending = first.submit_query("metro")

        sessions.discard("a")
        sessions.discard("a")

        assert pending.cancelled()
        assert len(sessions) == 0
        assert sessions.get("a") is not first

    asyncio.run(scenario())
