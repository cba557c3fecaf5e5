"""Health endpoint tests."""

from fastapi.testclient import TestClient


def test_liveness_returns_200(client: TestClient) -> None:
    """Liveness endpoint returns 200 OK."""
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200


def test_liveness_returns_status(client: TestClient) -> None:
    """Liveness endpoint returns alive status."""
    response = client.get("/api/v1/health/live")
    data = response.json()
    assert data["status"] == "alive"


def test_readiness_reports_store_and_index(client: TestClient) -> None:
    """Readiness checks both the record store and the search index."""
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    names = {check["name"]: check["status"] for check in data["checks"]}
    assert names == {"record_store": "ok", "search_index": "ok"}


def test_readiness_fails_when_store_is_closed(client: TestClient) -> None:
    """A closed record store makes the service unready."""
    client.app.state.service.store.close()

    response = client.get("/api/v1/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


def test_closed_index_only_degrades_readiness(client: TestClient) -> None:
    """Search falls back to the store, so the index cannot fail readiness."""
    client.app.state.service.index.close()

    response = client.get("/api/v1/health/ready")

    assert response.status_code == 200
    checks = {c["name"]: c["status"] for c in response.json()["checks"]}
    assert checks == {"record_store": "ok", "search_index": "degraded"}
