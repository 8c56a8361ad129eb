import pytest
from fastapi.testclient import TestClient

from app import app
from common.config.settings import PulseSettings
from core.domain.entities.TokenEntity import TokenEntity
from core.services.pulse_service import PulseService
from infrastructure.data_sources.pumpportal.client import ConnectionState

NOW = 1_700_000_000_000


@pytest.fixture
def service():
    # Not started: no socket, no scheduler, just the store and query
    service = PulseService(PulseSettings(max_tokens=150))
    service.store._clock = lambda: NOW
    app.state.pulse_service = service
    yield service
    del app.state.pulse_service


@pytest.fixture
def client(service):
    # No context manager, so the lifespan (and the real feed) never starts
    return TestClient(app)


def add_tokens(service, n, fetched_at=NOW):
    for i in range(n):
        service.store.upsert(TokenEntity(
            address=f"T{i}",
            symbol=f"S{i}",
            market_cap=float(i),
            created_at="2024-01-01T00:00:00.000Z",
            fetched_at=fetched_at,
        ))


def test_health_reports_stream_state_and_count(client, service):
    add_tokens(service, 3)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "wsConnected": False, "tokenCount": 3}


def test_tokens_use_wire_names_newest_first(client, service):
    add_tokens(service, 3)

    body = client.get("/api/pulse/tokens", params={"limit": 2}).json()

    assert body["count"] == 3
    assert body["wsConnected"] is False
    assert [t["address"] for t in body["tokens"]] == ["T2", "T1"]
    first = body["tokens"][0]
    assert first["marketCap"] == 2.0
    assert first["fetchedAt"] == NOW
    assert "market_cap" not in first


def test_default_limit_is_fifty(client, service):
    add_tokens(service, 60)

    body = client.get("/api/pulse/tokens").json()

    assert len(body["tokens"]) == 50
    assert body["count"] == 60


@pytest.mark.parametrize("limit,expected", [(0, 50), (-3, 50), (500, 100), (7, 7)])
def test_limit_is_clamped(client, service, limit, expected):
    add_tokens(service, 120)

    body = client.get("/api/pulse/tokens", params={"limit": limit}).json()

    assert len(body["tokens"]) == expected
    assert body["count"] == 120


def test_expired_tokens_are_swept_before_reading(client, service):
    add_tokens(service, 2, fetched_at=NOW - 10 * 60 * 1000)
    service.store.upsert(TokenEntity(address="FRESH", created_at="2024-01-01T00:00:00.000Z", fetched_at=NOW))

    body = client.get("/api/pulse/tokens").json()

    assert [t["address"] for t in body["tokens"]] == ["FRESH"]
    assert body["count"] == 1


def test_connected_flag_follows_stream(client, service):
    service.stream.state = ConnectionState.CONNECTED
    service.stream._websocket = object()

    assert client.get("/health").json()["wsConnected"] is True
    assert client.get("/api/pulse/tokens").json()["wsConnected"] is True


def test_empty_store_still_answers(client):
    assert client.get("/api/pulse/tokens").json() == {"tokens": [], "count": 0, "wsConnected": False}
