import types

from fastapi.testclient import TestClient

from dex_monitor.health import create_app

SNAPSHOT = {
    "state": "CONNECTED",
    "connected": True,
    "tracked_wallets": 3,
    "subscription_ids": [101, 102],
    "pending_subscriptions": 0,
    "reconnect_attempts": 0,
    "processed_transactions": 12,
    "inflight_writes": 0,
    "dropped_writes": 0,
}


def _client():
    reporter = types.SimpleNamespace(snapshot=lambda: dict(SNAPSHOT))
    return TestClient(create_app(reporter))


def test_health_returns_snapshot():
    r = _client().get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["monitor"] == SNAPSHOT
    assert "timestamp" in body


def test_other_paths_are_404():
    client = _client()
    for path in ("/", "/status", "/docs", "/openapi.json"):
        assert client.get(path).status_code == 404


def test_no_cross_origin_headers():
    r = _client().get("/health", headers={"Origin": "https://elsewhere.example"})
    assert r.status_code == 200
    assert "access-control-allow-origin" not in r.headers
