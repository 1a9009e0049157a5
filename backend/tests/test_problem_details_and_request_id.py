from __future__ import annotations

from fastapi.testclient import TestClient


def test_request_id_is_generated_and_returned(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "proposaliq-backend"}
    assert r.headers["X-Request-Id"]


def test_request_id_is_propagated_from_client(client):
    r = client.get("/", headers={"X-Request-Id": "abc-123"})
    assert r.status_code == 200
    assert r.headers.get("X-Request-Id") == "abc-123"


def test_unsafe_request_id_is_replaced(client):
    r = client.get("/", headers={"X-Request-Id": "bad id with spaces"})
    assert r.status_code == 200
    assert r.headers["X-Request-Id"] != "bad id with spaces"


def test_validation_errors_are_problem_json(client):
    # Body must be a JSON object.
    r = client.post("/api/rag/discover-similar-proposals", json=[1, 2])
    assert r.status_code == 422
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["title"] == "Validation Failed"
    assert body["status"] == 422
    assert body["success"] is False
    assert isinstance(body["errors"], list) and body["errors"]
    assert body.get("requestId")


def test_404_is_problem_json(client):
    r = client.get("/this-route-does-not-exist")
    assert r.status_code == 404
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 404
    assert body.get("requestId")


def test_auth_denied_is_problem_json(app):
    client = TestClient(app)

    r = client.get("/api/proposals", params={"organization_id": "x"})
    assert r.status_code == 401
    assert r.headers.get("content-type", "").startswith("application/problem+json")
    body = r.json()
    assert body["status"] == 401
    assert body["error"]
    assert body.get("requestId")


def test_invalid_bearer_token_is_rejected(app):
    client = TestClient(app)

    r = client.get("/api/proposals", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401
    assert r.json()["detail"] == "invalid token"


def test_http_errors_carry_success_false_and_error(client):
    r = client.get("/api/proposals/missing")
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "Proposal not found"
    assert body["instance"] == "/api/proposals/missing"


def test_storage_errors_map_to_status_codes(app, client, store, monkeypatch):
    from proposaliq.db.dynamodb.errors import DdbThrottled

    def _boom(*_a, **_kw):
        raise DdbThrottled(message="slow down", operation="GetItem", table_name="t", retryable=True)

    monkeypatch.setattr(store, "get", _boom)
    r = client.get("/api/proposals/p1")
    assert r.status_code == 503
    assert r.headers.get("content-type", "").startswith("application/problem+json")
