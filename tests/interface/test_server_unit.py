from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from flashmark.consts import VERSION
from flashmark.server import app, get_authority


@pytest.fixture
def client(authority):
    app.dependency_overrides[get_authority] = lambda: authority
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(authority):
    creds = authority.register_device("test")
    return {"Authorization": f"Bearer {creds.token}"}


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_register_device(client):
    response = client.post("/api/device/register", json={"name": "laptop"})
    assert response.status_code == 200
    data = response.json()
    assert data["device_id"].startswith("device_")
    assert data["token"]


def test_sync_endpoints_require_token(client):
    response = client.post("/api/sync/pull", json={"last_sync_at": None})
    assert response.status_code == 401

    response = client.post(
        "/api/sync/pull", json={}, headers={"Authorization": "Bearer wrong"}
    )
    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or missing device token"


def test_upload_assigns_ids(client, auth_headers):
    content = "Q: a\nA: b\n"
    body = {"files": [{"path": "deck.md", "content": content, "hash": ""}]}

    response = client.post("/api/sync/upload", json=body, headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert len(data["new_ids"]) == 1
    assert data["new_ids"][0]["line"] == 1
    assert data["updated_files"][0]["path"] == "deck.md"
    assert data["updated_files"][0]["content"].startswith("ID: ")
    assert data["orphaned_cards"] == []

    again = client.post("/api/sync/upload", json=body, headers=auth_headers).json()
    assert again["new_ids"] == data["new_ids"]


def test_settings_saved_then_pulled(client, auth_headers):
    body = {
        "global": {"algorithm": "fsrs", "daily_reset_hour": 4},
        "decks": [{"deck_path": "rust", "matching_mode": "exact"}],
    }
    response = client.put("/api/settings", json=body, headers=auth_headers)
    assert response.status_code == 200

    pulled = client.post("/api/sync/pull", json={}, headers=auth_headers).json()
    assert pulled["settings"]["global"]["algorithm"] == "fsrs"
    assert pulled["settings"]["global"]["daily_reset_hour"] == 4
    assert pulled["settings"]["decks"][0]["matching_mode"] == "exact"


def test_pull_without_settings_has_null_global(client, auth_headers):
    pulled = client.post("/api/sync/pull", json={}, headers=auth_headers).json()
    assert pulled["settings"]["global"] is None
    assert pulled["cards"] == []


def test_invalid_settings_rejected(client, auth_headers):
    body = {"global": {"fuzzy_threshold": 2.0}}
    response = client.put("/api/settings", json=body, headers=auth_headers)
    assert response.status_code == 422


def test_authority_failure_is_500():
    authority = MagicMock()
    authority.authenticate.return_value = "device_x"
    authority.pull.side_effect = Exception("Boom")
    app.dependency_overrides[get_authority] = lambda: authority
    try:
        response = TestClient(app).post(
            "/api/sync/pull", json={}, headers={"Authorization": "Bearer t"}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert "Boom" in response.json()["detail"]
