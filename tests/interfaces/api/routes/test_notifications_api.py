"""Integration tests for the notification endpoints and websocket."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

ROOT = Path(__file__).resolve().parents[4]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from main import create_app  # noqa: E402
from notification_service.config import Settings  # noqa: E402
from notification_service.infrastructure.security import create_access_token  # noqa: E402

SECRET = "test-secret"


def _token(recipient_id: str) -> str:
    return create_access_token(recipient_id, SECRET)


def _headers(recipient_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {_token(recipient_id)}"}


@pytest.fixture()
def client(tmp_path):
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        secret_key=SECRET,
    )
    app = create_app(settings)
    with TestClient(app) as test_client:
        yield test_client


def _create(client: TestClient, recipient_id: str = "alice", **overrides) -> dict:
    payload = {"recipient_id": recipient_id, "message": "Task assigned", "channel_hints": []}
    payload.update(overrides)
    response = client.post("/notifications/", json=payload, headers=_headers("producer"))
    assert response.status_code == 201, response.text
    return response.json()


def test_requires_bearer_token(client: TestClient) -> None:
    response = client.get("/notifications/")
    assert response.status_code == 401

    response = client.get("/notifications/", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_create_get_and_list(client: TestClient) -> None:
    created = _create(client, channel_hints=["push"])

    assert created["status"] == "ACTIVE"
    assert created["channel_hints"] == ["push"]

    response = client.get(f"/notifications/{created['id']}", headers=_headers("alice"))
    assert response.status_code == 200
    assert response.json()["delivery_outcomes"] == {"push": "skipped:no-live-connection"}

    response = client.get("/notifications/", headers=_headers("alice"))
    assert [item["id"] for item in response.json()] == [created["id"]]

    response = client.get("/notifications/", headers=_headers("bob"))
    assert response.json() == []


@pytest.mark.parametrize(
    "payload",
    [
        {"recipient_id": "alice", "message": ""},
        {"recipient_id": "alice", "message": "x" * 1001},
        {"recipient_id": "alice", "message": "hi", "channel_hints": ["sms"]},
        {"recipient_id": "alice", "message": "hi", "status": "DISMISSED"},
    ],
)
def test_create_rejects_invalid_payloads(client: TestClient, payload: dict) -> None:
    response = client.post("/notifications/", json=payload, headers=_headers("producer"))
    assert response.status_code == 422


def test_create_rejects_blank_recipient(client: TestClient) -> None:
    response = client.post(
        "/notifications/",
        json={"recipient_id": "  ", "message": "hi"},
        headers=_headers("producer"),
    )
    assert response.status_code == 400


def test_dismiss_is_idempotent_and_filters_listing(client: TestClient) -> None:
    created = _create(client)
    url = f"/notifications/{created['id']}/dismiss"

    first = client.post(url, headers=_headers("alice"))
    second = client.post(url, headers=_headers("alice"))

    assert first.status_code == second.status_code == 200
    assert first.json()["status"] == "DISMISSED"
    assert second.json() == first.json()

    response = client.get("/notifications/?status=ACTIVE", headers=_headers("alice"))
    assert response.json() == []
    response = client.get("/notifications/?status=DISMISSED", headers=_headers("alice"))
    assert [item["id"] for item in response.json()] == [created["id"]]


def test_unknown_notification_is_404(client: TestClient) -> None:
    headers = _headers("alice")
    assert client.get("/notifications/unknown-id", headers=headers).status_code == 404
    assert client.post("/notifications/unknown-id/dismiss", headers=headers).status_code == 404
    response = client.patch("/notifications/unknown-id", json={"message": "x"}, headers=headers)
    assert response.status_code == 404


def test_patch_updates_active_and_conflicts_after_dismiss(client: TestClient) -> None:
    created = _create(client)
    url = f"/notifications/{created['id']}"
    headers = _headers("alice")

    response = client.patch(url, json={"message": {"title": "Updated"}}, headers=headers)
    assert response.status_code == 200
    assert response.json()["message"] == {"title": "Updated"}

    client.post(f"{url}/dismiss", headers=headers)
    response = client.patch(url, json={"message": "again"}, headers=headers)
    assert response.status_code == 409
    assert client.get(url, headers=headers).json()["status"] == "DISMISSED"


def test_patch_without_fields_is_400(client: TestClient) -> None:
    created = _create(client)

    response = client.patch(f"/notifications/{created['id']}", json={}, headers=_headers("alice"))

    assert response.status_code == 400


def test_patch_cannot_change_status(client: TestClient) -> None:
    created = _create(client)

    response = client.patch(
        f"/notifications/{created['id']}",
        json={"status": "DISMISSED"},
        headers=_headers("alice"),
    )

    assert response.status_code == 422


def test_websocket_rejects_missing_or_bad_token(client: TestClient) -> None:
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/notifications/ws"):
            pass
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/notifications/ws?token=garbage"):
            pass


def test_websocket_receives_init_push_and_dismiss(client: TestClient) -> None:
    existing = _create(client)

    with client.websocket_connect(f"/notifications/ws?token={_token('alice')}") as websocket:
        init = websocket.receive_json()
        assert init["type"] == "init"
        assert [item["id"] for item in init["data"]] == [existing["id"]]

        health = client.get("/health").json()
        assert health["live_connections"] == 1

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}

        pushed = _create(client, message="Live update", channel_hints=["push"])
        message = websocket.receive_json()
        assert message["type"] == "notification"
        assert message["data"]["id"] == pushed["id"]
        assert message["data"]["message"] == "Live update"

        websocket.send_json({"type": "dismiss", "id": pushed["id"]})
        dismissed = websocket.receive_json()
        assert dismissed["type"] == "dismissed"
        assert dismissed["data"]["status"] == "DISMISSED"

        websocket.send_json({"type": "dismiss", "id": "unknown-id"})
        assert websocket.receive_json() == {
            "type": "error",
            "error": "not-found",
            "id": "unknown-id",
        }

        websocket.send_json({"type": "shout"})
        assert websocket.receive_json()["type"] == "error"

    assert client.get("/health").json()["live_connections"] == 0
    outcomes = client.get(f"/notifications/{pushed['id']}", headers=_headers("alice")).json()
    assert outcomes["delivery_outcomes"] == {"push": "delivered"}


def test_health_reports_disabled_email(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "email": "disabled", "live_connections": 0}


def test_half_configured_smtp_disables_email_instead_of_failing(tmp_path) -> None:
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'half.db'}",
        secret_key=SECRET,
        smtp_host="smtp.example.com",
        smtp_username="mailer",
        email_from="noreply@example.com",
    )

    with TestClient(create_app(settings)) as test_client:
        response = test_client.get("/health")

    assert response.status_code == 200
    assert response.json()["email"] == "disabled"


def test_websocket_survives_binary_frames(client: TestClient) -> None:
    with client.websocket_connect(f"/notifications/ws?token={_token('alice')}") as websocket:
        assert websocket.receive_json()["type"] == "init"

        websocket.send_bytes(b"\x00\x01")
        assert websocket.receive_json() == {"type": "error", "error": "invalid-json"}

        websocket.send_json({"type": "ping"})
        assert websocket.receive_json() == {"type": "pong"}
