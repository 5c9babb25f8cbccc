import asyncio
import json
from pathlib import Path

import pytest

try:
    from fastapi.testclient import TestClient  # type: ignore
    from starlette.websockets import WebSocketDisconnect
    from lightup.api.app import app
    from lightup.api.routes.events import agent_log_filter, event_generator
except ImportError:  # pragma: no cover - fastapi not installed in minimal envs
    TestClient = None  # type: ignore
    app = None  # type: ignore

from lightup.services.events import AgentLogCreated, CardMoved, EventBroadcaster

pytestmark = pytest.mark.skipif(TestClient is None, reason="fastapi not installed")


# ==================== Boards ====================

def test_board_crud(api_client) -> None:
    created = api_client.post("/api/boards", json={"name": "Side project"})
    assert created.status_code == 201
    board_id = created.json()["id"]

    renamed = api_client.patch(f"/api/boards/{board_id}", json={"name": "Renamed"})
    assert renamed.json()["name"] == "Renamed"
    reordered = api_client.patch(f"/api/boards/{board_id}/reorder", json={"position": 7})
    assert reordered.json()["position"] == 7

    assert {b["id"] for b in api_client.get("/api/boards").json()} == {"default", board_id}
    assert api_client.delete(f"/api/boards/{board_id}").status_code == 204
    assert api_client.delete(f"/api/boards/{board_id}").status_code == 404


def test_default_board_cannot_be_deleted(api_client) -> None:
    resp = api_client.delete("/api/boards/default")
    assert resp.status_code == 400
    assert resp.json()["error"] == "The default board cannot be deleted"


def test_board_name_must_not_be_empty(api_client) -> None:
    assert api_client.post("/api/boards", json={"name": ""}).status_code == 400


def test_board_settings_partial_update(api_client, tmp_path: Path) -> None:
    first = api_client.put(
        "/api/boards/default/settings",
        json={"codebase_path": str(tmp_path), "tech_stack": "python"},
    )
    assert first.status_code == 200
    second = api_client.put("/api/boards/default/settings", json={"tech_stack": "rust"}).json()

    assert second["codebase_path"] == str(tmp_path)
    assert second["tech_stack"] == "rust"
    assert api_client.get("/api/boards/default/settings").json() == second


# ==================== Settings ====================

def test_settings_get_and_put(api_client) -> None:
    missing = api_client.get("/api/settings/ai_concurrency")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Setting not found: ai_concurrency", "status": 404}

    saved = api_client.put("/api/settings/ai_concurrency", json={"value": "3"})
    assert saved.status_code == 200
    assert api_client.get("/api/settings/ai_concurrency").json()["value"] == "3"


# ==================== Labels ====================

def test_label_attach_and_detach(api_client, tmp_path: Path) -> None:
    card = api_client.post("/api/cards", json={"title": "Labelled", "working_directory": str(tmp_path)}).json()
    labels = api_client.get("/api/labels").json()
    assert len(labels) == 5
    label_id = labels[0]["id"]

    attached = api_client.post(f"/api/cards/{card['id']}/labels/{label_id}")
    assert attached.status_code == 201
    assert [lbl["id"] for lbl in attached.json()] == [label_id]
    # Attaching twice is a no-op.
    assert len(api_client.post(f"/api/cards/{card['id']}/labels/{label_id}").json()) == 1

    assert api_client.delete(f"/api/cards/{card['id']}/labels/{label_id}").status_code == 204
    assert api_client.delete(f"/api/cards/{card['id']}/labels/{label_id}").status_code == 404
    assert api_client.post(f"/api/cards/{card['id']}/labels/nope").status_code == 404


# ==================== Notifications ====================

def test_review_move_creates_notification(api_client, tmp_path: Path) -> None:
    card = api_client.post(
        "/api/cards",
        json={"title": "Ready soon", "stage": "in_progress", "working_directory": str(tmp_path)},
    ).json()
    api_client.post(f"/api/cards/{card['id']}/move", json={"stage": "review"})

    unread = api_client.get("/api/notifications", params={"unread_only": True}).json()
    assert [n["title"] for n in unread] == ["Review requested: Ready soon"]
    assert unread[0]["card_id"] == card["id"]

    assert api_client.post("/api/notifications/read-all").json() == {"marked_read": 1}
    assert api_client.get("/api/notifications", params={"unread_only": True}).json() == []

    notification_id = unread[0]["id"]
    assert api_client.patch(f"/api/notifications/{notification_id}/read").json()["is_read"] is True
    assert api_client.delete(f"/api/notifications/{notification_id}").status_code == 204
    assert api_client.patch(f"/api/notifications/{notification_id}/read").status_code == 404


# ==================== Auth & Health ====================

def test_token_is_required_when_configured(api_client, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIGHTUP_API_TOKEN", "secret-token")

    resp = api_client.get("/api/cards")
    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized", "status": 401}

    assert api_client.get("/api/cards", headers={"Authorization": "Bearer secret-token"}).status_code == 200
    assert api_client.get("/api/cards", headers={"X-Lightup-Token": "secret-token"}).status_code == 200
    assert api_client.get("/api/cards", headers={"Authorization": "Bearer wrong"}).status_code == 401
    # Health stays open for probes.
    assert api_client.get("/health").status_code == 200


def test_health_endpoints(api_client) -> None:
    health = api_client.get("/health").json()
    assert health["status"] == "ok"
    assert health["service"] == "lightup"
    assert api_client.get("/health/live").json() == {"status": "ok"}

    ready = api_client.get("/health/ready").json()
    assert ready["status"] == "ok"
    assert ready["components"] == {"database": "ok", "background_tasks": "disabled"}


def test_unknown_route_uses_error_body(api_client) -> None:
    resp = api_client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.json()["status"] == 404


# ==================== Events ====================

def test_sse_generator_frames_messages() -> None:
    async def scenario():
        bus = EventBroadcaster()
        stream = event_generator(bus, keepalive_seconds=0.05)
        frames = [await stream.__anext__()]
        bus.publish(CardMoved(card_id="c1", from_stage="plan", to_stage="todo"))
        frames.append(await stream.__anext__())
        frames.append(await stream.__anext__())
        await stream.aclose()
        return frames, bus.subscriber_count

    frames, remaining = asyncio.run(scenario())
    assert frames[0] == ": connected\n\n"
    assert frames[1].startswith("data: ")
    assert json.loads(frames[1][len("data: "):].strip())["type"] == "CardMoved"
    assert frames[2] == ": keep-alive\n\n"
    assert remaining == 0


def test_agent_log_filter_only_matches_one_card() -> None:
    accept = agent_log_filter("c1")
    assert accept(AgentLogCreated(card_id="c1").to_json())
    assert not accept(AgentLogCreated(card_id="c2").to_json())
    assert not accept(CardMoved(card_id="c1").to_json())
    assert not accept("not json")


def test_card_log_websocket_streams_matching_entries(api_client) -> None:
    with api_client.websocket_connect("/api/ws/cards/c1/logs") as ws:
        app.state.bus.publish(AgentLogCreated(card_id="c2", log={"content": "other"}))
        app.state.bus.publish(AgentLogCreated(card_id="c1", log={"content": "mine"}))
        message = json.loads(ws.receive_text())

    assert message["card_id"] == "c1"
    assert message["log"] == {"content": "mine"}


def test_websocket_rejects_missing_token(api_client, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LIGHTUP_API_TOKEN", "secret-token")

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with api_client.websocket_connect("/api/ws/events") as ws:
            ws.receive_text()
    assert excinfo.value.code == 1008

    with api_client.websocket_connect("/api/ws/events?token=secret-token") as ws:
        app.state.bus.publish(CardMoved(card_id="c9"))
        assert json.loads(ws.receive_text())["card_id"] == "c9"


def test_request_id_is_echoed(api_client) -> None:
    assert api_client.get("/health", headers={"X-Request-ID": "req-42"}).headers["X-Request-ID"] == "req-42"
    assert api_client.get("/health").headers["X-Request-ID"]
