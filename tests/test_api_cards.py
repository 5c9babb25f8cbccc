import json
from pathlib import Path

import pytest

try:
    from fastapi.testclient import TestClient  # type: ignore
    from lightup.api.app import app
except ImportError:  # pragma: no cover - fastapi not installed in minimal envs
    TestClient = None  # type: ignore
    app = None  # type: ignore

from lightup.db.database import Database

pytestmark = pytest.mark.skipif(TestClient is None, reason="fastapi not installed")


def _create_card(client, tmp_path: Path, **fields) -> dict:
    payload = {"title": "E2E", "working_directory": str(tmp_path)}
    payload.update(fields)
    resp = client.post("/api/cards", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_full_lifecycle(api_client, opencode, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)
    assert card["stage"] == "backlog"
    card_id = card["id"]

    for title in ("one", "two", "three"):
        assert api_client.post(f"/api/cards/{card_id}/subtasks", json={"title": title}).status_code == 201
    assert api_client.post(f"/api/cards/{card_id}/comments", json={"content": "looks good"}).status_code == 201
    assert api_client.post(f"/api/cards/{card_id}/labels/lbl-docs").status_code == 201

    assert api_client.post(f"/api/cards/{card_id}/move", json={"stage": "plan"}).json()["stage"] == "plan"
    moved = api_client.patch(f"/api/cards/{card_id}/move", json={"stage": "todo"})
    assert moved.status_code == 200
    assert moved.json()["ai_status"] == "dispatched"

    detail = api_client.get(f"/api/cards/{card_id}").json()
    assert detail["stage"] == "todo"
    assert detail["subtask_count"] == 3
    assert detail["comment_count"] == 1
    assert detail["label_count"] == 1
    assert [s["title"] for s in detail["subtasks"]] == ["one", "two", "three"]
    assert detail["ai_session_id"] == "ses-1"
    assert len(opencode.prompts()) == 1


def test_illegal_move_is_rejected(api_client, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)

    resp = api_client.post(f"/api/cards/{card['id']}/move", json={"stage": "done"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["status"] == 400
    assert "backlog" in body["error"] and "done" in body["error"]
    assert api_client.get(f"/api/cards/{card['id']}").json()["stage"] == "backlog"


def test_stage_change_through_patch_is_validated(api_client, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)

    resp = api_client.patch(f"/api/cards/{card['id']}", json={"title": "Renamed", "stage": "review"})
    assert resp.status_code == 400
    # Nothing is applied when the stage change is illegal.
    assert api_client.get(f"/api/cards/{card['id']}").json()["title"] == "E2E"

    resp = api_client.patch(f"/api/cards/{card['id']}", json={"title": "Renamed", "stage": "plan"})
    assert resp.status_code == 200
    assert resp.json()["title"] == "Renamed"
    assert resp.json()["stage"] == "plan"


def test_redispatch_after_review_appends_feedback(api_client, api_env: Path, opencode, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path, title="Login flow")
    card_id = card["id"]
    plan_path = Path(api_client.post(f"/api/cards/{card_id}/generate-plan").json()["plan_path"])
    Database(api_env).update_card(card_id, stage="review")
    for author, content in (("alice", "First note"), ("bob", "Second note"), ("carol", "Third note")):
        api_client.post(f"/api/cards/{card_id}/comments", json={"content": content, "author": author})

    sub = app.state.bus.subscribe()
    try:
        resp = api_client.post(f"/api/cards/{card_id}/move", json={"stage": "todo"})
        messages = [json.loads(m) for m in sub.drain()]
    finally:
        app.state.bus.unsubscribe(sub)

    assert resp.status_code == 200
    assert resp.json()["ai_status"] == "dispatched"
    text = plan_path.read_text(encoding="utf-8")
    feedback = text[text.index("## Review Feedback"):]
    assert feedback == (
        "## Review Feedback\n\n"
        "- **alice**: First note\n"
        "- **bob**: Second note\n"
        "- **carol**: Third note\n"
    )
    assert any(m["type"] == "AiStatusChanged" and m["card_id"] == card_id for m in messages)
    assert str(plan_path) in opencode.prompts()[-1]


def test_reject_records_feedback_and_requeues(api_client, api_env: Path, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)
    api_client.post(f"/api/cards/{card['id']}/generate-plan")

    assert api_client.post(f"/api/cards/{card['id']}/reject", json={"feedback": "nope"}).status_code == 400

    Database(api_env).update_card(card["id"], stage="review")
    resp = api_client.post(f"/api/cards/{card['id']}/reject", json={"feedback": "Handle empty input"})

    assert resp.status_code == 200
    assert resp.json()["stage"] == "todo"
    comments = api_client.get(f"/api/cards/{card['id']}/comments").json()
    assert [(c["author"], c["content"]) for c in comments] == [("reviewer", "Handle empty input")]


def test_dispatch_failure_keeps_move(api_client, opencode, tmp_path: Path) -> None:
    opencode.fail = True
    card = _create_card(api_client, tmp_path, stage="plan")

    resp = api_client.post(f"/api/cards/{card['id']}/move", json={"stage": "todo"})

    assert resp.status_code == 200
    assert resp.json()["stage"] == "todo"
    assert resp.json()["ai_status"] == "failed"
    assert resp.json()["plan_path"]


def test_stop_and_resume(api_client, opencode, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path, stage="plan")
    api_client.post(f"/api/cards/{card['id']}/move", json={"stage": "todo"})

    stopped = api_client.post(f"/api/cards/{card['id']}/stop-ai").json()
    assert stopped["ai_status"] == "idle"
    assert any(r["path"] == "/session/ses-1/abort" for r in opencode.requests)

    resumed = api_client.post(f"/api/cards/{card['id']}/resume-ai").json()
    assert resumed["ai_status"] == "dispatched"
    assert resumed["ai_session_id"] == "ses-2"


def test_board_overview_groups_by_stage(api_client, tmp_path: Path) -> None:
    first = _create_card(api_client, tmp_path, title="A")
    _create_card(api_client, tmp_path, title="B", stage="plan")

    board = api_client.get("/api/board").json()

    assert set(board["columns"]) == {"backlog", "plan", "todo", "in_progress", "review", "done"}
    assert [c["id"] for c in board["columns"]["backlog"]] == [first["id"]]
    assert [c["title"] for c in board["columns"]["plan"]] == ["B"]


def test_versions_and_restore(api_client, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path, title="Original")
    api_client.patch(f"/api/cards/{card['id']}", json={"title": "Edited"})

    versions = api_client.get(f"/api/cards/{card['id']}/versions").json()
    assert [v["title"] for v in versions] == ["Original"]

    restored = api_client.post(f"/api/cards/{card['id']}/versions/{versions[0]['id']}/restore")
    assert restored.status_code == 200
    assert restored.json()["title"] == "Original"
    assert len(api_client.get(f"/api/cards/{card['id']}/versions").json()) == 2


def test_missing_card_returns_error_body(api_client) -> None:
    resp = api_client.get("/api/cards/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Card not found: does-not-exist", "status": 404}


def test_invalid_payload_is_400(api_client) -> None:
    resp = api_client.post("/api/cards", json={"description": "no title"})
    assert resp.status_code == 400
    assert "title" in resp.json()["error"]


def test_subtask_and_comment_crud(api_client, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)
    subtask = api_client.post(f"/api/cards/{card['id']}/subtasks", json={"title": "Write code"}).json()

    toggled = api_client.patch(f"/api/subtasks/{subtask['id']}", json={"completed": True}).json()
    assert toggled["completed"] is True
    assert api_client.delete(f"/api/subtasks/{subtask['id']}").status_code == 204
    assert api_client.get(f"/api/cards/{card['id']}/subtasks").json() == []

    comment = api_client.post(f"/api/cards/{card['id']}/comments", json={"content": "hi"}).json()
    assert comment["author"] == "user"
    edited = api_client.patch(f"/api/comments/{comment['id']}", json={"content": "hello"}).json()
    assert edited["content"] == "hello"
    assert api_client.delete(f"/api/comments/{comment['id']}").status_code == 204
    assert api_client.delete(f"/api/comments/{comment['id']}").status_code == 404


def test_delete_card(api_client, tmp_path: Path) -> None:
    card = _create_card(api_client, tmp_path)
    assert api_client.delete(f"/api/cards/{card['id']}").status_code == 204
    assert api_client.get(f"/api/cards/{card['id']}").status_code == 404
