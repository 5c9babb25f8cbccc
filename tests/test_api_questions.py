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
from lightup.errors import QuestionTimeoutError, ValidationError
from lightup.services.questions import QuestionService, parse_options

pytestmark = pytest.mark.skipif(TestClient is None, reason="fastapi not installed")


def _working_card(client, api_env: Path, tmp_path: Path) -> str:
    card = client.post("/api/cards", json={"title": "Ask me", "working_directory": str(tmp_path)}).json()
    Database(api_env).update_card(card["id"], stage="in_progress", ai_session_id="ses-q", ai_status="working")
    return card["id"]


def test_select_question_round_trip(api_client, api_env: Path, tmp_path: Path) -> None:
    card_id = _working_card(api_client, api_env, tmp_path)

    created = api_client.post(
        f"/api/cards/{card_id}/questions",
        json={"question": "Which database?", "question_type": "select", "options": ["sqlite", "postgres"]},
    )
    assert created.status_code == 201
    question = created.json()
    assert question["session_id"] == "ses-q"
    assert question["options"] == ["sqlite", "postgres"]
    assert api_client.get(f"/api/cards/{card_id}").json()["ai_status"] == "waiting_input"

    answered = api_client.post(
        f"/api/cards/{card_id}/questions/{question['id']}/answer", json={"answer": ["sqlite"]}
    )
    assert answered.status_code == 200
    assert json.loads(answered.json()["answer"]) == ["sqlite"]
    assert answered.json()["answered_at"]
    assert api_client.get(f"/api/cards/{card_id}").json()["ai_status"] == "working"

    again = api_client.post(f"/api/cards/{card_id}/questions/{question['id']}/answer", json={"answer": ["x"]})
    assert again.status_code == 400

    listed = api_client.get(f"/api/cards/{card_id}/questions").json()
    assert [q["id"] for q in listed] == [question["id"]]


def test_answer_shape_is_checked_against_question_type(api_client, api_env: Path, tmp_path: Path) -> None:
    card_id = _working_card(api_client, api_env, tmp_path)
    text_q = api_client.post(
        f"/api/cards/{card_id}/questions", json={"question": "Name?", "question_type": "text"}
    ).json()
    select_q = api_client.post(
        f"/api/cards/{card_id}/questions", json={"question": "Pick", "options": "[\"a\", \"b\"]"}
    ).json()

    assert api_client.post(
        f"/api/cards/{card_id}/questions/{text_q['id']}/answer", json={"answer": ["not", "text"]}
    ).status_code == 400
    assert api_client.post(
        f"/api/cards/{card_id}/questions/{select_q['id']}/answer", json={"answer": "a"}
    ).status_code == 400
    ok = api_client.post(f"/api/cards/{card_id}/questions/{text_q['id']}/answer", json={"answer": "Lightup"})
    assert ok.json()["answer"] == "Lightup"


def test_question_requires_agent_session(api_client, tmp_path: Path) -> None:
    card = api_client.post("/api/cards", json={"title": "Idle", "working_directory": str(tmp_path)}).json()
    resp = api_client.post(f"/api/cards/{card['id']}/questions", json={"question": "Hello?"})
    assert resp.status_code == 400


def test_invalid_question_type(api_client, api_env: Path, tmp_path: Path) -> None:
    card_id = _working_card(api_client, api_env, tmp_path)
    resp = api_client.post(f"/api/cards/{card_id}/questions", json={"question": "?", "question_type": "essay"})
    assert resp.status_code == 400
    assert "question_type" in resp.json()["error"]


def test_ask_times_out_with_504(api_client, api_env: Path, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("LIGHTUP_QUESTION_POLL_INTERVAL", "0.05")
    card_id = _working_card(api_client, api_env, tmp_path)

    resp = api_client.post(
        f"/api/cards/{card_id}/questions/ask",
        json={"question": "Anyone there?", "question_type": "text", "timeout_seconds": 0.2},
    )

    assert resp.status_code == 504
    assert "was not answered" in resp.json()["error"]


def test_ask_returns_once_answered(db, ctx, bus, tmp_path: Path) -> None:
    card = db.create_card(title="Blocking", working_directory=str(tmp_path))
    db.update_card(card.id, ai_session_id="ses-b", ai_status="working")
    service = QuestionService(ctx, db, bus)
    now = [0.0]

    def fake_sleep(seconds: float) -> None:
        # Answer from "another request" while the asker waits.
        pending = db.list_questions(card.id)[0]
        if not pending.is_answered:
            service.answer_question(card.id, pending.id, "yes")
        now[0] += seconds

    answered = service.ask(
        card.id, "Proceed?", question_type="text", timeout=10, poll_interval=1, sleep=fake_sleep, clock=lambda: now[0]
    )
    assert answered.answer == "yes"


def test_ask_timeout_uses_clock(db, ctx, bus, tmp_path: Path) -> None:
    card = db.create_card(title="Silent", working_directory=str(tmp_path))
    db.update_card(card.id, ai_session_id="ses-s", ai_status="working")
    now = [0.0]

    def advance(seconds: float) -> None:
        now[0] += seconds

    with pytest.raises(QuestionTimeoutError) as excinfo:
        QuestionService(ctx, db, bus).ask(
            card.id, "Hello?", question_type="text", timeout=5, poll_interval=2, sleep=advance, clock=lambda: now[0]
        )
    assert excinfo.value.status_code == 504
    assert now[0] == 6


def test_parse_options() -> None:
    assert parse_options('["a", 1]') == ["a", 1]
    assert parse_options(None) == []
    with pytest.raises(ValidationError):
        parse_options("{not json")
