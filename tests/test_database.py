"""
Tests for the SQLite persistence layer.
"""

import sqlite3

import pytest
from hypothesis import given, settings, strategies as st

from lightup.db.database import MAX_CARD_VERSIONS, POSITION_STEP, SQLiteDatabase
from lightup.errors import EntityNotFoundError
from lightup.models.domain import AiStatus, Stage


def test_schema_seeds_default_board_and_labels(db: SQLiteDatabase) -> None:
    boards = db.list_boards()
    assert [b.id for b in boards] == ["default"]
    assert len(db.list_labels()) == 5


def test_init_schema_is_idempotent(db: SQLiteDatabase) -> None:
    db.init_schema()
    assert len(db.list_boards()) == 1


def test_create_card_defaults(db: SQLiteDatabase) -> None:
    card = db.create_card(title="First")
    assert card.stage == Stage.BACKLOG
    assert card.priority == "medium"
    assert card.ai_status == AiStatus.IDLE
    assert card.position == POSITION_STEP
    assert db.create_card(title="Second").position == 2 * POSITION_STEP


def test_update_card_clears_optional_fields(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Card")
    db.update_card(card.id, plan_path="/tmp/plan.md", ai_progress={"total_todos": 2})
    updated = db.update_card(card.id, plan_path=None)
    assert updated.plan_path is None
    assert updated.ai_progress == {"total_todos": 2}

    with pytest.raises(ValueError):
        db.update_card(card.id, not_a_column="x")


def test_missing_card_raises_not_found(db: SQLiteDatabase) -> None:
    with pytest.raises(EntityNotFoundError) as excinfo:
        db.get_card("missing")
    assert excinfo.value.status_code == 404


def test_card_versions_are_capped(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Versioned")
    for i in range(MAX_CARD_VERSIONS + 5):
        card = db.update_card(card.id, title=f"Title {i}")
        db.save_card_version(card)

    versions = db.list_card_versions(card.id)
    assert len(versions) == MAX_CARD_VERSIONS
    assert versions[0].title == f"Title {MAX_CARD_VERSIONS + 4}"


def test_subtasks_order_by_phase_then_position(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Phased")
    db.create_subtask(card.id, "second phase", phase="Phase 2", phase_order=2)
    db.create_subtask(card.id, "later", position=5000)
    db.create_subtask(card.id, "earlier", position=100)

    assert [s.title for s in db.list_subtasks(card.id)] == ["earlier", "later", "second phase"]


def test_recent_comments_are_oldest_first(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Talk")
    for i in range(7):
        db.create_comment(card.id, f"comment {i}")

    recent = db.list_recent_comments(card.id, limit=5)
    assert [c.content for c in recent] == [f"comment {i}" for i in range(2, 7)]


def test_duplicate_label_is_ignored(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Labelled")
    label = db.list_labels()[0]

    assert db.add_card_label(card.id, label.id) is True
    assert db.add_card_label(card.id, label.id) is False
    assert [lbl.id for lbl in db.list_card_labels(card.id)] == [label.id]
    assert db.remove_card_label(card.id, label.id) is True
    assert db.remove_card_label(card.id, label.id) is False

    with pytest.raises(EntityNotFoundError):
        db.add_card_label(card.id, "no-such-label")


def test_deleting_card_cascades(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Doomed")
    subtask = db.create_subtask(card.id, "child")
    db.create_comment(card.id, "note")
    db.append_agent_log(card_id=card.id, session_id="s", event_type="session.idle", content="idle")

    db.delete_card(card.id)

    with pytest.raises(EntityNotFoundError):
        db.get_subtask(subtask.id)
    assert db.list_agent_logs(card.id) == []


def test_child_session_resolves_to_card(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Sessions")
    db.update_card(card.id, ai_session_id="parent")
    db.insert_session_mapping(child_session_id="child", card_id=card.id, parent_session_id="parent")

    assert db.find_card_by_session("parent").id == card.id
    assert db.find_card_by_session("child").id == card.id
    assert db.find_card_by_session("stranger") is None


def test_active_and_queued_counts(db: SQLiteDatabase) -> None:
    working = db.create_card(title="Working", stage=Stage.IN_PROGRESS)
    db.update_card(working.id, ai_status=AiStatus.WORKING)
    queued = db.create_card(title="Queued", stage=Stage.TODO)
    db.update_card(queued.id, ai_status=AiStatus.QUEUED)
    finished = db.create_card(title="Review", stage=Stage.REVIEW)
    db.update_card(finished.id, ai_status=AiStatus.COMPLETED)

    assert db.count_active_cards() == 1
    assert [c.id for c in db.list_queued_cards(10)] == [queued.id]


def test_card_summaries_carry_counts(db: SQLiteDatabase) -> None:
    card = db.create_card(title="Counted")
    first = db.create_subtask(card.id, "a")
    db.create_subtask(card.id, "b")
    db.update_subtask(first.id, completed=True)
    db.create_comment(card.id, "hi")
    db.add_card_label(card.id, db.list_labels()[0].id)

    summary = db.list_card_summaries()[0]
    assert (summary.subtask_count, summary.subtask_completed) == (2, 1)
    assert (summary.comment_count, summary.label_count) == (1, 1)


def test_foreign_keys_are_enforced(db: SQLiteDatabase) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        with db._transaction() as conn:
            conn.execute(
                "INSERT INTO card_labels (card_id, label_id) VALUES (?, ?)",
                ("missing-card", "missing-label"),
            )


@settings(max_examples=20, deadline=None)
@given(st.lists(st.sampled_from(["a", "b", "c"]), min_size=1, max_size=8))
def test_settings_last_write_wins(tmp_path_factory, values) -> None:
    db = SQLiteDatabase(tmp_path_factory.mktemp("settings") / "db.sqlite")
    db.init_schema()
    for value in values:
        db.set_setting("ai_concurrency", value)
    assert db.get_setting("ai_concurrency").value == values[-1]
