from datetime import datetime, timedelta, timezone
from pathlib import Path

from lightup.models.domain import AiStatus, Stage
from lightup.services.dispatch import AiDispatchService
from lightup.services.queue_processor import QueueProcessor


def _queued_card(db, tmp_path: Path, title: str):
    card = db.create_card(title=title, stage=Stage.TODO, working_directory=str(tmp_path))
    return db.update_card(card.id, ai_status=AiStatus.QUEUED)


def _processor(ctx, db, bus, client) -> QueueProcessor:
    return QueueProcessor(ctx, db, AiDispatchService(ctx, db, client), bus)


def test_respects_concurrency_cap(db, ctx, bus, opencode_client, tmp_path: Path) -> None:
    db.set_setting("ai_concurrency", "2")
    cards = [_queued_card(db, tmp_path, f"Task {i}") for i in range(3)]

    dispatched = _processor(ctx, db, bus, opencode_client).process_once()

    assert dispatched == [cards[0].id, cards[1].id]
    assert db.count_active_cards() == 2
    assert db.get_card(cards[2].id).ai_status == AiStatus.QUEUED

    # Cap reached: nothing more until a slot frees up.
    assert _processor(ctx, db, bus, opencode_client).process_once() == []


def test_default_cap_is_one(db, ctx, bus, opencode_client, tmp_path: Path) -> None:
    _queued_card(db, tmp_path, "First")
    _queued_card(db, tmp_path, "Second")
    assert len(_processor(ctx, db, bus, opencode_client).process_once()) == 1


def test_invalid_setting_falls_back_to_default(db, ctx, bus, opencode_client, tmp_path: Path) -> None:
    db.set_setting("ai_concurrency", "lots")
    assert _processor(ctx, db, bus, opencode_client).concurrency_cap() == 1


def test_runtime_outage_leaves_card_queued(db, ctx, bus, opencode, opencode_client, tmp_path: Path) -> None:
    opencode.fail = True
    card = _queued_card(db, tmp_path, "Task")

    assert _processor(ctx, db, bus, opencode_client).process_once() == []
    assert db.get_card(card.id).ai_status == AiStatus.QUEUED

    opencode.fail = False
    assert _processor(ctx, db, bus, opencode_client).process_once() == [card.id]


def test_dispatch_publishes_status(db, ctx, bus, opencode_client, tmp_path: Path) -> None:
    sub = bus.subscribe()
    _queued_card(db, tmp_path, "Task")
    _processor(ctx, db, bus, opencode_client).process_once()
    assert any('"AiStatusChanged"' in message and '"dispatched"' in message for message in sub.drain())


def _age_card(db, card_id: str, minutes: int) -> None:
    stale = (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat(timespec="microseconds")
    with db._transaction() as conn:
        conn.execute("UPDATE cards SET updated_at = ? WHERE id = ?", (stale, card_id))


def test_stuck_dispatch_without_live_session_fails(db, ctx, bus, opencode_client, tmp_path: Path) -> None:
    card = db.create_card(title="Stuck", stage=Stage.TODO, working_directory=str(tmp_path))
    db.update_card(card.id, ai_status=AiStatus.DISPATCHED, ai_session_id="ses-unknown")
    _age_card(db, card.id, 30)

    failed = _processor(ctx, db, bus, opencode_client).recover_stuck_cards()

    assert failed == [card.id]
    assert db.get_card(card.id).ai_status == AiStatus.FAILED


def test_busy_or_recent_dispatch_is_left_alone(db, ctx, bus, opencode, opencode_client, tmp_path: Path) -> None:
    processor = _processor(ctx, db, bus, opencode_client)
    busy = _queued_card(db, tmp_path, "Busy")
    processor.process_once()
    _age_card(db, busy.id, 30)

    recent = db.create_card(title="Recent", stage=Stage.TODO, working_directory=str(tmp_path))
    db.update_card(recent.id, ai_status=AiStatus.DISPATCHED, ai_session_id="ses-unknown")

    assert processor.recover_stuck_cards() == []
    assert db.get_card(busy.id).ai_status == AiStatus.DISPATCHED

    opencode.sessions[db.get_card(busy.id).ai_session_id]["status"] = {"type": "idle"}
    assert processor.recover_stuck_cards() == [busy.id]
