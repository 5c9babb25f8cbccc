import asyncio
import json

from lightup.services.events import CardMoved, EventBroadcaster, WorkflowEvent, status_event


def test_envelope_uses_class_name_as_type() -> None:
    event = CardMoved(card_id="c1", from_stage="plan", to_stage="todo")
    assert json.loads(event.to_json()) == {
        "type": "CardMoved",
        "card_id": "c1",
        "from_stage": "plan",
        "to_stage": "todo",
    }


def test_every_subscriber_gets_every_message() -> None:
    bus = EventBroadcaster()
    first, second = bus.subscribe(), bus.subscribe()

    assert bus.publish("one") == 2
    assert bus.publish(CardMoved(card_id="c1")) == 2

    assert first.drain()[0] == "one"
    assert len(second.drain()) == 2


def test_publish_without_subscribers_is_a_no_op() -> None:
    assert EventBroadcaster().publish("nobody listening") == 0


def test_lagging_subscriber_is_dropped_without_backfill() -> None:
    bus = EventBroadcaster(capacity=3)
    slow = bus.subscribe()
    fast = bus.subscribe()

    for i in range(3):
        bus.publish(str(i))
    fast.drain()
    bus.publish("overflow")

    assert slow.lagged and slow.closed
    assert slow.drain() == []
    assert bus.subscriber_count == 1
    assert fast.drain() == ["overflow"]


def test_publish_never_raises_on_unserializable_event() -> None:
    class Broken(WorkflowEvent):
        def to_json(self) -> str:
            raise TypeError("boom")

    bus = EventBroadcaster()
    bus.subscribe()
    assert bus.publish(Broken()) == 0


def test_async_subscriber_receives_in_order(db, tmp_path) -> None:
    card = db.create_card(title="Async", working_directory=str(tmp_path))

    async def scenario():
        bus = EventBroadcaster()
        sub = bus.subscribe()
        bus.publish(status_event(card))
        bus.publish("second")
        first = json.loads(await asyncio.wait_for(sub.get(), timeout=1))
        second = await asyncio.wait_for(sub.get(), timeout=1)
        bus.unsubscribe(sub)
        closed = await asyncio.wait_for(sub.get(), timeout=1)
        return first, second, closed

    first, second, closed = asyncio.run(scenario())
    assert first["type"] == "AiStatusChanged"
    assert first["card_id"] == card.id
    assert second == "second"
    assert closed is None
