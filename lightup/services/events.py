"""
Lightup Event Bus

Process-wide broadcast channel feeding the SSE and websocket endpoints.

Publishers hand over WorkflowEvent dataclasses (or pre-serialized JSON);
every subscriber owns a bounded buffer. A subscriber that falls more than
`capacity` messages behind is marked lagged and disconnected, without backfill.
Publishing is thread-safe and never raises.
"""

import asyncio
import json
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, List, Optional, Union

from lightup.logging import get_logger
from lightup.models.domain import Card

logger = get_logger(__name__)

DEFAULT_CAPACITY = 100


@dataclass
class WorkflowEvent:
    """
    Base class for events fanned out to UI clients.

    The wire envelope is `{"type": <class name>, **fields}`.
    """

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type, **asdict(self)}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# Card Events

@dataclass
class CardCreated(WorkflowEvent):
    card: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CardUpdated(WorkflowEvent):
    card: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CardMoved(WorkflowEvent):
    card_id: str = ""
    from_stage: str = ""
    to_stage: str = ""


@dataclass
class CardDeleted(WorkflowEvent):
    card_id: str = ""


# Subtask Events

@dataclass
class SubtaskCreated(WorkflowEvent):
    subtask: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubtaskUpdated(WorkflowEvent):
    subtask: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubtaskToggled(WorkflowEvent):
    """Fired instead of SubtaskUpdated when only `completed` changed."""
    subtask: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubtaskDeleted(WorkflowEvent):
    card_id: str = ""
    subtask_id: str = ""


# Comment Events

@dataclass
class CommentCreated(WorkflowEvent):
    comment: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommentUpdated(WorkflowEvent):
    comment: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CommentDeleted(WorkflowEvent):
    card_id: str = ""
    comment_id: str = ""


# Board Events

@dataclass
class BoardCreated(WorkflowEvent):
    board: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BoardUpdated(WorkflowEvent):
    board: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BoardDeleted(WorkflowEvent):
    board_id: str = ""


# Label Events

@dataclass
class LabelAdded(WorkflowEvent):
    card_id: str = ""
    label_id: str = ""


@dataclass
class LabelRemoved(WorkflowEvent):
    card_id: str = ""
    label_id: str = ""


# Agent Events

@dataclass
class AiStatusChanged(WorkflowEvent):
    card_id: str = ""
    status: str = ""
    progress: Dict[str, Any] = field(default_factory=dict)
    stage: str = ""
    ai_session_id: Optional[str] = None


@dataclass
class AgentLogCreated(WorkflowEvent):
    card_id: str = ""
    log: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QuestionCreated(WorkflowEvent):
    card_id: str = ""
    question: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QuestionAnswered(WorkflowEvent):
    card_id: str = ""
    question: Dict[str, Any] = field(default_factory=dict)


@dataclass
class NotificationCreated(WorkflowEvent):
    notification: Dict[str, Any] = field(default_factory=dict)


def status_event(card: Card) -> AiStatusChanged:
    """AiStatusChanged snapshot of a card's current agent state."""
    return AiStatusChanged(
        card_id=card.id,
        status=card.ai_status,
        progress=card.ai_progress,
        stage=card.stage,
        ai_session_id=card.ai_session_id,
    )


class Subscription:
    """
    One subscriber's bounded buffer.

    Subscriptions created inside a running event loop are awaited with `get()`;
    ones created outside a loop are read with `drain()`.
    """

    def __init__(self, capacity: int, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self.id = str(uuid.uuid4())
        self.capacity = capacity
        self.lagged = False
        self.closed = False
        self._buffer: Deque[str] = deque()
        self._lock = threading.Lock()
        self._loop = loop
        self._ready = asyncio.Event() if loop is not None else None

    def offer(self, message: str) -> bool:
        with self._lock:
            if self.closed:
                return False
            if len(self._buffer) >= self.capacity:
                self.lagged = True
                self.closed = True
                self._buffer.clear()
                accepted = False
            else:
                self._buffer.append(message)
                accepted = True
        self._wake()
        return accepted

    def close(self) -> None:
        with self._lock:
            self.closed = True
        self._wake()

    def _wake(self) -> None:
        if self._loop is None or self._ready is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._ready.set)
        except RuntimeError:
            # loop already closed; nobody is waiting
            pass

    def drain(self) -> List[str]:
        with self._lock:
            items = list(self._buffer)
            self._buffer.clear()
        return items

    async def get(self) -> Optional[str]:
        """Next message, or None once the subscription is closed or lagged."""
        if self._ready is None:
            raise RuntimeError("Subscription was created outside an event loop")
        while True:
            with self._lock:
                if self._buffer:
                    return self._buffer.popleft()
                if self.closed:
                    return None
                self._ready.clear()
            await self._ready.wait()


class EventBroadcaster:
    """
    In-process broadcast channel.

    Example:
        bus = EventBroadcaster()
        sub = bus.subscribe()
        bus.publish(CardMoved(card_id="c1", from_stage="plan", to_stage="todo"))
        message = await sub.get()
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        self.capacity = capacity
        self._subscribers: Dict[str, Subscription] = {}
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        sub = Subscription(self.capacity, loop)
        with self._lock:
            self._subscribers[sub.id] = sub
        logger.debug("event_subscriber_added", extra={"subscriber_id": sub.id})
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.close()
        with self._lock:
            self._subscribers.pop(sub.id, None)

    def publish(self, event: Union[WorkflowEvent, str]) -> int:
        """Deliver to every live subscriber; returns how many accepted it."""
        try:
            message = event if isinstance(event, str) else event.to_json()
            with self._lock:
                subscribers = list(self._subscribers.values())
            delivered = 0
            for sub in subscribers:
                if sub.offer(message):
                    delivered += 1
                elif sub.lagged:
                    with self._lock:
                        self._subscribers.pop(sub.id, None)
                    logger.warning(
                        "event_subscriber_lagged",
                        extra={"subscriber_id": sub.id, "capacity": self.capacity},
                    )
            return delivered
        except Exception as exc:
            logger.error("event_publish_failed", extra={"error": str(exc)})
            return 0

    def close(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for sub in subscribers:
            sub.close()


# Global event bus instance
_event_bus: Optional[EventBroadcaster] = None
_event_bus_lock = threading.Lock()


def get_event_bus() -> EventBroadcaster:
    """Get or create the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        with _event_bus_lock:
            if _event_bus is None:
                _event_bus = EventBroadcaster()
    return _event_bus
