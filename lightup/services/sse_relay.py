"""
Lightup Event Relay

Long-lived consumer of the OpenCode `/event` stream. Maps runtime events
onto card state, persists agent logs and republishes both on the event bus.
"""

import asyncio
import json
from typing import Any, Dict, Optional

from lightup.db.database import Database
from lightup.engines.opencode import OpenCodeClient
from lightup.models.domain import AiStatus, Card, Stage
from lightup.services.base import Service, ServiceContext
from lightup.services.events import AgentLogCreated, CardMoved, EventBroadcaster, status_event
from lightup.services.notifications import NotificationService
from lightup.services.session_mapping import agent_for_session, register_child_session

INITIAL_BACKOFF_SECONDS = 1.0

# Noise that is never persisted as an agent log.
_UNLOGGED_EVENTS = frozenset(
    {"message.part.updated", "session.diff", "server.connected", "server.heartbeat"}
)
_LOG_CONTENT_LIMIT = 4000


def next_backoff(current: float, maximum: float) -> float:
    return min(current * 2, maximum)


def extract_session_id(properties: Dict[str, Any]) -> Optional[str]:
    """sessionID may sit at the top level, under `info`, or under `part`."""
    session_id = properties.get("sessionID")
    if session_id:
        return session_id
    for key in ("info", "part"):
        nested = properties.get(key)
        if isinstance(nested, dict) and nested.get("sessionID"):
            return nested["sessionID"]
    return None


def should_log(event_type: str, properties: Dict[str, Any]) -> bool:
    if event_type in _UNLOGGED_EVENTS:
        return False
    if event_type == "message.updated":
        info = properties.get("info") or {}
        return bool(info.get("finish"))
    return True


def describe_event(event_type: str, properties: Dict[str, Any]) -> str:
    if event_type == "session.status":
        status = properties.get("status") or {}
        return f"Session status: {status.get('type', 'unknown')}"
    if event_type == "session.idle":
        return "Session idle"
    if event_type == "message.updated":
        info = properties.get("info") or {}
        return f"{info.get('agent') or 'agent'} finished: {info.get('finish')}"
    if event_type == "todo.updated":
        todos = properties.get("todos") or []
        done = sum(1 for t in todos if _todo_completed(t))
        return f"Todos: {done}/{len(todos)} completed"
    return json.dumps(properties, default=str)[:_LOG_CONTENT_LIMIT]


def _todo_completed(todo: Dict[str, Any]) -> bool:
    return (todo.get("status") or todo.get("state")) == "completed"


def todo_progress(todos: Any) -> Dict[str, Any]:
    todos = [t for t in (todos or []) if isinstance(t, dict)]
    current = None
    for todo in todos:
        if (todo.get("status") or todo.get("state")) == "in_progress":
            current = todo.get("content") or todo.get("text")
            break
    return {
        "total_todos": len(todos),
        "completed_todos": sum(1 for t in todos if _todo_completed(t)),
        "current_task": current,
    }


class SseRelay(Service):
    """
    Relays agent runtime events onto cards.

    Transport errors reconnect after an exponential backoff (1 s doubling to
    `relay_max_backoff_seconds`), reset once a message arrives.
    """

    def __init__(
        self,
        context: ServiceContext,
        db: Database,
        bus: EventBroadcaster,
        client: OpenCodeClient,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus
        self.client = client
        self.notifications = notifications or NotificationService(context, db, bus)

    async def run(self) -> None:
        backoff = INITIAL_BACKOFF_SECONDS
        self.logger.info("relay_started", extra={"url": self.client.config.base_url})
        while True:
            try:
                async for message in self.client.stream_events():
                    backoff = INITIAL_BACKOFF_SECONDS
                    try:
                        await asyncio.to_thread(self.handle_message, message)
                    except Exception as exc:
                        self.logger.error(
                            "relay_event_failed",
                            extra={"event_type": message.get("type"), "error": str(exc)},
                            exc_info=True,
                        )
                self.logger.info("relay_stream_closed")
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.warning("relay_reconnecting", extra={"backoff": backoff, "error": str(exc)})
            await asyncio.sleep(backoff)
            backoff = next_backoff(backoff, self.config.relay_max_backoff_seconds)

    def handle_message(self, message: Dict[str, Any]) -> Optional[Card]:
        properties = message.get("properties")
        return self.handle_event(message.get("type") or "", properties if isinstance(properties, dict) else {})

    def handle_event(self, event_type: str, properties: Dict[str, Any]) -> Optional[Card]:
        """Apply one runtime event; returns the card it was routed to, if any."""
        if event_type in ("session.created", "session.updated"):
            info = properties.get("info")
            if isinstance(info, dict) and info.get("parentID"):
                register_child_session(self.db, info)

        session_id = extract_session_id(properties)
        if not session_id:
            return None
        card = self.db.find_card_by_session(session_id)
        if card is None:
            self.logger.debug("relay_unknown_session", extra={"session_id": session_id, "event_type": event_type})
            return None

        if should_log(event_type, properties):
            self._append_log(card, session_id, event_type, properties)

        return self._apply_transition(card, session_id, event_type, properties)

    def _append_log(self, card: Card, session_id: str, event_type: str, properties: Dict[str, Any]) -> None:
        info = properties.get("info") if isinstance(properties.get("info"), dict) else {}
        agent = agent_for_session(self.db, session_id) or info.get("agent")
        log = self.db.append_agent_log(
            card_id=card.id,
            session_id=session_id,
            event_type=event_type,
            content=describe_event(event_type, properties),
            agent=agent,
            metadata=properties,
        )
        self.bus.publish(AgentLogCreated(card_id=card.id, log=log.to_dict()))

    def _apply_transition(
        self,
        card: Card,
        session_id: str,
        event_type: str,
        properties: Dict[str, Any],
    ) -> Card:
        changes: Dict[str, Any] = {}
        # Only the primary session drives stage; sub-agents idle long before the card is done.
        primary = session_id == card.ai_session_id

        if event_type == "session.status" and primary:
            status = properties.get("status") or {}
            if status.get("type") == "busy":
                if card.stage == Stage.TODO:
                    changes = {"stage": Stage.IN_PROGRESS, "ai_status": AiStatus.WORKING}
                elif card.stage == Stage.PLAN and card.ai_status == AiStatus.PLANNING:
                    changes = {"ai_status": AiStatus.WORKING}
        elif event_type == "session.idle" and primary:
            if card.stage == Stage.IN_PROGRESS:
                changes = {"stage": Stage.REVIEW, "ai_status": AiStatus.COMPLETED}
            elif card.stage == Stage.PLAN:
                changes = {"ai_status": AiStatus.IDLE}
        elif event_type == "message.updated":
            info = properties.get("info") or {}
            progress = dict(card.ai_progress)
            progress["current_agent"] = info.get("agent") or "unknown"
            if info.get("finish"):
                progress["last_finish_reason"] = info["finish"]
            changes = {"ai_progress": progress}
        elif event_type == "todo.updated":
            progress = dict(card.ai_progress)
            progress.update(todo_progress(properties.get("todos")))
            changes = {"ai_progress": progress}

        if not changes:
            return card

        if "stage" in changes:
            changes["position"] = self.db.next_card_position(changes["stage"])
        updated = self.db.update_card(card.id, **changes)
        self.bus.publish(status_event(updated))
        if updated.stage != card.stage:
            self.bus.publish(CardMoved(card_id=updated.id, from_stage=card.stage, to_stage=updated.stage))
            self.logger.info(
                "relay_card_moved",
                extra=self.log_extra(
                    card_id=updated.id,
                    session_id=session_id,
                    from_stage=card.stage,
                    to_stage=updated.stage,
                ),
            )
            if updated.stage == Stage.REVIEW:
                self.notifications.review_requested(updated)
        return updated
