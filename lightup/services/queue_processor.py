"""
Lightup Queue Processor

Background loop that dispatches queued `todo` cards while respecting the
`ai_concurrency` setting, and fails cards whose dispatch never took.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from lightup.db.database import Database
from lightup.engines.opencode import OpenCodeClient
from lightup.errors import AgentRuntimeError, LightupError
from lightup.models.domain import AiStatus, Card
from lightup.services.base import Service, ServiceContext
from lightup.services.dispatch import AiDispatchService
from lightup.services.events import EventBroadcaster, status_event

CONCURRENCY_SETTING = "ai_concurrency"
STUCK_TIMEOUT_SETTING = "ai_stuck_timeout_minutes"
DEFAULT_CONCURRENCY = 1
DEFAULT_STUCK_TIMEOUT_MINUTES = 10


def _session_state(info: Dict[str, Any]) -> Optional[str]:
    status = info.get("status")
    if isinstance(status, dict):
        return status.get("type")
    return status


class QueueProcessor(Service):
    """Dispatches up to `ai_concurrency - active` queued cards per tick."""

    def __init__(
        self,
        context: ServiceContext,
        db: Database,
        dispatcher: AiDispatchService,
        bus: EventBroadcaster,
        client: Optional[OpenCodeClient] = None,
    ) -> None:
        super().__init__(context)
        self.db = db
        self.dispatcher = dispatcher
        self.bus = bus
        self.client = client or dispatcher.client

    def _int_setting(self, key: str, default: int) -> int:
        setting = self.db.get_setting(key)
        if setting is None:
            return default
        try:
            return int(setting.value.strip())
        except ValueError:
            self.logger.warning("queue_setting_invalid", extra={"key": key, "value": setting.value})
            return default

    def concurrency_cap(self) -> int:
        return max(1, self._int_setting(CONCURRENCY_SETTING, DEFAULT_CONCURRENCY))

    def process_once(self) -> List[str]:
        """Run one tick; returns the ids of cards dispatched."""
        self.recover_stuck_cards()

        cap = self.concurrency_cap()
        active = self.db.count_active_cards()
        if active >= cap:
            return []

        dispatched: List[str] = []
        for card in self.db.list_queued_cards(cap - active):
            try:
                session_id = self.dispatcher.dispatch(card)
            except LightupError as exc:
                self.logger.warning(
                    "queue_dispatch_failed",
                    extra=self.log_extra(card_id=card.id, error=str(exc)),
                )
                continue
            if not session_id:
                self._requeue_after_failure(card)
                continue
            refreshed = self.db.get_card(card.id)
            self.bus.publish(status_event(refreshed))
            dispatched.append(card.id)
        if dispatched:
            self.logger.info("queue_tick_dispatched", extra={"cards": dispatched, "cap": cap, "active": active})
        return dispatched

    def _requeue_after_failure(self, card: Card) -> None:
        """Runtime outages leave the card queued for the next tick."""
        refreshed = self.db.get_card(card.id)
        if refreshed.ai_status == AiStatus.FAILED and Path(refreshed.working_directory).is_dir():
            self.db.update_card(card.id, ai_status=AiStatus.QUEUED)
        self.logger.warning("queue_dispatch_failed", extra=self.log_extra(card_id=card.id))

    def recover_stuck_cards(self) -> List[str]:
        """
        Fail `dispatched` cards older than the stuck timeout whose session is
        missing, unknown to the runtime, or idle.
        """
        minutes = max(1, self._int_setting(STUCK_TIMEOUT_SETTING, DEFAULT_STUCK_TIMEOUT_MINUTES))
        cutoff = (datetime.now(timezone.utc) - timedelta(minutes=minutes)).isoformat(timespec="microseconds")
        failed: List[str] = []
        for card in self.db.list_cards_by_ai_status([AiStatus.DISPATCHED], updated_before=cutoff):
            if not self._session_is_stuck(card):
                continue
            updated = self.db.update_card(card.id, ai_status=AiStatus.FAILED)
            self.bus.publish(status_event(updated))
            failed.append(card.id)
            self.logger.warning(
                "queue_stuck_card_failed",
                extra=self.log_extra(card_id=card.id, session_id=card.ai_session_id, timeout_minutes=minutes),
            )
        return failed

    def _session_is_stuck(self, card: Card) -> bool:
        if not card.ai_session_id:
            return True
        try:
            info = self.client.get_session(card.ai_session_id)
        except AgentRuntimeError:
            return True
        return info is None or _session_state(info) == "idle"

    async def run(self) -> None:
        """Tick forever; errors are logged and the loop continues."""
        self.logger.info("queue_processor_started", extra={"interval": self.config.queue_interval_seconds})
        while True:
            try:
                await asyncio.to_thread(self.process_once)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.error("queue_tick_failed", extra={"error": str(exc)}, exc_info=True)
            await asyncio.sleep(self.config.queue_interval_seconds)
