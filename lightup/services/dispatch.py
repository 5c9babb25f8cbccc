"""
Lightup AI Dispatch Service

Hands a card to the OpenCode runtime: writes the work plan, opens a session
on the card's working directory and sends the kickoff prompt.
"""

from pathlib import Path
from typing import List, Optional, Sequence

from lightup.db.database import Database
from lightup.engines.opencode import OpenCodeClient
from lightup.errors import AgentRuntimeError
from lightup.models.domain import AiStatus, Card, Subtask
from lightup.services.base import Service, ServiceContext
from lightup.services.plan_generator import write_plan

KICKOFF_PROMPT = (
    "A work plan has been generated at {plan_path}. Read it carefully, then execute "
    "/start-work to begin. Work through ALL TODOs systematically."
)


def build_prompt(card: Card, plan_path: Path) -> str:
    prompt = KICKOFF_PROMPT.format(plan_path=plan_path)
    if card.ai_agent:
        prompt = f"You are acting as the {card.ai_agent} agent. " + prompt
    return prompt


class AiDispatchService(Service):
    """
    Dispatches cards to the agent runtime.

    Safe to retry: each call opens a fresh session and the stored
    ai_session_id always reflects the latest successful dispatch.
    """

    def __init__(self, context: ServiceContext, db: Database, client: OpenCodeClient) -> None:
        super().__init__(context)
        self.db = db
        self.client = client

    def dispatch(
        self,
        card: Card,
        subtasks: Optional[Sequence[Subtask]] = None,
        *,
        reuse_plan: bool = False,
    ) -> str:
        """
        Dispatch `card` and return the new session id, or "" on failure.

        Runtime failures mark the card failed but keep plan_path so the UI can
        show what was attempted. Plan-writing failures raise AgentRuntimeError
        and leave the card untouched. With reuse_plan, an existing plan file is
        sent as-is instead of being regenerated.
        """
        if not Path(card.working_directory).is_dir():
            self.logger.warning(
                "dispatch_missing_working_directory",
                extra=self.log_extra(card_id=card.id, working_directory=card.working_directory),
            )
            self.db.update_card(card.id, ai_status=AiStatus.FAILED)
            return ""

        if reuse_plan and card.plan_path and Path(card.plan_path).is_file():
            plan_path = Path(card.plan_path)
        else:
            plan_path = self._write_plan(card, subtasks)

        try:
            session_id = self.client.create_session(card.working_directory)
            self.client.prompt_async(session_id, build_prompt(card, plan_path))
        except AgentRuntimeError as exc:
            self.logger.warning(
                "dispatch_failed",
                extra=self.log_extra(card_id=card.id, error=str(exc), plan_path=str(plan_path)),
            )
            self.db.update_card(card.id, ai_status=AiStatus.FAILED, plan_path=str(plan_path))
            return ""

        # Child sessions of an earlier run belong to the old session.
        self.db.delete_session_mappings(card.id)
        self.db.update_card(
            card.id,
            ai_session_id=session_id,
            ai_status=AiStatus.DISPATCHED,
            plan_path=str(plan_path),
        )
        self.logger.info(
            "card_dispatched",
            extra=self.log_extra(card_id=card.id, session_id=session_id, plan_path=str(plan_path)),
        )
        return session_id

    def abort(self, session_id: str) -> None:
        self.client.abort_session(session_id)

    def _write_plan(self, card: Card, subtasks: Optional[Sequence[Subtask]]) -> Path:
        ordered: List[Subtask] = list(subtasks) if subtasks is not None else self.db.list_subtasks(card.id)
        try:
            return write_plan(card, ordered)
        except OSError as exc:
            raise AgentRuntimeError(
                f"Failed to write plan for card {card.id}: {exc}",
                metadata={"card_id": card.id},
            ) from exc
