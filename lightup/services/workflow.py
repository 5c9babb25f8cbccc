"""
Lightup Workflow Controller

Moves cards through the stage machine and owns the side effects attached
to moves: dispatching on entry to todo (re-dispatching with review feedback
when the card comes back from review) and review notifications.
"""

from pathlib import Path
from typing import Any, Optional

from lightup.db.database import Database
from lightup.errors import LightupError, ValidationError
from lightup.models.domain import AiStatus, Card, Stage
from lightup.services.base import Service, ServiceContext
from lightup.services.cards import CardService
from lightup.services.dispatch import AiDispatchService
from lightup.services.events import CardMoved, CardUpdated, EventBroadcaster, status_event
from lightup.services.notifications import NotificationService
from lightup.services.plan_generator import append_review_feedback, write_plan
from lightup.services.stage import is_redispatch, parse_stage, validate_transition

REVIEW_FEEDBACK_COMMENTS = 5


class WorkflowController(Service):
    """
    Stage moves and agent lifecycle actions for a card.

    The stage change is committed before any dispatch runs, and dispatch
    failures never roll a move back.
    """

    def __init__(
        self,
        context: ServiceContext,
        db: Database,
        bus: EventBroadcaster,
        dispatcher: AiDispatchService,
        cards: Optional[CardService] = None,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus
        self.dispatcher = dispatcher
        self.cards = cards or CardService(context, db, bus)
        self.notifications = notifications or NotificationService(context, db, bus)

    def move(self, card_id: str, stage: str, position: Optional[int] = None) -> Card:
        card = self.db.get_card(card_id)
        current = parse_stage(card.stage)
        target = parse_stage(stage)
        validate_transition(current, target)
        redispatch = is_redispatch(current, target)

        if position is None:
            position = self.db.next_card_position(target)
        moved = self.db.move_card(card_id, target, position)

        if current != target:
            self.bus.publish(CardMoved(card_id=card_id, from_stage=current, to_stage=target))
            self.logger.info(
                "card_moved",
                extra=self.log_extra(card_id=card_id, from_stage=current, to_stage=target, position=position),
            )
        if target == Stage.REVIEW and current != Stage.REVIEW:
            self.notifications.review_requested(moved)

        if target != Stage.TODO or current == Stage.TODO:
            return moved

        try:
            if redispatch:
                self._redispatch_with_feedback(card_id)
            else:
                self.dispatcher.dispatch(moved, self.db.list_subtasks(card_id))
        except (LightupError, OSError) as exc:
            self.logger.error(
                "dispatch_after_move_failed",
                extra=self.log_extra(card_id=card_id, redispatch=redispatch, error=str(exc)),
            )

        refreshed = self.db.get_card(card_id)
        self.bus.publish(status_event(refreshed))
        return refreshed

    def _redispatch_with_feedback(self, card_id: str) -> str:
        card = self.db.get_card(card_id)
        if not card.plan_path:
            raise ValidationError(f"Card {card_id} has no plan to attach review feedback to")
        comments = self.db.list_recent_comments(card_id, limit=REVIEW_FEEDBACK_COMMENTS)
        append_review_feedback(Path(card.plan_path), comments)
        self.logger.info(
            "review_feedback_appended",
            extra=self.log_extra(card_id=card_id, comments=len(comments), plan_path=card.plan_path),
        )
        return self.dispatcher.dispatch(self.db.get_card(card_id), reuse_plan=True)

    def update_card(
        self,
        card_id: str,
        *,
        stage: Optional[str] = None,
        position: Optional[int] = None,
        **fields: Any,
    ) -> Card:
        """Apply an edit; a stage change is validated up front and runs as a move."""
        card = self.db.get_card(card_id)
        stage_changed = stage is not None and stage != card.stage
        if stage_changed:
            validate_transition(card.stage, stage)
        if fields:
            card = self.cards.update_card(card_id, **fields)
        if stage_changed:
            return self.move(card_id, stage, position)
        if position is not None:
            card = self.db.move_card(card_id, card.stage, position)
        return card

    def reject(self, card_id: str, feedback: Optional[str] = None) -> Card:
        """Send a card in review back to todo, optionally recording feedback first."""
        card = self.db.get_card(card_id)
        if card.stage != Stage.REVIEW:
            raise ValidationError(f"Only cards in review can be rejected (card is in {card.stage})")
        if feedback and feedback.strip():
            self.cards.create_comment(card_id, feedback, author="reviewer")
        return self.move(card_id, Stage.TODO)

    def generate_plan(self, card_id: str) -> Card:
        """Write the plan file without dispatching."""
        card = self.db.get_card(card_id)
        if not Path(card.working_directory).is_dir():
            raise ValidationError(f"Working directory does not exist: {card.working_directory}")
        plan_path = write_plan(card, self.db.list_subtasks(card_id))
        updated = self.db.update_card(card_id, plan_path=str(plan_path))
        self.bus.publish(CardUpdated(card=updated.to_dict()))
        return updated

    def mark_merged(self, card_id: str) -> Card:
        """
        Finish a card whose branch landed on the default branch: clear its
        worktree fields and move it to done. Callers only merge cards that are
        in review, so review -> done is the edge being taken.
        """
        card = self.db.get_card(card_id)
        moved = self.db.update_card(
            card_id,
            stage=Stage.DONE,
            position=self.db.next_card_position(Stage.DONE),
            ai_status=AiStatus.COMPLETED if card.ai_session_id else card.ai_status,
            branch_name=None,
            worktree_path=None,
        )
        if card.stage != Stage.DONE:
            self.bus.publish(CardMoved(card_id=card_id, from_stage=card.stage, to_stage=Stage.DONE))
        self.bus.publish(CardUpdated(card=moved.to_dict()))
        self.logger.info("card_merged", extra=self.log_extra(card_id=card_id, from_stage=card.stage))
        return moved

    def stop_ai(self, card_id: str) -> Card:
        card = self.db.get_card(card_id)
        if card.ai_session_id and card.ai_status in (
            AiStatus.DISPATCHED,
            AiStatus.WORKING,
            AiStatus.WAITING_INPUT,
        ):
            self.dispatcher.abort(card.ai_session_id)
        updated = self.db.update_card(card_id, ai_status=AiStatus.IDLE)
        self.bus.publish(status_event(updated))
        self.logger.info("ai_stopped", extra=self.log_extra(card_id=card_id, session_id=card.ai_session_id))
        return updated

    def resume_ai(self, card_id: str) -> Card:
        card = self.db.get_card(card_id)
        if card.stage not in (Stage.TODO, Stage.IN_PROGRESS):
            raise ValidationError(f"AI can only be resumed for cards in todo or in_progress (card is in {card.stage})")
        self.dispatcher.dispatch(card, self.db.list_subtasks(card_id), reuse_plan=True)
        refreshed = self.db.get_card(card_id)
        self.bus.publish(status_event(refreshed))
        return refreshed
