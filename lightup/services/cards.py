"""
Lightup Card Service

CRUD for cards and everything attached to them (subtasks, comments, labels,
version history), publishing a bus event for every change.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from lightup.db.database import Database
from lightup.errors import BadRequestError, EntityNotFoundError, ValidationError
from lightup.models.domain import (
    AgentLog,
    Card,
    CardSummary,
    CardVersion,
    Comment,
    Label,
    Priority,
    Stage,
    Subtask,
)
from lightup.services.base import Service, ServiceContext
from lightup.services.events import (
    CardCreated,
    CardDeleted,
    CardUpdated,
    CommentCreated,
    CommentDeleted,
    CommentUpdated,
    EventBroadcaster,
    LabelAdded,
    LabelRemoved,
    SubtaskCreated,
    SubtaskDeleted,
    SubtaskToggled,
    SubtaskUpdated,
)
from lightup.services.git_worktree import MergeLockRegistry
from lightup.services.stage import parse_stage

# Fields a user edit may change; stage goes through the workflow controller.
EDITABLE_CARD_FIELDS = ("title", "description", "priority", "working_directory", "linked_documents", "ai_agent")

_PRIORITIES = (Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.URGENT)


def _require_text(value: Optional[str], field_name: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name} must not be empty")
    return value


def _check_priority(priority: str) -> str:
    if priority not in _PRIORITIES:
        raise ValidationError(f"priority must be one of: {', '.join(_PRIORITIES)}")
    return priority


class CardService(Service):
    """
    Card CRUD service.

    Example:
        cards = CardService(context, db, bus)
        card = cards.create_card(title="Add login page")
        cards.create_subtask(card.id, "Build the form")
    """

    def __init__(self, context: ServiceContext, db: Database, bus: EventBroadcaster) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus

    # Cards
    def create_card(
        self,
        *,
        title: str,
        description: str = "",
        stage: str = Stage.BACKLOG,
        priority: str = Priority.MEDIUM,
        working_directory: str = ".",
        board_id: str = "default",
        linked_documents: Optional[List[str]] = None,
        ai_agent: Optional[str] = None,
    ) -> Card:
        _require_text(title, "title")
        parse_stage(stage)
        _check_priority(priority)
        self.db.get_board(board_id)
        card = self.db.create_card(
            title=title,
            description=description,
            stage=stage,
            priority=priority,
            working_directory=working_directory,
            board_id=board_id,
            linked_documents=linked_documents,
            ai_agent=ai_agent,
        )
        self.bus.publish(CardCreated(card=card.to_dict()))
        self.logger.info("card_created", extra=self.log_extra(card_id=card.id, board_id=board_id, stage=stage))
        return card

    def get_card(self, card_id: str) -> Card:
        return self.db.get_card(card_id)

    def list_cards(self, board_id: Optional[str] = None) -> List[Card]:
        return self.db.list_cards(board_id=board_id)

    def board_overview(self, board_id: Optional[str] = None) -> Dict[str, List[CardSummary]]:
        """Card summaries grouped by stage, each column ordered by position."""
        columns: Dict[str, List[CardSummary]] = {stage: [] for stage in Stage.ALL}
        for summary in self.db.list_card_summaries(board_id=board_id):
            columns.setdefault(summary.stage, []).append(summary)
        return columns

    def update_card(self, card_id: str, *, changed_by: str = "user", **fields: Any) -> Card:
        """Snapshot the current card, then apply the editable fields given."""
        unknown = set(fields) - set(EDITABLE_CARD_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown card fields: {', '.join(sorted(unknown))}")
        if "title" in fields:
            _require_text(fields["title"], "title")
        if "priority" in fields:
            _check_priority(fields["priority"])

        card = self.db.get_card(card_id)
        if not fields:
            return card
        self.db.save_card_version(card, changed_by=changed_by)
        updated = self.db.update_card(card_id, **fields)
        self.bus.publish(CardUpdated(card=updated.to_dict()))
        self.logger.info("card_updated", extra=self.log_extra(card_id=card_id, fields=sorted(fields)))
        return updated

    def delete_card(self, card_id: str, merge_locks: Optional[MergeLockRegistry] = None) -> None:
        """Delete a card; refused while the card owns an unfinished merge."""
        held = merge_locks.repos_owned_by(card_id) if merge_locks is not None else []
        if held:
            raise BadRequestError(
                f"Card {card_id} has a merge in progress in {held[0]}; complete or abort it before deleting",
                metadata={"card_id": card_id, "repos": held},
            )
        self.db.delete_card(card_id)
        self.bus.publish(CardDeleted(card_id=card_id))
        self.logger.info("card_deleted", extra=self.log_extra(card_id=card_id))

    # Versions
    def list_versions(self, card_id: str) -> List[CardVersion]:
        self.db.get_card(card_id)
        return self.db.list_card_versions(card_id)

    def restore_version(self, card_id: str, version_id: str) -> Card:
        """
        Restore the editable fields from a snapshot. The current state is
        snapshotted first, so a restore can itself be undone. Stage is not
        restored; stage changes only happen through moves.
        """
        version = self.db.get_card_version(version_id)
        if version.card_id != card_id:
            raise EntityNotFoundError(f"Card version not found: {version_id}")
        return self.update_card(
            card_id,
            changed_by="restore",
            title=version.title,
            description=version.description,
            priority=version.priority,
            working_directory=version.working_directory,
            linked_documents=version.linked_documents,
        )

    # Subtasks
    def list_subtasks(self, card_id: str) -> List[Subtask]:
        self.db.get_card(card_id)
        return self.db.list_subtasks(card_id)

    def create_subtask(
        self,
        card_id: str,
        title: str,
        *,
        phase: Optional[str] = None,
        phase_order: Optional[int] = None,
        position: Optional[int] = None,
    ) -> Subtask:
        _require_text(title, "title")
        subtask = self.db.create_subtask(
            card_id,
            title,
            phase=phase or "Phase 1",
            phase_order=phase_order if phase_order is not None else 1,
            position=position,
        )
        self.bus.publish(SubtaskCreated(subtask=asdict(subtask)))
        return subtask

    def update_subtask(
        self,
        subtask_id: str,
        *,
        title: Optional[str] = None,
        completed: Optional[bool] = None,
        position: Optional[int] = None,
        phase: Optional[str] = None,
        phase_order: Optional[int] = None,
    ) -> Subtask:
        if title is not None:
            _require_text(title, "title")
        subtask = self.db.update_subtask(
            subtask_id,
            title=title,
            completed=completed,
            position=position,
            phase=phase,
            phase_order=phase_order,
        )
        only_toggled = completed is not None and all(
            v is None for v in (title, position, phase, phase_order)
        )
        event_cls = SubtaskToggled if only_toggled else SubtaskUpdated
        self.bus.publish(event_cls(subtask=asdict(subtask)))
        return subtask

    def delete_subtask(self, subtask_id: str) -> None:
        subtask = self.db.delete_subtask(subtask_id)
        self.bus.publish(SubtaskDeleted(card_id=subtask.card_id, subtask_id=subtask_id))

    # Comments
    def list_comments(self, card_id: str) -> List[Comment]:
        self.db.get_card(card_id)
        return self.db.list_comments(card_id)

    def create_comment(self, card_id: str, content: str, *, author: Optional[str] = None) -> Comment:
        _require_text(content, "content")
        comment = self.db.create_comment(card_id, content, author=author or "user")
        self.bus.publish(CommentCreated(comment=asdict(comment)))
        return comment

    def update_comment(self, comment_id: str, content: str) -> Comment:
        _require_text(content, "content")
        comment = self.db.update_comment(comment_id, content)
        self.bus.publish(CommentUpdated(comment=asdict(comment)))
        return comment

    def delete_comment(self, comment_id: str) -> None:
        comment = self.db.delete_comment(comment_id)
        self.bus.publish(CommentDeleted(card_id=comment.card_id, comment_id=comment_id))

    # Labels
    def list_labels(self) -> List[Label]:
        return self.db.list_labels()

    def list_card_labels(self, card_id: str) -> List[Label]:
        self.db.get_card(card_id)
        return self.db.list_card_labels(card_id)

    def add_label(self, card_id: str, label_id: str) -> bool:
        """Attach a label; attaching twice is a no-op that returns False."""
        added = self.db.add_card_label(card_id, label_id)
        if added:
            self.bus.publish(LabelAdded(card_id=card_id, label_id=label_id))
        return added

    def remove_label(self, card_id: str, label_id: str) -> None:
        if not self.db.remove_card_label(card_id, label_id):
            raise EntityNotFoundError(f"Label {label_id} is not attached to card {card_id}")
        self.bus.publish(LabelRemoved(card_id=card_id, label_id=label_id))

    # Agent logs
    def list_agent_logs(self, card_id: str, limit: int = 500) -> List[AgentLog]:
        self.db.get_card(card_id)
        return self.db.list_agent_logs(card_id, limit=limit)
