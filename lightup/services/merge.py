"""
Lightup Card Merge Service

Runs the git worktree and merge flow for a card against its board's
repository (`codebase_path` in the board settings) and keeps the card's
branch, worktree and stage in step with what happened in git.
"""

from pathlib import Path
from typing import Optional, Sequence

from lightup.db.database import Database
from lightup.errors import StageTransitionError, ValidationError
from lightup.models.domain import Card, Stage
from lightup.services.base import Service, ServiceContext
from lightup.services.boards import BoardService
from lightup.services.events import CardUpdated, EventBroadcaster
from lightup.services.git_worktree import (
    ConflictDetail,
    DiffResult,
    GitWorktreeService,
    MergeResult,
    Resolution,
)
from lightup.services.stage import validate_transition
from lightup.services.workflow import WorkflowController


class CardMergeService(Service):
    """
    Merge flow for cards.

    Example:
        merges = CardMergeService(context, db, bus, git, workflow)
        result = merges.merge(card.id, keep_conflicts=True)
        merges.resolve(card.id, [Resolution("file.txt", "ours")])
        merges.complete_merge(card.id)
    """

    def __init__(
        self,
        context: ServiceContext,
        db: Database,
        bus: EventBroadcaster,
        git: GitWorktreeService,
        workflow: WorkflowController,
    ) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus
        self.git = git
        self.workflow = workflow
        self.boards = BoardService(context, db, bus)

    def _repo(self, card: Card) -> Path:
        return Path(self.boards.codebase_path(card.board_id))

    @staticmethod
    def _require_review(card: Card) -> None:
        """Only cards in review may land on the default branch."""
        if card.stage == Stage.REVIEW:
            return
        validate_transition(card.stage, Stage.DONE)
        raise StageTransitionError(
            f"Card {card.id} is already done",
            metadata={"from_stage": card.stage, "to_stage": Stage.DONE},
        )

    @staticmethod
    def _branch(card: Card) -> str:
        if not card.branch_name:
            raise ValidationError(f"Card {card.id} has no worktree branch")
        return card.branch_name

    # Worktrees
    def create_worktree(self, card_id: str) -> Card:
        card = self.db.get_card(card_id)
        if card.worktree_path and Path(card.worktree_path).exists():
            raise ValidationError(f"Card {card_id} already has a worktree at {card.worktree_path}")
        branch, path = self.git.create_worktree(self._repo(card), card.id, card.title)
        updated = self.db.update_card(card_id, branch_name=branch, worktree_path=str(path))
        self.bus.publish(CardUpdated(card=updated.to_dict()))
        return updated

    def remove_worktree(self, card_id: str) -> Card:
        card = self.db.get_card(card_id)
        if not card.worktree_path:
            raise ValidationError(f"Card {card_id} has no worktree")
        self.git.remove_worktree(self._repo(card), card.worktree_path, card.branch_name)
        updated = self.db.update_card(card_id, branch_name=None, worktree_path=None)
        self.bus.publish(CardUpdated(card=updated.to_dict()))
        return updated

    def diff(self, card_id: str) -> DiffResult:
        card = self.db.get_card(card_id)
        return self.git.diff(self._repo(card), self._branch(card))

    # Merge flow
    def merge(self, card_id: str, *, keep_conflicts: bool = False) -> MergeResult:
        """Merge the card's branch; on success the worktree is removed and the card is done."""
        card = self.db.get_card(card_id)
        self._require_review(card)
        repo = self._repo(card)
        result = self.git.merge(repo, self._branch(card), keep_conflicts=keep_conflicts, card_id=card.id)
        if result.success:
            self._finish(card, repo)
        return result

    def conflicts(self, card_id: str) -> ConflictDetail:
        card = self.db.get_card(card_id)
        return self.git.conflict_details(self._repo(card))

    def resolve(self, card_id: str, resolutions: Sequence[Resolution]) -> ConflictDetail:
        card = self.db.get_card(card_id)
        return self.git.resolve(self._repo(card), resolutions, card_id=card.id)

    def complete_merge(self, card_id: str) -> Card:
        card = self.db.get_card(card_id)
        self._require_review(card)
        repo = self._repo(card)
        self.git.complete_merge(repo, card_id=card.id)
        return self._finish(card, repo)

    def abort_merge(self, card_id: str) -> Card:
        """Abort the in-progress merge; the card keeps its stage."""
        card = self.db.get_card(card_id)
        self.git.abort_merge(self._repo(card), card_id=card.id)
        return card

    def create_pr(self, card_id: str, title: Optional[str] = None, body: str = "") -> str:
        card = self.db.get_card(card_id)
        return self.git.create_pr(self._repo(card), self._branch(card), title or card.title, body or card.description)

    def _finish(self, card: Card, repo: Path) -> Card:
        if card.worktree_path:
            self.git.remove_worktree(repo, card.worktree_path, card.branch_name)
        return self.workflow.mark_merged(card.id)
