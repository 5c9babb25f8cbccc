from typing import Optional

from fastapi import APIRouter, Depends

from lightup.api import schemas
from lightup.api.dependencies import get_merge_service
from lightup.services.git_worktree import Resolution
from lightup.services.merge import CardMergeService

router = APIRouter()


@router.post("/cards/{card_id}/worktree", response_model=schemas.WorktreeOut, status_code=201)
def create_worktree(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    """Create `.lightup-workspaces/<card_id>` on a new `ai/...` branch."""
    card = merges.create_worktree(card_id)
    return schemas.WorktreeOut(card_id=card.id, branch_name=card.branch_name, worktree_path=card.worktree_path)


@router.delete("/cards/{card_id}/worktree", response_model=schemas.CardOut)
def remove_worktree(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    return merges.remove_worktree(card_id)


@router.get("/cards/{card_id}/diff", response_model=schemas.DiffOut)
def get_diff(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    return merges.diff(card_id)


@router.post("/cards/{card_id}/merge", response_model=schemas.MergeResultOut)
def merge_card(
    card_id: str,
    request: Optional[schemas.MergeRequest] = None,
    merges: CardMergeService = Depends(get_merge_service),
):
    """
    Merge the card's branch into the default branch.

    With `keep_conflicts` a conflicting merge is left in progress and the
    response carries the conflict detail; otherwise it is aborted.
    """
    return merges.merge(card_id, keep_conflicts=bool(request and request.keep_conflicts))


@router.get("/cards/{card_id}/conflicts", response_model=schemas.ConflictDetailOut)
def get_conflicts(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    return merges.conflicts(card_id)


@router.post("/cards/{card_id}/resolve-conflicts", response_model=schemas.ConflictDetailOut)
def resolve_conflicts(
    card_id: str,
    request: schemas.ResolveRequest,
    merges: CardMergeService = Depends(get_merge_service),
):
    resolutions = [
        Resolution(file_path=r.file_path, choice=r.choice, manual_content=r.manual_content)
        for r in request.resolutions
    ]
    return merges.resolve(card_id, resolutions)


@router.post("/cards/{card_id}/complete-merge", response_model=schemas.CardOut)
def complete_merge(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    return merges.complete_merge(card_id)


@router.post("/cards/{card_id}/abort-merge", response_model=schemas.CardOut)
def abort_merge(
    card_id: str,
    merges: CardMergeService = Depends(get_merge_service),
):
    return merges.abort_merge(card_id)


@router.post("/cards/{card_id}/create-pr", response_model=schemas.PrOut)
def create_pr(
    card_id: str,
    request: Optional[schemas.CreatePrRequest] = None,
    merges: CardMergeService = Depends(get_merge_service),
):
    request = request or schemas.CreatePrRequest()
    return schemas.PrOut(url=merges.create_pr(card_id, request.title, request.body))
