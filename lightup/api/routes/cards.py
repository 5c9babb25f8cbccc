from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from lightup.api import schemas
from lightup.api.dependencies import get_card_service, get_merge_locks, get_workflow
from lightup.services.cards import CardService
from lightup.services.git_worktree import MergeLockRegistry
from lightup.services.workflow import WorkflowController

router = APIRouter()


@router.get("/board", response_model=schemas.BoardOverviewOut)
def get_board(
    board_id: Optional[str] = Query(None),
    cards: CardService = Depends(get_card_service),
):
    """Cards grouped by stage, each with subtask/label/comment counts."""
    return schemas.BoardOverviewOut(board_id=board_id, columns=cards.board_overview(board_id))


@router.post("/cards", response_model=schemas.CardOut, status_code=201)
def create_card(
    request: schemas.CardCreate,
    cards: CardService = Depends(get_card_service),
):
    return cards.create_card(**request.model_dump())


@router.get("/cards", response_model=List[schemas.CardOut])
def list_cards(
    board_id: Optional[str] = Query(None),
    cards: CardService = Depends(get_card_service),
):
    return cards.list_cards(board_id)


@router.get("/cards/{card_id}", response_model=schemas.CardDetailOut)
def get_card(
    card_id: str,
    cards: CardService = Depends(get_card_service),
):
    """Card with its subtasks, comments and labels."""
    card = cards.get_card(card_id)
    subtasks = cards.list_subtasks(card_id)
    comments = cards.list_comments(card_id)
    labels = cards.list_card_labels(card_id)
    detail = schemas.CardOut.model_validate(card).model_dump()
    return schemas.CardDetailOut(
        **detail,
        subtasks=[schemas.SubtaskOut.model_validate(s) for s in subtasks],
        comments=[schemas.CommentOut.model_validate(c) for c in comments],
        labels=[schemas.LabelOut.model_validate(lbl) for lbl in labels],
        subtask_count=len(subtasks),
        comment_count=len(comments),
        label_count=len(labels),
    )


@router.patch("/cards/{card_id}", response_model=schemas.CardOut)
def update_card(
    card_id: str,
    request: schemas.CardUpdate,
    workflow: WorkflowController = Depends(get_workflow),
):
    """Edit card fields; a stage change is validated and runs as a move."""
    fields = request.model_dump(exclude_unset=True)
    stage = fields.pop("stage", None)
    position = fields.pop("position", None)
    return workflow.update_card(card_id, stage=stage, position=position, **fields)


@router.delete("/cards/{card_id}", status_code=204)
def delete_card(
    card_id: str,
    cards: CardService = Depends(get_card_service),
    merge_locks: MergeLockRegistry = Depends(get_merge_locks),
):
    cards.delete_card(card_id, merge_locks)
    return Response(status_code=204)


@router.patch("/cards/{card_id}/move", response_model=schemas.CardOut)
@router.post("/cards/{card_id}/move", response_model=schemas.CardOut)
def move_card(
    card_id: str,
    request: schemas.CardMove,
    workflow: WorkflowController = Depends(get_workflow),
):
    return workflow.move(card_id, request.stage, request.position)


# Versions

@router.get("/cards/{card_id}/versions", response_model=List[schemas.CardVersionOut])
def list_versions(
    card_id: str,
    cards: CardService = Depends(get_card_service),
):
    return cards.list_versions(card_id)


@router.post("/cards/{card_id}/versions/{version_id}/restore", response_model=schemas.CardOut)
def restore_version(
    card_id: str,
    version_id: str,
    cards: CardService = Depends(get_card_service),
):
    return cards.restore_version(card_id, version_id)


# Agent actions

@router.post("/cards/{card_id}/generate-plan", response_model=schemas.CardOut)
def generate_plan(
    card_id: str,
    workflow: WorkflowController = Depends(get_workflow),
):
    """Write the card's plan file without dispatching it."""
    return workflow.generate_plan(card_id)


@router.post("/cards/{card_id}/stop-ai", response_model=schemas.CardOut)
def stop_ai(
    card_id: str,
    workflow: WorkflowController = Depends(get_workflow),
):
    return workflow.stop_ai(card_id)


@router.post("/cards/{card_id}/resume-ai", response_model=schemas.CardOut)
def resume_ai(
    card_id: str,
    workflow: WorkflowController = Depends(get_workflow),
):
    return workflow.resume_ai(card_id)


@router.post("/cards/{card_id}/reject", response_model=schemas.CardOut)
def reject_card(
    card_id: str,
    request: Optional[schemas.RejectRequest] = None,
    workflow: WorkflowController = Depends(get_workflow),
):
    """Send a reviewed card back to todo; the feedback is added as a comment."""
    return workflow.reject(card_id, request.feedback if request else None)


@router.get("/cards/{card_id}/logs", response_model=List[schemas.AgentLogOut])
def list_agent_logs(
    card_id: str,
    limit: int = Query(500, ge=1, le=5000),
    cards: CardService = Depends(get_card_service),
):
    return cards.list_agent_logs(card_id, limit=limit)
