from typing import List

from fastapi import APIRouter, Depends, Response

from lightup.api import schemas
from lightup.api.dependencies import get_card_service
from lightup.services.cards import CardService

router = APIRouter()


@router.get("/cards/{card_id}/subtasks", response_model=List[schemas.SubtaskOut])
def list_subtasks(
    card_id: str,
    cards: CardService = Depends(get_card_service),
):
    """Subtasks ordered by phase, then position."""
    return cards.list_subtasks(card_id)


@router.post("/cards/{card_id}/subtasks", response_model=schemas.SubtaskOut, status_code=201)
def create_subtask(
    card_id: str,
    request: schemas.SubtaskCreate,
    cards: CardService = Depends(get_card_service),
):
    return cards.create_subtask(
        card_id,
        request.title,
        phase=request.phase,
        phase_order=request.phase_order,
        position=request.position,
    )


@router.patch("/subtasks/{subtask_id}", response_model=schemas.SubtaskOut)
def update_subtask(
    subtask_id: str,
    request: schemas.SubtaskUpdate,
    cards: CardService = Depends(get_card_service),
):
    return cards.update_subtask(subtask_id, **request.model_dump(exclude_unset=True))


@router.delete("/subtasks/{subtask_id}", status_code=204)
def delete_subtask(
    subtask_id: str,
    cards: CardService = Depends(get_card_service),
):
    cards.delete_subtask(subtask_id)
    return Response(status_code=204)
