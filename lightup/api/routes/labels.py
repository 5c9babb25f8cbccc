from typing import List

from fastapi import APIRouter, Depends, Response

from lightup.api import schemas
from lightup.api.dependencies import get_card_service
from lightup.services.cards import CardService

router = APIRouter()


@router.get("/labels", response_model=List[schemas.LabelOut])
def list_labels(cards: CardService = Depends(get_card_service)):
    return cards.list_labels()


@router.get("/cards/{card_id}/labels", response_model=List[schemas.LabelOut])
def list_card_labels(
    card_id: str,
    cards: CardService = Depends(get_card_service),
):
    return cards.list_card_labels(card_id)


@router.post("/cards/{card_id}/labels/{label_id}", response_model=List[schemas.LabelOut], status_code=201)
def add_label(
    card_id: str,
    label_id: str,
    cards: CardService = Depends(get_card_service),
):
    """Attach a label. Attaching one that is already present is a no-op."""
    cards.add_label(card_id, label_id)
    return cards.list_card_labels(card_id)


@router.delete("/cards/{card_id}/labels/{label_id}", status_code=204)
def remove_label(
    card_id: str,
    label_id: str,
    cards: CardService = Depends(get_card_service),
):
    cards.remove_label(card_id, label_id)
    return Response(status_code=204)
