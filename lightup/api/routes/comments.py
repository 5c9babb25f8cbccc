from typing import List

from fastapi import APIRouter, Depends, Response

from lightup.api import schemas
from lightup.api.dependencies import get_card_service
from lightup.services.cards import CardService

router = APIRouter()


@router.get("/cards/{card_id}/comments", response_model=List[schemas.CommentOut])
def list_comments(
    card_id: str,
    cards: CardService = Depends(get_card_service),
):
    return cards.list_comments(card_id)


@router.post("/cards/{card_id}/comments", response_model=schemas.CommentOut, status_code=201)
def create_comment(
    card_id: str,
    request: schemas.CommentCreate,
    cards: CardService = Depends(get_card_service),
):
    return cards.create_comment(card_id, request.content, author=request.author)


@router.patch("/comments/{comment_id}", response_model=schemas.CommentOut)
def update_comment(
    comment_id: str,
    request: schemas.CommentUpdate,
    cards: CardService = Depends(get_card_service),
):
    return cards.update_comment(comment_id, request.content)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: str,
    cards: CardService = Depends(get_card_service),
):
    cards.delete_comment(comment_id)
    return Response(status_code=204)
