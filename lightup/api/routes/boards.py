from typing import List

from fastapi import APIRouter, Depends, Response

from lightup.api import schemas
from lightup.api.dependencies import get_board_service
from lightup.services.boards import BoardService

router = APIRouter()


@router.get("/boards", response_model=List[schemas.BoardOut])
def list_boards(boards: BoardService = Depends(get_board_service)):
    return boards.list_boards()


@router.post("/boards", response_model=schemas.BoardOut, status_code=201)
def create_board(
    request: schemas.BoardCreate,
    boards: BoardService = Depends(get_board_service),
):
    return boards.create_board(request.name)


@router.patch("/boards/{board_id}", response_model=schemas.BoardOut)
def update_board(
    board_id: str,
    request: schemas.BoardUpdate,
    boards: BoardService = Depends(get_board_service),
):
    if request.name is None:
        return boards.get_board(board_id)
    return boards.rename_board(board_id, request.name)


@router.patch("/boards/{board_id}/reorder", response_model=schemas.BoardOut)
def reorder_board(
    board_id: str,
    request: schemas.BoardReorder,
    boards: BoardService = Depends(get_board_service),
):
    return boards.reorder_board(board_id, request.position)


@router.delete("/boards/{board_id}", status_code=204)
def delete_board(
    board_id: str,
    boards: BoardService = Depends(get_board_service),
):
    boards.delete_board(board_id)
    return Response(status_code=204)


@router.get("/boards/{board_id}/settings", response_model=schemas.BoardSettingsOut)
def get_board_settings(
    board_id: str,
    boards: BoardService = Depends(get_board_service),
):
    return boards.get_settings(board_id)


@router.put("/boards/{board_id}/settings", response_model=schemas.BoardSettingsOut)
def update_board_settings(
    board_id: str,
    request: schemas.BoardSettingsUpdate,
    boards: BoardService = Depends(get_board_service),
):
    """Update the fields present in the body; absent fields keep their value."""
    return boards.update_settings(board_id, **request.model_dump(exclude_unset=True))
