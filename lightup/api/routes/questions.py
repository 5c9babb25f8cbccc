from typing import List

from fastapi import APIRouter, Depends

from lightup.api import schemas
from lightup.api.dependencies import get_question_service
from lightup.services.questions import QuestionService

router = APIRouter()


@router.get("/cards/{card_id}/questions", response_model=List[schemas.QuestionOut])
def list_questions(
    card_id: str,
    questions: QuestionService = Depends(get_question_service),
):
    return questions.list_questions(card_id)


@router.post("/cards/{card_id}/questions", response_model=schemas.QuestionOut, status_code=201)
def create_question(
    card_id: str,
    request: schemas.QuestionCreate,
    questions: QuestionService = Depends(get_question_service),
):
    return questions.create_question(
        card_id,
        request.question,
        question_type=request.question_type,
        options=request.options,
        multiple=request.multiple,
    )


@router.post("/cards/{card_id}/questions/ask", response_model=schemas.QuestionOut)
def ask_question(
    card_id: str,
    request: schemas.QuestionAsk,
    questions: QuestionService = Depends(get_question_service),
):
    """
    Ask a question and hold the request open until it is answered.

    Fails with 504 when no answer arrives within the timeout
    (`timeout_seconds`, default LIGHTUP_QUESTION_TIMEOUT).
    """
    return questions.ask(
        card_id,
        request.question,
        question_type=request.question_type,
        options=request.options,
        multiple=request.multiple,
        timeout=request.timeout_seconds,
    )


@router.post("/cards/{card_id}/questions/{question_id}/answer", response_model=schemas.QuestionOut)
def answer_question(
    card_id: str,
    question_id: str,
    request: schemas.QuestionAnswer,
    questions: QuestionService = Depends(get_question_service),
):
    return questions.answer_question(card_id, question_id, request.answer)
