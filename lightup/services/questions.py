"""
Lightup Question Service

Questions the agent asks the card's user. The question type decides the
answer shape: text answers are strings, select and multi_select answers
are arrays of chosen options (stored as JSON).
"""

import json
import time
from typing import Any, Callable, List, Optional, Union

from lightup.db.database import Database
from lightup.errors import EntityNotFoundError, QuestionTimeoutError, ValidationError
from lightup.models.domain import AiQuestion, AiStatus, NotificationType, QuestionType
from lightup.services.base import Service, ServiceContext
from lightup.services.events import EventBroadcaster, QuestionAnswered, QuestionCreated, status_event
from lightup.services.notifications import NotificationService


def parse_options(options: Union[str, List[Any], None]) -> List[Any]:
    if options is None:
        return []
    if isinstance(options, list):
        return options
    try:
        parsed = json.loads(options)
    except ValueError as exc:
        raise ValidationError("options must be a JSON array") from exc
    if not isinstance(parsed, list):
        raise ValidationError("options must be a JSON array")
    return parsed


class QuestionService(Service):
    def __init__(
        self,
        context: ServiceContext,
        db: Database,
        bus: EventBroadcaster,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus
        self.notifications = notifications or NotificationService(context, db, bus)

    def list_questions(self, card_id: str) -> List[AiQuestion]:
        self.db.get_card(card_id)
        return self.db.list_questions(card_id)

    def create_question(
        self,
        card_id: str,
        question: str,
        *,
        question_type: str = QuestionType.SELECT,
        options: Union[str, List[Any], None] = "[]",
        multiple: bool = False,
    ) -> AiQuestion:
        if question_type not in QuestionType.ALL:
            raise ValidationError("question_type must be one of: select, multi_select, text")
        if not question or not question.strip():
            raise ValidationError("question must not be empty")
        parsed_options = parse_options(options)

        card = self.db.get_card(card_id)
        if not card.ai_session_id:
            raise ValidationError("Card has no active AI session for asking questions")

        created = self.db.create_question(
            card_id=card_id,
            session_id=card.ai_session_id,
            question=question,
            question_type=question_type,
            options=parsed_options,
            multiple=multiple or question_type == QuestionType.MULTI_SELECT,
        )
        updated = self.db.update_card(card_id, ai_status=AiStatus.WAITING_INPUT)
        self.bus.publish(QuestionCreated(card_id=card_id, question=created.to_dict()))
        self.bus.publish(status_event(updated))
        self.notifications.notify(
            NotificationType.QUESTION_ASKED,
            f"Question from AI: {card.title}",
            question,
            card_id=card_id,
            board_id=card.board_id,
        )
        self.logger.info(
            "question_created",
            extra=self.log_extra(card_id=card_id, session_id=card.ai_session_id, question_type=question_type),
        )
        return created

    def answer_question(self, card_id: str, question_id: str, answer: Any) -> AiQuestion:
        question = self.db.get_question(question_id)
        if question.card_id != card_id:
            raise EntityNotFoundError(f"Question not found: {question_id}")
        if question.is_answered:
            raise ValidationError("Question has already been answered")

        if question.question_type == QuestionType.TEXT:
            if not isinstance(answer, str):
                raise ValidationError("Text questions require a string answer")
            stored = answer
        else:
            if not isinstance(answer, list):
                raise ValidationError(f"{question.question_type} questions require an array answer")
            stored = json.dumps(answer)

        answered = self.db.answer_question(question_id, stored)
        updated = self.db.update_card(card_id, ai_status=AiStatus.WORKING)
        self.bus.publish(QuestionAnswered(card_id=card_id, question=answered.to_dict()))
        self.bus.publish(status_event(updated))
        self.logger.info("question_answered", extra=self.log_extra(card_id=card_id, question_id=question_id))
        return answered

    def ask(
        self,
        card_id: str,
        question: str,
        *,
        question_type: str = QuestionType.SELECT,
        options: Union[str, List[Any], None] = "[]",
        multiple: bool = False,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> AiQuestion:
        """Create a question and block until it is answered or the timeout passes."""
        timeout = self.config.question_timeout_seconds if timeout is None else timeout
        poll_interval = self.config.question_poll_interval_seconds if poll_interval is None else poll_interval
        created = self.create_question(
            card_id,
            question,
            question_type=question_type,
            options=options,
            multiple=multiple,
        )
        deadline = clock() + timeout
        while True:
            current = self.db.get_question(created.id)
            if current.is_answered:
                return current
            if clock() >= deadline:
                self.logger.warning(
                    "question_timed_out",
                    extra=self.log_extra(card_id=card_id, question_id=created.id, timeout=timeout),
                )
                raise QuestionTimeoutError(
                    f"Question {created.id} was not answered within {int(timeout)} seconds",
                    metadata={"question_id": created.id},
                )
            sleep(poll_interval)
