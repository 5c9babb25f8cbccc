"""
Lightup Models

Typed domain objects shared by storage, services and the API.
"""

from lightup.models.domain import (
    # Status Constants
    AiStatus,
    NotificationType,
    Priority,
    QuestionType,
    Stage,
    # Core Models
    AgentLog,
    AiQuestion,
    Board,
    BoardSettings,
    Card,
    CardSummary,
    CardVersion,
    Comment,
    Label,
    Notification,
    SessionMapping,
    Setting,
    Subtask,
)

__all__ = [
    "AiStatus",
    "NotificationType",
    "Priority",
    "QuestionType",
    "Stage",
    "AgentLog",
    "AiQuestion",
    "Board",
    "BoardSettings",
    "Card",
    "CardSummary",
    "CardVersion",
    "Comment",
    "Label",
    "Notification",
    "SessionMapping",
    "Setting",
    "Subtask",
]
