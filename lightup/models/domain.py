"""
Lightup Domain Models

Data classes representing the core kanban entities.
These are used for data transfer between storage, services and the API.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


# Status Constants

class Stage:
    """Card workflow stages, in board order."""
    BACKLOG = "backlog"
    PLAN = "plan"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    DONE = "done"

    ALL = (BACKLOG, PLAN, TODO, IN_PROGRESS, REVIEW, DONE)


class AiStatus:
    """Card ai_status values."""
    IDLE = "idle"
    QUEUED = "queued"
    PLANNING = "planning"
    DISPATCHED = "dispatched"
    WORKING = "working"
    WAITING_INPUT = "waiting_input"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = (IDLE, QUEUED, PLANNING, DISPATCHED, WORKING, WAITING_INPUT, COMPLETED, FAILED)
    ACTIVE = (DISPATCHED, WORKING)


class QuestionType:
    """Agent question kinds; the kind decides the answer shape."""
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    TEXT = "text"

    ALL = (SELECT, MULTI_SELECT, TEXT)


class Priority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class NotificationType:
    REVIEW_REQUESTED = "review_requested"
    CARD_STAGE_CHANGED = "card_stage_changed"
    AI_FAILED = "ai_failed"
    QUESTION_ASKED = "question_asked"


# Core Domain Models

@dataclass
class Board:
    id: str
    name: str
    position: int
    created_at: str
    updated_at: str


@dataclass
class Card:
    """A unit of work flowing through the board."""
    id: str
    board_id: str
    title: str
    description: str
    stage: str
    position: int
    priority: str
    working_directory: str
    created_at: str
    updated_at: str
    plan_path: Optional[str] = None
    ai_session_id: Optional[str] = None
    ai_status: str = AiStatus.IDLE
    ai_progress: Dict[str, Any] = field(default_factory=dict)
    linked_documents: List[str] = field(default_factory=list)
    ai_agent: Optional[str] = None
    branch_name: Optional[str] = None
    worktree_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CardSummary:
    """Board-overview projection of a card with child counts."""
    id: str
    board_id: str
    title: str
    description: str
    stage: str
    position: int
    priority: str
    ai_status: str
    created_at: str
    updated_at: str
    ai_agent: Optional[str] = None
    subtask_count: int = 0
    subtask_completed: int = 0
    label_count: int = 0
    comment_count: int = 0


@dataclass
class Subtask:
    id: str
    card_id: str
    title: str
    completed: bool
    position: int
    phase: str
    phase_order: int
    created_at: str
    updated_at: str


@dataclass
class Comment:
    id: str
    card_id: str
    author: str
    content: str
    created_at: str
    updated_at: Optional[str] = None


@dataclass
class Label:
    id: str
    name: str
    color: str


@dataclass
class AgentLog:
    """One persisted agent runtime event for a card. Append-only."""
    id: str
    card_id: str
    session_id: str
    event_type: str
    content: str
    created_at: str
    agent: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AiQuestion:
    """
    A question raised by the agent for the card's user.

    `answer` holds the raw text for text questions and a JSON-encoded array for
    select/multi_select questions.
    """
    id: str
    card_id: str
    session_id: str
    question: str
    question_type: str
    options: List[Any]
    multiple: bool
    created_at: str
    answer: Optional[str] = None
    answered_at: Optional[str] = None

    @property
    def is_answered(self) -> bool:
        return self.answered_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CardVersion:
    """Snapshot of the user-editable card fields taken before an update."""
    id: str
    card_id: str
    title: str
    description: str
    priority: str
    stage: str
    working_directory: str
    linked_documents: List[str]
    changed_by: str
    created_at: str


@dataclass
class SessionMapping:
    """Routes a child agent session (sub-agent) back to the card that owns its parent."""
    child_session_id: str
    card_id: str
    parent_session_id: str
    created_at: str
    agent_type: Optional[str] = None
    description: Optional[str] = None


@dataclass
class Notification:
    id: str
    notification_type: str
    title: str
    message: str
    is_read: bool
    created_at: str
    user_id: Optional[str] = None
    card_id: Optional[str] = None
    board_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Setting:
    key: str
    value: str
    updated_at: str


@dataclass
class BoardSettings:
    """Per-board metadata consulted when preparing agent context."""
    board_id: str
    codebase_path: Optional[str] = None
    context_markdown: Optional[str] = None
    document_links: List[str] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    tech_stack: Optional[str] = None
    communication_patterns: Optional[str] = None
    environments: Optional[str] = None
    code_conventions: Optional[str] = None
    testing_requirements: Optional[str] = None
    api_conventions: Optional[str] = None
    infrastructure: Optional[str] = None
    updated_at: Optional[str] = None
