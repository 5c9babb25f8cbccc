from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from lightup import __version__

# =============================================================================
# Base Models
# =============================================================================

class APIModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

class Health(BaseModel):
    status: str = "ok"
    version: str = __version__
    service: str = "lightup"

class ErrorOut(BaseModel):
    error: str
    status: int

# =============================================================================
# Board Models
# =============================================================================

class BoardCreate(BaseModel):
    name: str = Field(min_length=1)

class BoardUpdate(BaseModel):
    name: Optional[str] = None

class BoardReorder(BaseModel):
    position: int

class BoardOut(APIModel):
    id: str
    name: str
    position: int
    created_at: str
    updated_at: str

class BoardSettingsUpdate(BaseModel):
    codebase_path: Optional[str] = None
    context_markdown: Optional[str] = None
    document_links: Optional[List[str]] = None
    variables: Optional[Dict[str, Any]] = None
    tech_stack: Optional[str] = None
    communication_patterns: Optional[str] = None
    environments: Optional[str] = None
    code_conventions: Optional[str] = None
    testing_requirements: Optional[str] = None
    api_conventions: Optional[str] = None
    infrastructure: Optional[str] = None

class BoardSettingsOut(APIModel):
    board_id: str
    codebase_path: Optional[str] = None
    context_markdown: Optional[str] = None
    document_links: List[str] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    tech_stack: Optional[str] = None
    communication_patterns: Optional[str] = None
    environments: Optional[str] = None
    code_conventions: Optional[str] = None
    testing_requirements: Optional[str] = None
    api_conventions: Optional[str] = None
    infrastructure: Optional[str] = None
    updated_at: Optional[str] = None

# =============================================================================
# Card Models
# =============================================================================

class CardCreate(BaseModel):
    title: str
    description: str = ""
    stage: str = "backlog"
    priority: str = "medium"
    working_directory: str = "."
    board_id: str = "default"
    linked_documents: List[str] = Field(default_factory=list)
    ai_agent: Optional[str] = None

class CardUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    working_directory: Optional[str] = None
    linked_documents: Optional[List[str]] = None
    ai_agent: Optional[str] = None
    stage: Optional[str] = None
    position: Optional[int] = None

class CardMove(BaseModel):
    stage: str
    position: Optional[int] = None

class RejectRequest(BaseModel):
    feedback: Optional[str] = None

class CardOut(APIModel):
    id: str
    board_id: str
    title: str
    description: str
    stage: str
    position: int
    priority: str
    working_directory: str
    plan_path: Optional[str] = None
    ai_session_id: Optional[str] = None
    ai_status: str
    ai_progress: Dict[str, Any] = Field(default_factory=dict)
    linked_documents: List[str] = Field(default_factory=list)
    ai_agent: Optional[str] = None
    branch_name: Optional[str] = None
    worktree_path: Optional[str] = None
    created_at: str
    updated_at: str

class CardSummaryOut(APIModel):
    id: str
    board_id: str
    title: str
    description: str
    stage: str
    position: int
    priority: str
    ai_status: str
    ai_agent: Optional[str] = None
    subtask_count: int = 0
    subtask_completed: int = 0
    label_count: int = 0
    comment_count: int = 0
    created_at: str
    updated_at: str

class BoardOverviewOut(BaseModel):
    board_id: Optional[str] = None
    columns: Dict[str, List[CardSummaryOut]]

class CardVersionOut(APIModel):
    id: str
    card_id: str
    title: str
    description: str
    priority: str
    stage: str
    working_directory: str
    linked_documents: List[str] = Field(default_factory=list)
    changed_by: str
    created_at: str

# =============================================================================
# Subtask / Comment / Label Models
# =============================================================================

class SubtaskCreate(BaseModel):
    title: str
    phase: Optional[str] = None
    phase_order: Optional[int] = None
    position: Optional[int] = None

class SubtaskUpdate(BaseModel):
    title: Optional[str] = None
    completed: Optional[bool] = None
    position: Optional[int] = None
    phase: Optional[str] = None
    phase_order: Optional[int] = None

class SubtaskOut(APIModel):
    id: str
    card_id: str
    title: str
    completed: bool
    position: int
    phase: str
    phase_order: int
    created_at: str
    updated_at: str

class CommentCreate(BaseModel):
    content: str
    author: Optional[str] = None

class CommentUpdate(BaseModel):
    content: str

class CommentOut(APIModel):
    id: str
    card_id: str
    author: str
    content: str
    created_at: str
    updated_at: Optional[str] = None

class LabelOut(APIModel):
    id: str
    name: str
    color: str

class CardDetailOut(CardOut):
    subtasks: List[SubtaskOut] = Field(default_factory=list)
    comments: List[CommentOut] = Field(default_factory=list)
    labels: List[LabelOut] = Field(default_factory=list)
    subtask_count: int = 0
    comment_count: int = 0
    label_count: int = 0

# =============================================================================
# Agent Models
# =============================================================================

class AgentLogOut(APIModel):
    id: str
    card_id: str
    session_id: str
    event_type: str
    content: str
    agent: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: str

class QuestionCreate(BaseModel):
    question: str
    question_type: str = "select"
    options: Union[List[Any], str] = "[]"
    multiple: bool = False

class QuestionAsk(QuestionCreate):
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

class QuestionAnswer(BaseModel):
    answer: Any

class QuestionOut(APIModel):
    id: str
    card_id: str
    session_id: str
    question: str
    question_type: str
    options: List[Any] = Field(default_factory=list)
    multiple: bool
    answer: Optional[str] = None
    answered_at: Optional[str] = None
    created_at: str

# =============================================================================
# Notification / Setting Models
# =============================================================================

class NotificationOut(APIModel):
    id: str
    notification_type: str
    title: str
    message: str
    is_read: bool
    user_id: Optional[str] = None
    card_id: Optional[str] = None
    board_id: Optional[str] = None
    created_at: str

class MarkAllReadOut(BaseModel):
    marked_read: int

class SettingUpdate(BaseModel):
    value: str

class SettingOut(APIModel):
    key: str
    value: str
    updated_at: str

# =============================================================================
# Git / Merge Models
# =============================================================================

class WorktreeOut(BaseModel):
    card_id: str
    branch_name: str
    worktree_path: str

class FileDiffOut(APIModel):
    path: str
    status: str
    additions: int = 0
    deletions: int = 0
    diff: str = ""

class DiffStatsOut(APIModel):
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0

class DiffOut(APIModel):
    files: List[FileDiffOut] = Field(default_factory=list)
    stats: DiffStatsOut = Field(default_factory=DiffStatsOut)

class MergeRequest(BaseModel):
    keep_conflicts: bool = False

class ConflictFileOut(APIModel):
    path: str
    conflict_type: str
    is_binary: bool = False
    ours_content: Optional[str] = None
    theirs_content: Optional[str] = None
    base_content: Optional[str] = None

class ConflictDetailOut(APIModel):
    merge_in_progress: bool
    files: List[ConflictFileOut] = Field(default_factory=list)

class MergeResultOut(APIModel):
    success: bool
    message: str
    conflicts: List[str] = Field(default_factory=list)
    conflict_detail: Optional[ConflictDetailOut] = None

class ResolutionIn(BaseModel):
    file_path: str
    choice: str
    manual_content: Optional[str] = None

class ResolveRequest(BaseModel):
    resolutions: List[ResolutionIn] = Field(min_length=1)

class CreatePrRequest(BaseModel):
    title: Optional[str] = None
    body: str = ""

class PrOut(BaseModel):
    url: str
