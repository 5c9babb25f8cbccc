import threading
from typing import Iterator, Optional, Set

from fastapi import Depends, Header, Request

from lightup.config import load_config
from lightup.db.database import Database, get_database
from lightup.engines.opencode import OpenCodeClient, OpenCodeConfig
from lightup.errors import UnauthorizedError
from lightup.services.base import ServiceContext
from lightup.services.boards import BoardService
from lightup.services.cards import CardService
from lightup.services.dispatch import AiDispatchService
from lightup.services.events import EventBroadcaster, get_event_bus
from lightup.services.git_worktree import GitWorktreeService, MergeLockRegistry
from lightup.services.merge import CardMergeService
from lightup.services.notifications import NotificationService
from lightup.services.questions import QuestionService
from lightup.services.workflow import WorkflowController

_initialized_paths: Set[str] = set()
_init_lock = threading.Lock()


def open_database() -> Database:
    """Open the configured database, applying migrations the first time a path is seen."""
    config = load_config()
    db = get_database(config.db_path)
    key = str(config.db_path.resolve())
    if key not in _initialized_paths:
        with _init_lock:
            if key not in _initialized_paths:
                db.init_schema()
                _initialized_paths.add(key)
    return db


def get_db() -> Iterator[Database]:
    """Get database instance."""
    yield open_database()


def token_is_valid(
    expected: Optional[str],
    authorization: Optional[str],
    x_lightup_token: Optional[str],
) -> bool:
    if not expected:
        return True
    if x_lightup_token and x_lightup_token == expected:
        return True
    if authorization:
        parts = authorization.strip().split(None, 1)
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1] == expected:
            return True
    return False


def require_api_token(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    x_lightup_token: Optional[str] = Header(None, alias="X-Lightup-Token"),
) -> None:
    """
    Require an API bearer token if `LIGHTUP_API_TOKEN` is set.

    Accepted headers:
    - `Authorization: Bearer <token>`
    - `X-Lightup-Token: <token>`
    """
    if not token_is_valid(load_config().api_token, authorization, x_lightup_token):
        raise UnauthorizedError("Unauthorized")


def get_service_context(
    x_request_id: Optional[str] = Header(None, alias="X-Request-ID"),
) -> ServiceContext:
    """Get service context."""
    return ServiceContext(config=load_config(), request_id=x_request_id)


def get_bus(request: Request) -> EventBroadcaster:
    bus = getattr(request.app.state, "bus", None)
    return bus if bus is not None else get_event_bus()


def get_merge_locks(request: Request) -> MergeLockRegistry:
    locks = getattr(request.app.state, "merge_locks", None)
    if locks is None:
        locks = MergeLockRegistry()
        request.app.state.merge_locks = locks
    return locks


def get_opencode_client(
    ctx: ServiceContext = Depends(get_service_context),
) -> Iterator[OpenCodeClient]:
    """OpenCode client for the configured runtime URL (LIGHTUP_OPENCODE_URL)."""
    client = OpenCodeClient(OpenCodeConfig.from_config(ctx.config))
    try:
        yield client
    finally:
        client.close()


def get_card_service(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
) -> CardService:
    return CardService(ctx, db, bus)


def get_board_service(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
) -> BoardService:
    return BoardService(ctx, db, bus)


def get_notification_service(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
) -> NotificationService:
    return NotificationService(ctx, db, bus)


def get_question_service(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
) -> QuestionService:
    return QuestionService(ctx, db, bus)


def get_workflow(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
    client: OpenCodeClient = Depends(get_opencode_client),
) -> WorkflowController:
    dispatcher = AiDispatchService(ctx, db, client)
    return WorkflowController(ctx, db, bus, dispatcher)


def get_git_service(
    ctx: ServiceContext = Depends(get_service_context),
    locks: MergeLockRegistry = Depends(get_merge_locks),
) -> GitWorktreeService:
    return GitWorktreeService(ctx, locks)


def get_merge_service(
    ctx: ServiceContext = Depends(get_service_context),
    db: Database = Depends(get_db),
    bus: EventBroadcaster = Depends(get_bus),
    git: GitWorktreeService = Depends(get_git_service),
    workflow: WorkflowController = Depends(get_workflow),
) -> CardMergeService:
    return CardMergeService(ctx, db, bus, git, workflow)
