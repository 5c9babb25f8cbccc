"""
Lightup Services

Workflow service layer: card CRUD, stage moves, agent dispatch, the event
relay and queue, and the git merge flow.
"""

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lightup.services.base import Service, ServiceContext
    from lightup.services.boards import BoardService
    from lightup.services.cards import CardService
    from lightup.services.dispatch import AiDispatchService
    from lightup.services.events import EventBroadcaster, WorkflowEvent, get_event_bus
    from lightup.services.git_worktree import GitWorktreeService, MergeLockRegistry
    from lightup.services.merge import CardMergeService
    from lightup.services.notifications import NotificationService
    from lightup.services.questions import QuestionService
    from lightup.services.queue_processor import QueueProcessor
    from lightup.services.sse_relay import SseRelay
    from lightup.services.workflow import WorkflowController

__all__ = [
    # Base
    "Service",
    "ServiceContext",
    # Events
    "EventBroadcaster",
    "WorkflowEvent",
    "get_event_bus",
    # Cards
    "BoardService",
    "CardService",
    "WorkflowController",
    "QuestionService",
    "NotificationService",
    # Agent runtime
    "AiDispatchService",
    "QueueProcessor",
    "SseRelay",
    # Git
    "GitWorktreeService",
    "MergeLockRegistry",
    "CardMergeService",
]

_EXPORTS = {
    "Service": "lightup.services.base",
    "ServiceContext": "lightup.services.base",
    "EventBroadcaster": "lightup.services.events",
    "WorkflowEvent": "lightup.services.events",
    "get_event_bus": "lightup.services.events",
    "BoardService": "lightup.services.boards",
    "CardService": "lightup.services.cards",
    "WorkflowController": "lightup.services.workflow",
    "QuestionService": "lightup.services.questions",
    "NotificationService": "lightup.services.notifications",
    "AiDispatchService": "lightup.services.dispatch",
    "QueueProcessor": "lightup.services.queue_processor",
    "SseRelay": "lightup.services.sse_relay",
    "GitWorktreeService": "lightup.services.git_worktree",
    "MergeLockRegistry": "lightup.services.git_worktree",
    "CardMergeService": "lightup.services.merge",
}


def __getattr__(name: str):
    module_path = _EXPORTS.get(name)
    if not module_path:
        raise AttributeError(f"module {__name__} has no attribute {name}")
    module = import_module(module_path)
    return getattr(module, name)
