"""
Lightup: AI-assisted kanban backend

Cards move through a stage-partitioned board. Entering `todo` dispatches a card to an
OpenCode agent session; the session's event stream drives the card through
in_progress and review, and reviewed work is merged back from a per-card git worktree.
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
