"""
Lightup Stage Machine

Legal card stage transitions. Pure functions with deterministic error text
so API clients can assert on it.

    backlog -> plan -> todo -> in_progress -> review -> done
                        ^                       |
                        +-----------------------+   (review -> todo re-dispatches)

Any stage may fall back to backlog, and a card may stay in its own stage
(reordering within a column).
"""

from typing import Dict, Tuple

from lightup.errors import StageTransitionError
from lightup.models.domain import Stage

# Listed in the order they appear in error messages.
_ALLOWED: Dict[str, Tuple[str, ...]] = {
    Stage.BACKLOG: (Stage.PLAN, Stage.BACKLOG),
    Stage.PLAN: (Stage.TODO, Stage.BACKLOG),
    Stage.TODO: (Stage.IN_PROGRESS, Stage.BACKLOG),
    Stage.IN_PROGRESS: (Stage.REVIEW, Stage.BACKLOG),
    Stage.REVIEW: (Stage.DONE, Stage.TODO, Stage.BACKLOG),
    Stage.DONE: (Stage.BACKLOG,),
}


def parse_stage(value: str) -> str:
    """Return the canonical stage name or raise StageTransitionError."""
    if value not in Stage.ALL:
        raise StageTransitionError(f"Invalid stage: {value}")
    return value


def allowed_transitions(stage: str) -> Tuple[str, ...]:
    return _ALLOWED[parse_stage(stage)]


def can_transition(current: str, target: str) -> bool:
    current = parse_stage(current)
    target = parse_stage(target)
    return current == target or target in _ALLOWED[current]


def validate_transition(current: str, target: str) -> None:
    """Raise StageTransitionError unless current -> target is a legal edge."""
    if can_transition(current, target):
        return
    raise StageTransitionError(
        f"Invalid stage transition: {current} → {target}. "
        f"Allowed transitions from {current}: {', '.join(_ALLOWED[current])}",
        metadata={"from_stage": current, "to_stage": target},
    )


def is_redispatch(current: str, target: str) -> bool:
    """review -> todo sends the card back to the agent with review feedback."""
    return current == Stage.REVIEW and target == Stage.TODO
