"""
Property-based tests for the card stage machine.
"""

import pytest
from hypothesis import given, strategies as st

from lightup.errors import StageTransitionError
from lightup.models.domain import Stage
from lightup.services.stage import (
    allowed_transitions,
    can_transition,
    is_redispatch,
    parse_stage,
    validate_transition,
)

stage_strategy = st.sampled_from(list(Stage.ALL))

FORWARD = [
    (Stage.BACKLOG, Stage.PLAN),
    (Stage.PLAN, Stage.TODO),
    (Stage.TODO, Stage.IN_PROGRESS),
    (Stage.IN_PROGRESS, Stage.REVIEW),
    (Stage.REVIEW, Stage.DONE),
]


@pytest.mark.parametrize("current,target", FORWARD)
def test_forward_edges_are_allowed(current: str, target: str) -> None:
    assert can_transition(current, target)
    validate_transition(current, target)


def test_review_can_return_to_todo() -> None:
    assert can_transition(Stage.REVIEW, Stage.TODO)
    assert is_redispatch(Stage.REVIEW, Stage.TODO)
    assert not is_redispatch(Stage.PLAN, Stage.TODO)


@given(stage_strategy)
def test_every_stage_can_fall_back_to_backlog(stage: str) -> None:
    assert can_transition(stage, Stage.BACKLOG)


@given(stage_strategy)
def test_staying_in_place_is_allowed(stage: str) -> None:
    assert can_transition(stage, stage)


@given(stage_strategy, stage_strategy)
def test_validate_agrees_with_can_transition(current: str, target: str) -> None:
    if can_transition(current, target):
        validate_transition(current, target)
    else:
        with pytest.raises(StageTransitionError):
            validate_transition(current, target)


@given(stage_strategy, stage_strategy)
def test_allowed_targets_are_exactly_the_legal_ones(current: str, target: str) -> None:
    legal = target == current or target in allowed_transitions(current)
    assert can_transition(current, target) is legal


def test_skipping_stages_is_rejected_with_explicit_message() -> None:
    with pytest.raises(StageTransitionError) as excinfo:
        validate_transition(Stage.BACKLOG, Stage.DONE)
    message = excinfo.value.message
    assert message.startswith("Invalid stage transition: backlog → done.")
    assert "Allowed transitions from backlog: plan, backlog" in message
    assert excinfo.value.status_code == 400


def test_done_only_returns_to_backlog() -> None:
    assert allowed_transitions(Stage.DONE) == (Stage.BACKLOG,)
    assert not can_transition(Stage.DONE, Stage.REVIEW)


def test_unknown_stage_is_rejected() -> None:
    with pytest.raises(StageTransitionError):
        parse_stage("archived")
    with pytest.raises(StageTransitionError):
        can_transition("backlog", "archived")
