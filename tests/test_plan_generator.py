from pathlib import Path

from hypothesis import given, strategies as st

from lightup.models.domain import Card, Comment, Subtask
from lightup.services.plan_generator import (
    agent_profile,
    append_review_feedback,
    generate_plan_markdown,
    plan_path_for,
    render_review_feedback,
    slugify,
    write_plan,
)


def _card(**overrides) -> Card:
    values = dict(
        id="card-1",
        board_id="default",
        title="Add login page",
        description="Users need to sign in",
        stage="todo",
        position=1000,
        priority="high",
        working_directory="/tmp/work",
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
        linked_documents=["docs/auth.md"],
    )
    values.update(overrides)
    return Card(**values)


def _subtask(index: int, title: str) -> Subtask:
    return Subtask(
        id=f"sub-{index}",
        card_id="card-1",
        title=title,
        completed=False,
        position=index * 1000,
        phase="Phase 1",
        phase_order=1,
        created_at="2024-01-01T00:00:00+00:00",
        updated_at="2024-01-01T00:00:00+00:00",
    )


def test_slugify_collapses_punctuation() -> None:
    assert slugify("Fix: the   Login Bug!") == "fix-the-login-bug"
    assert slugify("---") == ""


@given(st.text())
def test_slug_only_contains_safe_characters(text: str) -> None:
    slug = slugify(text)
    assert all(c.isdigit() or ("a" <= c <= "z") or c == "-" for c in slug)
    assert not slug.startswith("-") and not slug.endswith("-")
    assert "--" not in slug


def test_agent_profile_keyword_routing() -> None:
    assert agent_profile("Build the UI component").category == "visual-engineering"
    assert agent_profile("Rework architecture").category == "ultrabrain"
    assert agent_profile("Fix typo in README").category == "quick"
    assert agent_profile("Write docs").category == "unspecified-high"


def test_plan_markdown_structure() -> None:
    card = _card()
    markdown = generate_plan_markdown(card, [_subtask(1, "Create form component"), _subtask(2, "Fix redirect")])

    assert markdown.startswith("# Add login page\n\n## TL;DR\n> Users need to sign in\n")
    assert "> Deliverables: 2 subtasks to complete" in markdown
    assert "- Priority: high" in markdown
    assert "- `docs/auth.md`" in markdown
    assert "- [ ] 1. Create form component" in markdown
    assert "- [ ] 2. Fix redirect" in markdown
    assert "  - Category: `visual-engineering`" in markdown
    assert "  - Message: `quick(add-login-page): Fix redirect`" in markdown


def test_plan_markdown_is_deterministic() -> None:
    card = _card()
    subtasks = [_subtask(1, "One"), _subtask(2, "Two")]
    assert generate_plan_markdown(card, subtasks) == generate_plan_markdown(card, list(subtasks))


def test_plan_without_documents_or_subtasks() -> None:
    markdown = generate_plan_markdown(_card(linked_documents=[]), [])
    assert "### Referenced Documents\n- None\n" in markdown
    assert "> Deliverables: 0 subtasks to complete" in markdown


def test_write_plan_creates_parent_directories(tmp_path: Path) -> None:
    card = _card(working_directory=str(tmp_path))
    path = write_plan(card, [_subtask(1, "One")])

    assert path == tmp_path / ".sisyphus" / "plans" / "add-login-page.md"
    assert path == plan_path_for(card)
    assert path.read_text(encoding="utf-8") == generate_plan_markdown(card, [_subtask(1, "One")])


def test_review_feedback_is_appended(tmp_path: Path) -> None:
    plan = tmp_path / "plan.md"
    plan.write_text("# Plan")
    comments = [
        Comment(id="c1", card_id="card-1", content="Tighten validation", author="alice", created_at="t1"),
        Comment(id="c2", card_id="card-1", content="Add tests", author="bob", created_at="t2"),
    ]

    append_review_feedback(plan, comments)

    text = plan.read_text(encoding="utf-8")
    assert text.startswith("# Plan\n")
    assert text.endswith(render_review_feedback(comments))
    assert "- **alice**: Tighten validation\n- **bob**: Add tests\n" in text
