"""
Lightup Plan Generator

Renders a card and its subtasks into the markdown work plan the agent reads
before starting a session, and writes it under the card's working directory.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from lightup.logging import get_logger, log_extra
from lightup.models.domain import Card, Comment, Subtask

logger = get_logger(__name__)

PLANS_DIR = Path(".sisyphus") / "plans"

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class AgentProfile:
    category: str
    skills: Tuple[str, ...] = ()


# Keyword groups are checked in order; the first match wins.
_PROFILE_RULES: Tuple[Tuple[Tuple[str, ...], AgentProfile], ...] = (
    (
        ("ui", "frontend", "component", "page", "style", "design"),
        AgentProfile("visual-engineering", ("frontend-ui-ux", "playwright")),
    ),
    (
        ("complex", "algorithm", "architecture", "optimization"),
        AgentProfile("ultrabrain"),
    ),
    (
        ("bug", "fix", "typo", "rename"),
        AgentProfile("quick"),
    ),
)
_DEFAULT_PROFILE = AgentProfile("unspecified-high")


def slugify(text: str) -> str:
    """Lowercase, keep alphanumerics, collapse everything else into single dashes."""
    return _SLUG_STRIP.sub("-", text.lower()).strip("-")


def agent_profile(title: str) -> AgentProfile:
    lowered = title.lower()
    for keywords, profile in _PROFILE_RULES:
        if any(keyword in lowered for keyword in keywords):
            return profile
    return _DEFAULT_PROFILE


def _format_skills(skills: Sequence[str]) -> str:
    if not skills:
        return "[]"
    return "[" + ", ".join(f"`{s}`" for s in skills) + "]"


def _format_references(documents: Sequence[str]) -> str:
    if not documents:
        return "None"
    return ", ".join(f"`{d}`" for d in documents)


def generate_plan_markdown(card: Card, subtasks: Sequence[Subtask]) -> str:
    """Render the work plan. Output is byte-identical for equal inputs."""
    slug = slugify(card.title) or "plan"
    parts: List[str] = [
        f"# {card.title}\n\n",
        "## TL;DR\n",
        f"> {card.description}\n",
        f"> Deliverables: {len(subtasks)} subtasks to complete\n\n",
        "## Context\n",
        "### Card Details\n",
        f"- Priority: {card.priority}\n",
        f"- Stage: {card.stage} (dispatched from todo)\n",
        f"- Working Directory: {card.working_directory}\n\n",
        "### Referenced Documents\n",
    ]
    if card.linked_documents:
        parts.extend(f"- `{doc}`\n" for doc in card.linked_documents)
        parts.append("\n")
    else:
        parts.append("- None\n\n")

    parts.append("## TODOs\n\n")
    references = _format_references(card.linked_documents)
    for index, subtask in enumerate(subtasks, start=1):
        profile = agent_profile(subtask.title)
        parts.extend(
            [
                f"- [ ] {index}. {subtask.title}\n",
                f"  **What to do**: {subtask.title}\n",
                "  **Recommended Agent Profile**:\n",
                f"  - Category: `{profile.category}`\n",
                f"  - Skills: {_format_skills(profile.skills)}\n",
                f"  **References**: {references}\n",
                "  **Acceptance Criteria**:\n",
                f"  - [ ] {subtask.title} completed successfully\n",
                "  - [ ] Changes verified and tested\n",
                "  **Commit**: YES\n",
                f"  - Message: `{profile.category}({slug}): {subtask.title}`\n\n",
            ]
        )
    return "".join(parts)


def plan_path_for(card: Card) -> Path:
    return Path(card.working_directory) / PLANS_DIR / f"{slugify(card.title) or 'plan'}.md"


def write_plan(card: Card, subtasks: Sequence[Subtask]) -> Path:
    """Write the plan file (creating parent directories) and return its path."""
    path = plan_path_for(card)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_plan_markdown(card, subtasks), encoding="utf-8")
    logger.info(
        "plan_written",
        extra=log_extra(card_id=card.id, plan_path=str(path), subtasks=len(subtasks)),
    )
    return path


def render_review_feedback(comments: Sequence[Comment]) -> str:
    lines = ["\n## Review Feedback\n\n"]
    if not comments:
        lines.append("- Changes were requested during review.\n")
    for comment in comments:
        lines.append(f"- **{comment.author}**: {comment.content}\n")
    return "".join(lines)


def append_review_feedback(plan_path: Path, comments: Sequence[Comment]) -> Path:
    """Append a Review Feedback block to an existing plan file."""
    path = Path(plan_path)
    existing = path.read_text(encoding="utf-8")
    if not existing.endswith("\n"):
        existing += "\n"
    path.write_text(existing + render_review_feedback(comments), encoding="utf-8")
    return path
