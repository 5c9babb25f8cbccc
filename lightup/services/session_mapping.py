"""
Lightup Session Mapping

Sub-agents run in child sessions of the card's primary session. Registering
each child lets the relay route child-session events to the owning card.
"""

import re
from typing import Any, Dict, Optional

from lightup.db.database import Database
from lightup.errors import EntityNotFoundError
from lightup.logging import get_logger, log_extra
from lightup.models.domain import SessionMapping

logger = get_logger(__name__)

_AGENT_MENTION = re.compile(r"@([A-Za-z0-9][\w-]*)")


def agent_from_title(title: Optional[str]) -> Optional[str]:
    """Child session titles look like "Explore codebase (@explore subagent)"."""
    if not title:
        return None
    match = _AGENT_MENTION.search(title)
    return match.group(1) if match else None


def register_child_session(db: Database, info: Dict[str, Any]) -> Optional[SessionMapping]:
    """
    Map `info.id` to the card owning `info.parentID`.

    Returns None when the session has no parent or the parent belongs to no card.
    """
    child_id = info.get("id")
    parent_id = info.get("parentID")
    if not child_id or not parent_id:
        return None
    card = db.find_card_by_session(parent_id)
    if card is None:
        return None
    title = info.get("title")
    mapping = db.insert_session_mapping(
        child_session_id=child_id,
        card_id=card.id,
        parent_session_id=parent_id,
        agent_type=info.get("agent") or agent_from_title(title),
        description=title,
    )
    logger.info(
        "child_session_registered",
        extra=log_extra(card_id=card.id, session_id=child_id, parent_session_id=parent_id),
    )
    return mapping


def agent_for_session(db: Database, session_id: str) -> Optional[str]:
    try:
        return db.get_session_mapping(session_id).agent_type
    except EntityNotFoundError:
        return None
