"""
Lightup Database Service

SQLite persistence for boards, cards and everything hanging off a card.
Single-writer embedded store; every connection enables foreign keys so parent
deletes cascade, and the schema runs in WAL journal mode.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from lightup.errors import EntityNotFoundError
from lightup.logging import get_logger
from lightup.models.domain import (
    AgentLog,
    AiQuestion,
    AiStatus,
    Board,
    BoardSettings,
    Card,
    CardSummary,
    CardVersion,
    Comment,
    Label,
    Notification,
    SessionMapping,
    Setting,
    Stage,
    Subtask,
)

logger = get_logger(__name__)

POSITION_STEP = 1000
MAX_CARD_VERSIONS = 50

_CARD_COLUMNS = {
    "board_id",
    "title",
    "description",
    "stage",
    "position",
    "priority",
    "working_directory",
    "plan_path",
    "ai_session_id",
    "ai_status",
    "ai_progress",
    "linked_documents",
    "ai_agent",
    "branch_name",
    "worktree_path",
}
_JSON_CARD_COLUMNS = {"ai_progress", "linked_documents"}

_BOARD_SETTINGS_COLUMNS = (
    "codebase_path",
    "context_markdown",
    "document_links",
    "variables",
    "tech_stack",
    "communication_patterns",
    "environments",
    "code_conventions",
    "testing_requirements",
    "api_conventions",
    "infrastructure",
)
_JSON_BOARD_SETTINGS_COLUMNS = {"document_links", "variables"}


def utc_now() -> str:
    """Current time as an ISO-8601 UTC string (the storage format for all timestamps)."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    return str(uuid.uuid4())


class SQLiteDatabase:
    """
    SQLite-backed persistence for Lightup state.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, tuple(params)).fetchone()
        finally:
            conn.close()

    def _fetchall(self, query: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, tuple(params)).fetchall()
        finally:
            conn.close()

    def init_schema(self) -> None:
        """Apply pending embedded migrations. Safe to run on every startup."""
        from lightup.db.schema import MIGRATIONS_SQLITE, SCHEMA_MIGRATIONS_TABLE

        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(SCHEMA_MIGRATIONS_TABLE)
            applied = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}
            for version, sql in MIGRATIONS_SQLITE:
                if version in applied:
                    continue
                conn.executescript(sql)
                conn.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, utc_now()),
                )
                conn.commit()
                logger.info("migration_applied", extra={"version": version, "db_path": str(self.db_path)})
        finally:
            conn.close()

    # Helper methods for JSON and timestamp parsing
    @staticmethod
    def _parse_json(value: Any) -> Optional[Union[dict, list]]:
        if value is None:
            return None
        if isinstance(value, (dict, list)):
            return value
        try:
            return json.loads(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _dump_json(value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value)

    # Row to model converters
    def _row_to_board(self, row: sqlite3.Row) -> Board:
        return Board(
            id=row["id"],
            name=row["name"],
            position=row["position"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_card(self, row: sqlite3.Row) -> Card:
        progress = self._parse_json(row["ai_progress"])
        documents = self._parse_json(row["linked_documents"])
        return Card(
            id=row["id"],
            board_id=row["board_id"],
            title=row["title"],
            description=row["description"],
            stage=row["stage"],
            position=row["position"],
            priority=row["priority"],
            working_directory=row["working_directory"],
            plan_path=row["plan_path"],
            ai_session_id=row["ai_session_id"],
            ai_status=row["ai_status"],
            ai_progress=progress if isinstance(progress, dict) else {},
            linked_documents=documents if isinstance(documents, list) else [],
            ai_agent=row["ai_agent"],
            branch_name=row["branch_name"],
            worktree_path=row["worktree_path"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_subtask(self, row: sqlite3.Row) -> Subtask:
        return Subtask(
            id=row["id"],
            card_id=row["card_id"],
            title=row["title"],
            completed=bool(row["completed"]),
            position=row["position"],
            phase=row["phase"],
            phase_order=row["phase_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_comment(self, row: sqlite3.Row) -> Comment:
        return Comment(
            id=row["id"],
            card_id=row["card_id"],
            author=row["author"],
            content=row["content"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_agent_log(self, row: sqlite3.Row) -> AgentLog:
        return AgentLog(
            id=row["id"],
            card_id=row["card_id"],
            session_id=row["session_id"],
            event_type=row["event_type"],
            agent=row["agent"],
            content=row["content"],
            metadata=self._parse_json(row["metadata"]),
            created_at=row["created_at"],
        )

    def _row_to_question(self, row: sqlite3.Row) -> AiQuestion:
        options = self._parse_json(row["options"])
        return AiQuestion(
            id=row["id"],
            card_id=row["card_id"],
            session_id=row["session_id"],
            question=row["question"],
            question_type=row["question_type"],
            options=options if isinstance(options, list) else [],
            multiple=bool(row["multiple"]),
            answer=row["answer"],
            answered_at=row["answered_at"],
            created_at=row["created_at"],
        )

    def _row_to_version(self, row: sqlite3.Row) -> CardVersion:
        documents = self._parse_json(row["linked_documents"])
        return CardVersion(
            id=row["id"],
            card_id=row["card_id"],
            title=row["title"],
            description=row["description"],
            priority=row["priority"],
            stage=row["stage"],
            working_directory=row["working_directory"],
            linked_documents=documents if isinstance(documents, list) else [],
            changed_by=row["changed_by"],
            created_at=row["created_at"],
        )

    def _row_to_notification(self, row: sqlite3.Row) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            notification_type=row["notification_type"],
            title=row["title"],
            message=row["message"],
            card_id=row["card_id"],
            board_id=row["board_id"],
            is_read=bool(row["is_read"]),
            created_at=row["created_at"],
        )

    def _row_to_session_mapping(self, row: sqlite3.Row) -> SessionMapping:
        return SessionMapping(
            child_session_id=row["child_session_id"],
            card_id=row["card_id"],
            parent_session_id=row["parent_session_id"],
            agent_type=row["agent_type"],
            description=row["description"],
            created_at=row["created_at"],
        )

    def _row_to_board_settings(self, row: sqlite3.Row) -> BoardSettings:
        links = self._parse_json(row["document_links"])
        variables = self._parse_json(row["variables"])
        return BoardSettings(
            board_id=row["board_id"],
            codebase_path=row["codebase_path"],
            context_markdown=row["context_markdown"],
            document_links=links if isinstance(links, list) else [],
            variables=variables if isinstance(variables, dict) else {},
            tech_stack=row["tech_stack"],
            communication_patterns=row["communication_patterns"],
            environments=row["environments"],
            code_conventions=row["code_conventions"],
            testing_requirements=row["testing_requirements"],
            api_conventions=row["api_conventions"],
            infrastructure=row["infrastructure"],
            updated_at=row["updated_at"],
        )

    # Boards
    def create_board(self, name: str) -> Board:
        board_id = new_id()
        now = utc_now()
        with self._transaction() as conn:
            row = conn.execute("SELECT COALESCE(MAX(position), 0) AS max_pos FROM boards").fetchone()
            conn.execute(
                "INSERT INTO boards (id, name, position, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (board_id, name, row["max_pos"] + POSITION_STEP, now, now),
            )
        return self.get_board(board_id)

    def get_board(self, board_id: str) -> Board:
        row = self._fetchone("SELECT * FROM boards WHERE id = ?", (board_id,))
        if row is None:
            raise EntityNotFoundError(f"Board {board_id} not found")
        return self._row_to_board(row)

    def list_boards(self) -> List[Board]:
        rows = self._fetchall("SELECT * FROM boards ORDER BY position ASC")
        return [self._row_to_board(row) for row in rows]

    def update_board(
        self,
        board_id: str,
        *,
        name: Optional[str] = None,
        position: Optional[int] = None,
    ) -> Board:
        self.get_board(board_id)
        with self._transaction() as conn:
            if name is not None:
                conn.execute(
                    "UPDATE boards SET name = ?, updated_at = ? WHERE id = ?",
                    (name, utc_now(), board_id),
                )
            if position is not None:
                conn.execute(
                    "UPDATE boards SET position = ?, updated_at = ? WHERE id = ?",
                    (position, utc_now(), board_id),
                )
        return self.get_board(board_id)

    def delete_board(self, board_id: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM boards WHERE id = ?", (board_id,))
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Board {board_id} not found")

    # Board settings
    def get_board_settings(self, board_id: str) -> BoardSettings:
        self.get_board(board_id)
        row = self._fetchone("SELECT * FROM board_settings WHERE board_id = ?", (board_id,))
        if row is None:
            return BoardSettings(board_id=board_id)
        return self._row_to_board_settings(row)

    def upsert_board_settings(self, board_id: str, **fields: Any) -> BoardSettings:
        current = self.get_board_settings(board_id)
        values: Dict[str, Any] = {}
        for column in _BOARD_SETTINGS_COLUMNS:
            value = fields.get(column, getattr(current, column))
            if column in _JSON_BOARD_SETTINGS_COLUMNS:
                value = self._dump_json(value if value is not None else ([] if column == "document_links" else {}))
            values[column] = value
        columns = ", ".join(_BOARD_SETTINGS_COLUMNS)
        placeholders = ", ".join("?" for _ in _BOARD_SETTINGS_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _BOARD_SETTINGS_COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO board_settings (board_id, {columns}, updated_at) VALUES (?, {placeholders}, ?) "
                f"ON CONFLICT(board_id) DO UPDATE SET {updates}, updated_at = excluded.updated_at",
                (board_id, *[values[c] for c in _BOARD_SETTINGS_COLUMNS], utc_now()),
            )
        return self.get_board_settings(board_id)

    # Cards
    def next_card_position(self, stage: str) -> int:
        row = self._fetchone(
            "SELECT COALESCE(MAX(position), 0) AS max_pos FROM cards WHERE stage = ?",
            (stage,),
        )
        return int(row["max_pos"]) + POSITION_STEP

    def create_card(
        self,
        *,
        title: str,
        description: str = "",
        stage: str = Stage.BACKLOG,
        priority: str = "medium",
        working_directory: str = ".",
        board_id: str = "default",
        linked_documents: Optional[List[str]] = None,
        ai_agent: Optional[str] = None,
    ) -> Card:
        card_id = new_id()
        now = utc_now()
        position = self.next_card_position(stage)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cards (
                    id, board_id, title, description, stage, position, priority,
                    working_directory, ai_status, ai_progress, linked_documents, ai_agent,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, '{}', ?, ?, ?, ?)
                """,
                (
                    card_id,
                    board_id,
                    title,
                    description,
                    stage,
                    position,
                    priority,
                    working_directory,
                    AiStatus.IDLE,
                    json.dumps(linked_documents or []),
                    ai_agent,
                    now,
                    now,
                ),
            )
        return self.get_card(card_id)

    def get_card(self, card_id: str) -> Card:
        row = self._fetchone("SELECT * FROM cards WHERE id = ?", (card_id,))
        if row is None:
            raise EntityNotFoundError(f"Card not found: {card_id}")
        return self._row_to_card(row)

    def list_cards(self, *, board_id: Optional[str] = None) -> List[Card]:
        if board_id:
            rows = self._fetchall(
                "SELECT * FROM cards WHERE board_id = ? ORDER BY position ASC", (board_id,)
            )
        else:
            rows = self._fetchall("SELECT * FROM cards ORDER BY position ASC")
        return [self._row_to_card(row) for row in rows]

    def list_card_summaries(self, *, board_id: Optional[str] = None) -> List[CardSummary]:
        query = """
            SELECT
                c.id, c.board_id, c.title, c.description, c.stage, c.position, c.priority,
                c.ai_status, c.ai_agent, c.created_at, c.updated_at,
                (SELECT COUNT(*) FROM subtasks s WHERE s.card_id = c.id) AS subtask_count,
                (SELECT COUNT(*) FROM subtasks s WHERE s.card_id = c.id AND s.completed = 1) AS subtask_completed,
                (SELECT COUNT(*) FROM card_labels cl WHERE cl.card_id = c.id) AS label_count,
                (SELECT COUNT(*) FROM comments co WHERE co.card_id = c.id) AS comment_count
            FROM cards c
        """
        params: List[Any] = []
        if board_id:
            query += " WHERE c.board_id = ?"
            params.append(board_id)
        query += " ORDER BY c.position ASC"
        rows = self._fetchall(query, params)
        return [
            CardSummary(
                id=row["id"],
                board_id=row["board_id"],
                title=row["title"],
                description=row["description"],
                stage=row["stage"],
                position=row["position"],
                priority=row["priority"],
                ai_status=row["ai_status"],
                ai_agent=row["ai_agent"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
                subtask_count=row["subtask_count"],
                subtask_completed=row["subtask_completed"],
                label_count=row["label_count"],
                comment_count=row["comment_count"],
            )
            for row in rows
        ]

    def update_card(self, card_id: str, **fields: Any) -> Card:
        """
        Update arbitrary card columns and bump updated_at.

        Passing None clears a nullable column (ai_session_id, worktree_path, ...).
        """
        unknown = set(fields) - _CARD_COLUMNS
        if unknown:
            raise ValueError(f"Unknown card fields: {sorted(unknown)}")
        assignments = []
        params: List[Any] = []
        for column, value in fields.items():
            if column in _JSON_CARD_COLUMNS and value is not None:
                value = self._dump_json(value)
            assignments.append(f"{column} = ?")
            params.append(value)
        assignments.append("updated_at = ?")
        params.append(utc_now())
        params.append(card_id)
        with self._transaction() as conn:
            cur = conn.execute(f"UPDATE cards SET {', '.join(assignments)} WHERE id = ?", params)
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Card not found: {card_id}")
        return self.get_card(card_id)

    def move_card(self, card_id: str, stage: str, position: int) -> Card:
        """Persist stage + position + updated_at in a single statement."""
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE cards SET stage = ?, position = ?, updated_at = ? WHERE id = ?",
                (stage, position, utc_now(), card_id),
            )
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Card not found: {card_id}")
        return self.get_card(card_id)

    def delete_card(self, card_id: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM cards WHERE id = ?", (card_id,))
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Card not found: {card_id}")

    def find_card_by_session(self, session_id: str) -> Optional[Card]:
        """Resolve the card owning a session, following child-session mappings."""
        row = self._fetchone("SELECT * FROM cards WHERE ai_session_id = ?", (session_id,))
        if row is None:
            row = self._fetchone(
                """
                SELECT c.* FROM cards c
                JOIN session_mappings m ON m.card_id = c.id
                WHERE m.child_session_id = ?
                """,
                (session_id,),
            )
        return self._row_to_card(row) if row is not None else None

    def count_active_cards(self) -> int:
        row = self._fetchone(
            """
            SELECT COUNT(*) AS n FROM cards
            WHERE stage IN (?, ?) AND ai_status IN (?, ?)
            """,
            (Stage.TODO, Stage.IN_PROGRESS, AiStatus.DISPATCHED, AiStatus.WORKING),
        )
        return int(row["n"])

    def list_queued_cards(self, limit: int) -> List[Card]:
        rows = self._fetchall(
            """
            SELECT * FROM cards
            WHERE stage = ? AND ai_status = ?
            ORDER BY updated_at ASC
            LIMIT ?
            """,
            (Stage.TODO, AiStatus.QUEUED, limit),
        )
        return [self._row_to_card(row) for row in rows]

    def list_cards_by_ai_status(
        self,
        statuses: Sequence[str],
        *,
        updated_before: Optional[str] = None,
    ) -> List[Card]:
        if not statuses:
            return []
        placeholders = ", ".join("?" for _ in statuses)
        query = f"SELECT * FROM cards WHERE ai_status IN ({placeholders})"
        params: List[Any] = list(statuses)
        if updated_before is not None:
            query += " AND updated_at < ?"
            params.append(updated_before)
        query += " ORDER BY updated_at ASC"
        return [self._row_to_card(row) for row in self._fetchall(query, params)]

    # Card versions
    def save_card_version(self, card: Card, changed_by: str = "user") -> CardVersion:
        version_id = new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO card_versions (
                    id, card_id, title, description, priority, stage,
                    working_directory, linked_documents, changed_by, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    version_id,
                    card.id,
                    card.title,
                    card.description,
                    card.priority,
                    card.stage,
                    card.working_directory,
                    json.dumps(card.linked_documents),
                    changed_by,
                    utc_now(),
                ),
            )
            conn.execute(
                """
                DELETE FROM card_versions
                WHERE card_id = ? AND id NOT IN (
                    SELECT id FROM card_versions WHERE card_id = ?
                    ORDER BY created_at DESC, rowid DESC
                    LIMIT ?
                )
                """,
                (card.id, card.id, MAX_CARD_VERSIONS),
            )
        return self.get_card_version(version_id)

    def get_card_version(self, version_id: str) -> CardVersion:
        row = self._fetchone("SELECT * FROM card_versions WHERE id = ?", (version_id,))
        if row is None:
            raise EntityNotFoundError(f"Card version not found: {version_id}")
        return self._row_to_version(row)

    def list_card_versions(self, card_id: str) -> List[CardVersion]:
        rows = self._fetchall(
            "SELECT * FROM card_versions WHERE card_id = ? ORDER BY created_at DESC, rowid DESC",
            (card_id,),
        )
        return [self._row_to_version(row) for row in rows]

    # Subtasks
    def create_subtask(
        self,
        card_id: str,
        title: str,
        *,
        phase: str = "Phase 1",
        phase_order: int = 1,
        position: Optional[int] = None,
    ) -> Subtask:
        self.get_card(card_id)
        subtask_id = new_id()
        now = utc_now()
        with self._transaction() as conn:
            if position is None:
                row = conn.execute(
                    "SELECT COALESCE(MAX(position), 0) AS max_pos FROM subtasks WHERE card_id = ?",
                    (card_id,),
                ).fetchone()
                position = row["max_pos"] + POSITION_STEP
            conn.execute(
                """
                INSERT INTO subtasks (id, card_id, title, completed, position, phase, phase_order, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?)
                """,
                (subtask_id, card_id, title, position, phase, phase_order, now, now),
            )
        return self.get_subtask(subtask_id)

    def get_subtask(self, subtask_id: str) -> Subtask:
        row = self._fetchone("SELECT * FROM subtasks WHERE id = ?", (subtask_id,))
        if row is None:
            raise EntityNotFoundError(f"Subtask not found: {subtask_id}")
        return self._row_to_subtask(row)

    def list_subtasks(self, card_id: str) -> List[Subtask]:
        rows = self._fetchall(
            "SELECT * FROM subtasks WHERE card_id = ? ORDER BY phase_order ASC, position ASC",
            (card_id,),
        )
        return [self._row_to_subtask(row) for row in rows]

    def update_subtask(
        self,
        subtask_id: str,
        *,
        title: Optional[str] = None,
        completed: Optional[bool] = None,
        position: Optional[int] = None,
        phase: Optional[str] = None,
        phase_order: Optional[int] = None,
    ) -> Subtask:
        existing = self.get_subtask(subtask_id)
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE subtasks
                SET title = ?, completed = ?, position = ?, phase = ?, phase_order = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    title if title is not None else existing.title,
                    int(completed if completed is not None else existing.completed),
                    position if position is not None else existing.position,
                    phase if phase is not None else existing.phase,
                    phase_order if phase_order is not None else existing.phase_order,
                    utc_now(),
                    subtask_id,
                ),
            )
        return self.get_subtask(subtask_id)

    def delete_subtask(self, subtask_id: str) -> Subtask:
        existing = self.get_subtask(subtask_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM subtasks WHERE id = ?", (subtask_id,))
        return existing

    # Comments
    def create_comment(self, card_id: str, content: str, *, author: str = "user") -> Comment:
        self.get_card(card_id)
        comment_id = new_id()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO comments (id, card_id, author, content, created_at) VALUES (?, ?, ?, ?, ?)",
                (comment_id, card_id, author, content, utc_now()),
            )
        return self.get_comment(comment_id)

    def get_comment(self, comment_id: str) -> Comment:
        row = self._fetchone("SELECT * FROM comments WHERE id = ?", (comment_id,))
        if row is None:
            raise EntityNotFoundError(f"Comment not found: {comment_id}")
        return self._row_to_comment(row)

    def list_comments(self, card_id: str) -> List[Comment]:
        rows = self._fetchall(
            "SELECT * FROM comments WHERE card_id = ? ORDER BY created_at ASC, rowid ASC",
            (card_id,),
        )
        return [self._row_to_comment(row) for row in rows]

    def list_recent_comments(self, card_id: str, limit: int = 5) -> List[Comment]:
        """The `limit` most recent comments, returned oldest first."""
        rows = self._fetchall(
            "SELECT * FROM comments WHERE card_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
            (card_id, limit),
        )
        return [self._row_to_comment(row) for row in reversed(rows)]

    def update_comment(self, comment_id: str, content: str) -> Comment:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE comments SET content = ?, updated_at = ? WHERE id = ?",
                (content, utc_now(), comment_id),
            )
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Comment not found: {comment_id}")
        return self.get_comment(comment_id)

    def delete_comment(self, comment_id: str) -> Comment:
        existing = self.get_comment(comment_id)
        with self._transaction() as conn:
            conn.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        return existing

    # Labels
    def list_labels(self) -> List[Label]:
        rows = self._fetchall("SELECT * FROM labels ORDER BY name ASC")
        return [Label(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def get_label(self, label_id: str) -> Label:
        row = self._fetchone("SELECT * FROM labels WHERE id = ?", (label_id,))
        if row is None:
            raise EntityNotFoundError(f"Label not found: {label_id}")
        return Label(id=row["id"], name=row["name"], color=row["color"])

    def list_card_labels(self, card_id: str) -> List[Label]:
        rows = self._fetchall(
            """
            SELECT l.* FROM labels l
            JOIN card_labels cl ON cl.label_id = l.id
            WHERE cl.card_id = ?
            ORDER BY l.name ASC
            """,
            (card_id,),
        )
        return [Label(id=row["id"], name=row["name"], color=row["color"]) for row in rows]

    def add_card_label(self, card_id: str, label_id: str) -> bool:
        """Attach a label; returns False when it was already attached."""
        self.get_card(card_id)
        self.get_label(label_id)
        with self._transaction() as conn:
            cur = conn.execute(
                "INSERT OR IGNORE INTO card_labels (card_id, label_id) VALUES (?, ?)",
                (card_id, label_id),
            )
            return cur.rowcount > 0

    def remove_card_label(self, card_id: str, label_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM card_labels WHERE card_id = ? AND label_id = ?",
                (card_id, label_id),
            )
            return cur.rowcount > 0

    # Agent logs
    def append_agent_log(
        self,
        *,
        card_id: str,
        session_id: str,
        event_type: str,
        content: str,
        agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AgentLog:
        log_id = new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO agent_logs (id, card_id, session_id, event_type, agent, content, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    log_id,
                    card_id,
                    session_id,
                    event_type,
                    agent,
                    content,
                    json.dumps(metadata) if metadata is not None else None,
                    utc_now(),
                ),
            )
        row = self._fetchone("SELECT * FROM agent_logs WHERE id = ?", (log_id,))
        return self._row_to_agent_log(row)

    def list_agent_logs(self, card_id: str, *, limit: int = 500) -> List[AgentLog]:
        rows = self._fetchall(
            "SELECT * FROM agent_logs WHERE card_id = ? ORDER BY created_at ASC, rowid ASC LIMIT ?",
            (card_id, limit),
        )
        return [self._row_to_agent_log(row) for row in rows]

    # Questions
    def create_question(
        self,
        *,
        card_id: str,
        session_id: str,
        question: str,
        question_type: str,
        options: List[Any],
        multiple: bool = False,
    ) -> AiQuestion:
        question_id = new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO ai_questions (id, card_id, session_id, question, question_type, options, multiple, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    question_id,
                    card_id,
                    session_id,
                    question,
                    question_type,
                    json.dumps(options),
                    int(multiple),
                    utc_now(),
                ),
            )
        return self.get_question(question_id)

    def get_question(self, question_id: str) -> AiQuestion:
        row = self._fetchone("SELECT * FROM ai_questions WHERE id = ?", (question_id,))
        if row is None:
            raise EntityNotFoundError(f"Question not found: {question_id}")
        return self._row_to_question(row)

    def list_questions(self, card_id: str) -> List[AiQuestion]:
        rows = self._fetchall(
            "SELECT * FROM ai_questions WHERE card_id = ? ORDER BY created_at ASC, rowid ASC",
            (card_id,),
        )
        return [self._row_to_question(row) for row in rows]

    def answer_question(self, question_id: str, answer: str) -> AiQuestion:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE ai_questions SET answer = ?, answered_at = ? WHERE id = ?",
                (answer, utc_now(), question_id),
            )
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Question not found: {question_id}")
        return self.get_question(question_id)

    # Session mappings
    def insert_session_mapping(
        self,
        *,
        child_session_id: str,
        card_id: str,
        parent_session_id: str,
        agent_type: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SessionMapping:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO session_mappings
                    (child_session_id, card_id, parent_session_id, agent_type, description, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (child_session_id, card_id, parent_session_id, agent_type, description, utc_now()),
            )
        return self.get_session_mapping(child_session_id)

    def get_session_mapping(self, child_session_id: str) -> SessionMapping:
        row = self._fetchone(
            "SELECT * FROM session_mappings WHERE child_session_id = ?", (child_session_id,)
        )
        if row is None:
            raise EntityNotFoundError(f"Session mapping not found: {child_session_id}")
        return self._row_to_session_mapping(row)

    def list_session_mappings(self, card_id: str) -> List[SessionMapping]:
        rows = self._fetchall(
            "SELECT * FROM session_mappings WHERE card_id = ? ORDER BY created_at ASC",
            (card_id,),
        )
        return [self._row_to_session_mapping(row) for row in rows]

    def delete_session_mappings(self, card_id: str) -> int:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM session_mappings WHERE card_id = ?", (card_id,))
            return cur.rowcount

    # Notifications
    def create_notification(
        self,
        *,
        notification_type: str,
        title: str,
        message: str,
        card_id: Optional[str] = None,
        board_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Notification:
        notification_id = new_id()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO notifications (id, user_id, notification_type, title, message, card_id, board_id, is_read, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (notification_id, user_id, notification_type, title, message, card_id, board_id, utc_now()),
            )
        return self.get_notification(notification_id)

    def get_notification(self, notification_id: str) -> Notification:
        row = self._fetchone("SELECT * FROM notifications WHERE id = ?", (notification_id,))
        if row is None:
            raise EntityNotFoundError(f"Notification not found: {notification_id}")
        return self._row_to_notification(row)

    def list_notifications(
        self,
        *,
        unread_only: bool = False,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[Notification]:
        query = "SELECT * FROM notifications WHERE (user_id IS NULL OR user_id = ?)"
        params: List[Any] = [user_id]
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        return [self._row_to_notification(row) for row in self._fetchall(query, params)]

    def mark_notification_read(self, notification_id: str) -> Notification:
        with self._transaction() as conn:
            cur = conn.execute("UPDATE notifications SET is_read = 1 WHERE id = ?", (notification_id,))
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Notification not found: {notification_id}")
        return self.get_notification(notification_id)

    def mark_all_notifications_read(self, *, user_id: Optional[str] = None) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                "UPDATE notifications SET is_read = 1 WHERE is_read = 0 AND (user_id IS NULL OR user_id = ?)",
                (user_id,),
            )
            return cur.rowcount

    def delete_notification(self, notification_id: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM notifications WHERE id = ?", (notification_id,))
            if cur.rowcount == 0:
                raise EntityNotFoundError(f"Notification not found: {notification_id}")

    # Settings
    def get_setting(self, key: str) -> Optional[Setting]:
        row = self._fetchone("SELECT * FROM settings WHERE key = ?", (key,))
        if row is None:
            return None
        return Setting(key=row["key"], value=row["value"], updated_at=row["updated_at"])

    def set_setting(self, key: str, value: str) -> Setting:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, utc_now()),
            )
        setting = self.get_setting(key)
        assert setting is not None
        return setting


Database = SQLiteDatabase


def get_database(db_path: Path) -> Database:
    """Open the database at db_path (schema not applied)."""
    return SQLiteDatabase(db_path)
