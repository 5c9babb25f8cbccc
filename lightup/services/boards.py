"""
Lightup Board Service

Boards, their ordering and the per-board settings consulted when preparing
agent context (most importantly `codebase_path`, the repository merges run
against).
"""

from dataclasses import asdict
from typing import Any, List

from lightup.db.database import Database
from lightup.errors import ValidationError
from lightup.models.domain import Board, BoardSettings
from lightup.services.base import Service, ServiceContext
from lightup.services.events import BoardCreated, BoardDeleted, BoardUpdated, EventBroadcaster

DEFAULT_BOARD_ID = "default"


class BoardService(Service):
    def __init__(self, context: ServiceContext, db: Database, bus: EventBroadcaster) -> None:
        super().__init__(context)
        self.db = db
        self.bus = bus

    def list_boards(self) -> List[Board]:
        return self.db.list_boards()

    def get_board(self, board_id: str) -> Board:
        return self.db.get_board(board_id)

    def create_board(self, name: str) -> Board:
        if not name or not name.strip():
            raise ValidationError("name must not be empty")
        board = self.db.create_board(name.strip())
        self.bus.publish(BoardCreated(board=asdict(board)))
        self.logger.info("board_created", extra=self.log_extra(board_id=board.id))
        return board

    def rename_board(self, board_id: str, name: str) -> Board:
        if not name or not name.strip():
            raise ValidationError("name must not be empty")
        board = self.db.update_board(board_id, name=name.strip())
        self.bus.publish(BoardUpdated(board=asdict(board)))
        return board

    def reorder_board(self, board_id: str, position: int) -> Board:
        board = self.db.update_board(board_id, position=position)
        self.bus.publish(BoardUpdated(board=asdict(board)))
        return board

    def delete_board(self, board_id: str) -> None:
        """Delete a board and, by cascade, its cards. The default board is permanent."""
        if board_id == DEFAULT_BOARD_ID:
            raise ValidationError("The default board cannot be deleted")
        self.db.delete_board(board_id)
        self.bus.publish(BoardDeleted(board_id=board_id))
        self.logger.info("board_deleted", extra=self.log_extra(board_id=board_id))

    def get_settings(self, board_id: str) -> BoardSettings:
        return self.db.get_board_settings(board_id)

    def update_settings(self, board_id: str, **fields: Any) -> BoardSettings:
        settings = self.db.upsert_board_settings(board_id, **fields)
        self.logger.info(
            "board_settings_updated",
            extra=self.log_extra(board_id=board_id, fields=sorted(fields)),
        )
        return settings

    def codebase_path(self, board_id: str) -> str:
        """The board's repository; merge flows cannot run without one."""
        path = self.db.get_board_settings(board_id).codebase_path
        if not path:
            raise ValidationError(f"Board {board_id} has no codebase_path configured")
        return path
