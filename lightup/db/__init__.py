"""
Lightup Database Package

SQLite persistence layer and its embedded migrations.
"""

from lightup.db.database import Database, SQLiteDatabase, get_database
from lightup.db.schema import MIGRATIONS_SQLITE

__all__ = [
    "Database",
    "SQLiteDatabase",
    "get_database",
    "MIGRATIONS_SQLITE",
]
