"""Storage - SQLite repositories and domain models"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

from triageq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock


class BaseRepository:
    """Base class for database repositories with common CRUD operations."""

    def __init__(self, table_name: str, db_path: Path | None = None) -> None:
        if not isinstance(table_name, str) or not table_name.replace("_", "").isalnum():
            raise ValueError(f"Invalid table name: {table_name}")
        self.table_name = table_name
        self.db_path = db_path

    def query_one(self, query: str, params: tuple[Any, ...] | None = None) -> sqlite3.Row | None:
        with get_db_connection(self.db_path) as conn:
            return conn.execute(query, params or ()).fetchone()

    def query_all(self, query: str, params: tuple[Any, ...] | None = None) -> list[sqlite3.Row]:
        with get_db_connection(self.db_path) as conn:
            return conn.execute(query, params or ()).fetchall()

    @retry_on_db_lock()
    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int:
        """
        Execute a write query (INSERT, UPDATE, DELETE)

        Returns:
            Number of affected rows

        Side Effects:
            - Writes to the table named in the query
            - Commits automatically (via db_transaction), rolls back on error
        """
        with db_transaction(self.db_path) as conn:
            return conn.execute(query, params or ()).rowcount


__all__ = ["BaseRepository"]
