"""SQLite access for TriageQ local state.

One database file holds all persisted watcher state. Path resolution order:
explicit argument, TRIAGEQ_DB_PATH, then <TRIAGEQ_DATA_DIR>/triageq.db.
"""

from __future__ import annotations

import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from triageq.config import (
    DATA_DIR,
    DB_CONNECT_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from triageq.observability.logging import get_logger

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS mail_watchers (
    watcher_id TEXT PRIMARY KEY,
    payload BLOB NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def get_db_path() -> Path:
    override = os.getenv("TRIAGEQ_DB_PATH")
    if override:
        return Path(override)
    return Path(os.getenv("TRIAGEQ_DATA_DIR", str(DATA_DIR))) / "triageq.db"


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Retry a database operation on SQLITE_BUSY / "database is locked".

    Side Effects:
        - Sleeps between attempts (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise
                    if attempt >= max_retries:
                        logger.error("Database lock retry exhausted after %d attempts: %s", max_retries, e)
                        raise
                    delay = min(base_delay * (2**attempt), max_delay)
                    delay += random.uniform(0, delay * 0.1)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs",
                        attempt + 1,
                        max_retries,
                        delay,
                    )
                    time.sleep(delay)
            raise RuntimeError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=DB_CONNECT_TIMEOUT, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_db_connection(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Open a connection, closing it on exit.

    Side Effects:
        - Creates the database file (and parent directory) on first use
    """
    conn = _connect(db_path or get_db_path())
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def db_transaction(db_path: Path | None = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Connection wrapped in a transaction: commit on success, rollback on error.

    Side Effects:
        - Commits or rolls back the transaction
    """
    with get_db_connection(db_path) as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def init_database(db_path: Path | None = None) -> Path:
    """
    Create tables if missing and return the resolved path.

    Side Effects:
        - Creates the database file and schema
    """
    path = db_path or get_db_path()
    with db_transaction(path) as conn:
        conn.executescript(SCHEMA)
    logger.info("Database ready at %s", path)
    return path
