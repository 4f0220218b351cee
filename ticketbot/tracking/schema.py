"""SQLite schema and connection setup for the processed-ticket ledger."""

import sqlite3
from pathlib import Path

MEMORY_PATH = ":memory:"
BUSY_TIMEOUT_SECONDS = 10.0


def prepare_db_path(db_path: str) -> Path:
    """Create parent directories for file-backed SQLite paths."""
    path = Path(db_path)
    if str(path) != MEMORY_PATH and not str(db_path).startswith("file:"):
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def connect(db_path: str, *, timeout: float = BUSY_TIMEOUT_SECONDS) -> sqlite3.Connection:
    """
    Open an autocommit connection configured for concurrent readers and one writer.

    Transactions are opened explicitly by callers (`BEGIN IMMEDIATE` for writes).

    Args:
        db_path: SQLite file path or `file:` URI.
        timeout: Seconds SQLite itself waits on a lock before raising busy.
    Returns:
        Open connection with `sqlite3.Row` rows.
    """
    conn = sqlite3.connect(
        db_path,
        timeout=timeout,
        isolation_level=None,
        check_same_thread=False,
        uri=db_path.startswith("file:"),
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA synchronous = NORMAL")
    return conn


def init_tracking_db(conn: sqlite3.Connection) -> None:
    """
    Create the ledger table and index when absent.

    Args:
        conn: Open connection from `connect`.
    Side effects:
        Switches file-backed databases to WAL journaling; creates schema.
    """
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS processed_history (
            ticket_id TEXT PRIMARY KEY,
            last_thread_count INTEGER NOT NULL DEFAULT 0,
            processed_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_processed_at ON processed_history(processed_at DESC)"
    )
