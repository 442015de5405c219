"""Database initialization and connection management.

Runs migrations on first boot, provides connection factory.
"""

import logging
import pathlib
import sqlite3

from eventvol.errors import StorageError

logger = logging.getLogger("eventvol.repos")

_MIGRATION_DIR = pathlib.Path(__file__).resolve().parent / "migrations"


def init_db(db_path: str) -> None:
    """Initialize the database by running every migration script in order.

    Scripts use ``CREATE ... IF NOT EXISTS`` so re-running is harmless.

    Args:
        db_path: Path to the SQLite database file.

    Raises:
        StorageError: If a migration fails.
    """
    conn = sqlite3.connect(db_path)
    try:
        for migration_file in sorted(_MIGRATION_DIR.glob("*.sql")):
            conn.executescript(migration_file.read_text(encoding="utf-8"))
            logger.debug("Applied migration %s", migration_file.name)
    except sqlite3.Error as exc:
        raise StorageError(f"Migration failed: {exc}") from exc
    finally:
        conn.close()


def get_connection(db_path: str, busy_timeout_ms: int = 5000) -> sqlite3.Connection:
    """Return a new SQLite connection with row-factory enabled.

    WAL journaling lets readers run alongside the import writer, and the
    busy timeout makes a conflicting writer wait instead of failing.
    Callers are responsible for closing the connection.
    """
    try:
        conn = sqlite3.connect(db_path, timeout=busy_timeout_ms / 1000)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    except sqlite3.Error as exc:
        raise StorageError(f"Cannot open database {db_path}: {exc}") from exc
    return conn
