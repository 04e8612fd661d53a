"""
Database schema for the export state store.
"""

import sqlite3
from pathlib import Path

SCHEMA_VERSION = 1

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS export_state (
    form_id TEXT PRIMARY KEY,
    last_exported_submission_date TEXT,
    last_export_outcome TEXT,
    updated_at TEXT NOT NULL
);

INSERT OR IGNORE INTO schema_version (version) VALUES (1);
"""


def get_current_version(conn: sqlite3.Connection) -> int:
    """Get current schema version.

    Args:
        conn: Database connection

    Returns:
        Current schema version, or 0 if no version table exists
    """
    try:
        cursor = conn.execute("SELECT MAX(version) FROM schema_version")
        result = cursor.fetchone()
        return result[0] if result[0] is not None else 0
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        return 0


def apply_schema(db_path: Path) -> None:
    """Create tables if they don't exist. Safe to run multiple times.

    Args:
        db_path: Path to SQLite database file
    """
    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
    finally:
        conn.close()
