"""
Persistent per-form export state.

Remembers the date of the last exported submission of each form so that
later exports can append only newer submissions.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .migrations import apply_schema


class ExportState(BaseModel):
    """Stored state of a form's exports."""
    form_id: str
    last_exported_submission_date: Optional[datetime] = None
    last_export_outcome: Optional[str] = None
    updated_at: datetime

    @classmethod
    def from_db_row(cls, row: sqlite3.Row) -> "ExportState":
        return cls(
            form_id=row["form_id"],
            last_exported_submission_date=(
                datetime.fromisoformat(row["last_exported_submission_date"])
                if row["last_exported_submission_date"] else None
            ),
            last_export_outcome=row["last_export_outcome"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class ExportStateStore:
    """SQLite backed store of ExportState records."""

    def __init__(self, db_path: Path):
        """Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        apply_schema(self.db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with proper error handling."""
        conn = sqlite3.connect(
            self.db_path,
            timeout=30.0,
            isolation_level="DEFERRED"
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, form_id: str) -> Optional[ExportState]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM export_state WHERE form_id = ?",
                (form_id,)
            ).fetchone()
            return ExportState.from_db_row(row) if row else None

    def last_exported_submission_date(self, form_id: str) -> Optional[datetime]:
        state = self.get(form_id)
        return state.last_exported_submission_date if state else None

    def record_export(
        self,
        form_id: str,
        outcome: str,
        last_exported_submission_date: Optional[datetime] = None,
    ) -> ExportState:
        """Store the outcome of an export.

        The last exported date is only moved when a new one is given, so an
        export that wrote nothing keeps the previous bookmark.

        Args:
            form_id: Form identifier
            outcome: Outcome name of the export
            last_exported_submission_date: Date of the newest exported submission

        Returns:
            The stored ExportState
        """
        now = datetime.now(timezone.utc).isoformat()
        date_value = last_exported_submission_date.isoformat() if last_exported_submission_date else None
        with self._get_connection() as conn:
            conn.execute(
                """INSERT INTO export_state
                       (form_id, last_exported_submission_date, last_export_outcome, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(form_id) DO UPDATE SET
                       last_exported_submission_date = COALESCE(excluded.last_exported_submission_date,
                                                                last_exported_submission_date),
                       last_export_outcome = excluded.last_export_outcome,
                       updated_at = excluded.updated_at""",
                (form_id, date_value, outcome, now)
            )
        return self.get(form_id)
