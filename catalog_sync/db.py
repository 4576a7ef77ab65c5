"""SQLite ledger of sync runs."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, UTC
from pathlib import Path

from .models import RunSummary


class RunHistory:
    """SQLite database recording each sync run and its counters."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sync_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    feed_url TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    summary TEXT,
                    error_message TEXT,
                    duration_seconds REAL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sync_runs_started
                ON sync_runs (started_at DESC)
            """)
            conn.commit()

    def start_run(self, feed_url: str) -> int:
        """Create a new run record and return its ID."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_runs (feed_url, status, started_at)
                VALUES (?, 'running', ?)
                """,
                (feed_url, datetime.now(UTC).isoformat()),
            )
            conn.commit()
            return cursor.lastrowid

    def complete_run(
        self,
        run_id: int,
        status: str,
        summary: RunSummary,
        duration_seconds: float | None = None,
    ):
        """Update a run with completion details."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                UPDATE sync_runs
                SET status = ?, completed_at = ?, summary = ?,
                    error_message = ?, duration_seconds = ?
                WHERE id = ?
                """,
                (
                    status,
                    datetime.now(UTC).isoformat(),
                    json.dumps(summary.to_dict()),
                    summary.error,
                    duration_seconds,
                    run_id,
                ),
            )
            conn.commit()

    def recent_runs(self, limit: int = 10) -> list[dict]:
        """Get the most recent runs, newest first."""
        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(
                "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
            runs = []
            for row in cursor.fetchall():
                run = dict(row)
                run["summary"] = json.loads(run["summary"]) if run["summary"] else {}
                runs.append(run)
            return runs
