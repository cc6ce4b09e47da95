"""Execution log — SQLite-backed audit trail with an optional remote mirror."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from pathlib import Path
from typing import Any

from autorelay.models import ExecutionRecord, ProcessingResult, Workflow
from autorelay.workflows.records import workflow_to_record
from autorelay.workflows.remote import RemoteWorkflowStore

logger = logging.getLogger(__name__)


class ExecutionLog:
    """Records one entry per pipeline outcome.

    Writing is best-effort: a failing database or remote mirror is logged
    and never propagates into the pipeline.
    """

    def __init__(
        self,
        db_path: Path | str,
        remote: RemoteWorkflowStore | None = None,
    ) -> None:
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._remote = remote
        self._init_db()

    def _init_db(self) -> None:
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS execution_log (
                id TEXT PRIMARY KEY,
                workflow_ref TEXT NOT NULL,
                success BOOLEAN NOT NULL,
                message TEXT NOT NULL,
                workflow TEXT NOT NULL,
                timestamp TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_execution_timestamp
                ON execution_log(timestamp);
        """)
        self._conn.commit()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record(self, workflow: Workflow, result: ProcessingResult) -> ExecutionRecord:
        """Persist *result* for *workflow* locally, then mirror it remotely."""
        entry = ExecutionRecord(
            workflow_ref=workflow.ref,
            success=result.success,
            message=result.summary,
            workflow=workflow_to_record(workflow),
        )
        self._insert(entry)
        if self._remote is not None:
            await self._remote.log_execution(entry)
        return entry

    def _insert(self, entry: ExecutionRecord) -> None:
        try:
            with self._lock:
                self._conn.execute(
                    """INSERT INTO execution_log
                       (id, workflow_ref, success, message, workflow, timestamp)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        str(uuid.uuid4()),
                        entry.workflow_ref,
                        entry.success,
                        entry.message,
                        json.dumps(entry.workflow),
                        entry.timestamp.isoformat(),
                    ),
                )
                self._conn.commit()
        except sqlite3.Error as exc:
            logger.warning("Failed to log execution for %s: %s", entry.workflow_ref, exc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def history(self, limit: int = 50, workflow_ref: str | None = None) -> list[dict[str, Any]]:
        """Recent entries, newest first."""
        with self._lock:
            if workflow_ref:
                cursor = self._conn.execute(
                    "SELECT * FROM execution_log WHERE workflow_ref = ? "
                    "ORDER BY timestamp DESC LIMIT ?",
                    (workflow_ref, limit),
                )
            else:
                cursor = self._conn.execute(
                    "SELECT * FROM execution_log ORDER BY timestamp DESC LIMIT ?",
                    (limit,),
                )
            rows = cursor.fetchall()
        return [
            {
                "workflowRef": row["workflow_ref"],
                "success": bool(row["success"]),
                "message": row["message"],
                "timestamp": row["timestamp"],
                "workflow": json.loads(row["workflow"]),
            }
            for row in rows
        ]

    def close(self) -> None:
        self._conn.close()
