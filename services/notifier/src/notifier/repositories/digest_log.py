from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Sequence
from datetime import timedelta
from typing import Literal

from common.utils import now_utc, parse_iso_datetime

from notifier.models import ChannelName, DigestLogEntry, FailureRate
from notifier.repositories.database import Database

LOGGER = logging.getLogger("jobboard.notifier.digest_log")

LogStatus = Literal["SUCCESS", "FAILED"]


class DigestLogRepository:
    """Append-only record of every delivery attempt."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def log_success(
        self,
        *,
        channel: ChannelName,
        recipient: str,
        contact_id: int | None,
        batch_id: str,
        job_ids: Sequence[str],
        attempt: int,
        dry_run: bool = False,
    ) -> int:
        return self._insert(
            status="SUCCESS",
            channel=channel,
            recipient=recipient,
            contact_id=contact_id,
            batch_id=batch_id,
            job_ids=job_ids,
            attempt=attempt,
            dry_run=dry_run,
            error=None,
        )

    def log_failure(
        self,
        *,
        channel: ChannelName,
        recipient: str,
        contact_id: int | None,
        batch_id: str,
        job_ids: Sequence[str],
        attempt: int,
        error: str,
        dry_run: bool = False,
    ) -> int:
        return self._insert(
            status="FAILED",
            channel=channel,
            recipient=recipient,
            contact_id=contact_id,
            batch_id=batch_id,
            job_ids=job_ids,
            attempt=attempt,
            dry_run=dry_run,
            error=error,
        )

    def _insert(
        self,
        *,
        status: LogStatus,
        channel: ChannelName,
        recipient: str,
        contact_id: int | None,
        batch_id: str,
        job_ids: Sequence[str],
        attempt: int,
        dry_run: bool,
        error: str | None,
    ) -> int:
        with self.database.lock, self.database.connection:
            cursor = self.database.connection.execute(
                """
                INSERT INTO digest_logs (
                    status, channel, recipient, contact_id, batch_id,
                    job_ids_json, attempt, dry_run, error_message, logged_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    status,
                    channel,
                    recipient,
                    contact_id,
                    batch_id,
                    json.dumps([str(job_id) for job_id in job_ids]),
                    attempt,
                    int(dry_run),
                    error,
                    now_utc().isoformat(),
                ),
            )
        return int(cursor.lastrowid)

    def get_failure_rate(self, window_hours: float = 24) -> FailureRate:
        """Percentage of FAILED rows among all rows logged inside the window."""
        since = (now_utc() - timedelta(hours=window_hours)).isoformat()
        with self.database.lock:
            row = self.database.connection.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END), 0) AS failed
                FROM digest_logs
                WHERE logged_at >= ?
                """,
                (since,),
            ).fetchone()
        total = int(row["total"]) if row else 0
        failed = int(row["failed"]) if row else 0
        rate = (failed / total * 100) if total else 0.0
        return FailureRate(failure_rate=rate, total=total, failed=failed)

    def list_recent(self, status: LogStatus | None = None, limit: int = 50) -> list[DigestLogEntry]:
        clauses: list[str] = []
        params: list[object] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.database.lock:
            rows = self.database.connection.execute(
                f"""
                SELECT status, channel, recipient, contact_id, batch_id, job_ids_json,
                       attempt, dry_run, error_message, logged_at
                FROM digest_logs
                {where}
                ORDER BY logged_at DESC, id DESC
                LIMIT ?
                """,
                [*params, limit],
            ).fetchall()
        return [self._to_entry(row) for row in rows]

    def _to_entry(self, row: sqlite3.Row) -> DigestLogEntry:
        try:
            job_ids = [str(item) for item in json.loads(row["job_ids_json"] or "[]")]
        except (TypeError, ValueError):
            LOGGER.warning(
                json.dumps({"event": "digest_log_job_ids_invalid", "batch_id": row["batch_id"]})
            )
            job_ids = []
        return DigestLogEntry(
            status=row["status"],
            channel=row["channel"],
            recipient=row["recipient"],
            contact_id=row["contact_id"],
            batch_id=row["batch_id"],
            job_ids=job_ids,
            attempt=int(row["attempt"]),
            dry_run=bool(row["dry_run"]),
            error=row["error_message"],
            logged_at=parse_iso_datetime(row["logged_at"]),
        )
