"""
Repositories for job run audit records and AI usage telemetry.

``job_runs`` holds one row per ``(job_name, run_date)``: starting a run for a
date that already has a record resets that record instead of adding another.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Optional

from signal_desk.db.repositories.base import BaseRepository, from_json
from signal_desk.models.meta import AiUsageRecord, RunMetadata

logger = logging.getLogger(__name__)


class JobRunRepository(BaseRepository):
    """Read/write access to ``job_runs``."""

    def upsert_start(self, run: RunMetadata) -> int:
        """Record ``run`` as started and return its ``run_id``."""
        self.execute(
            """
            INSERT INTO job_runs (
                run_slug, job_name, run_date, status, config_snapshot,
                rows_processed, error_message, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL)
            ON CONFLICT(job_name, run_date) DO UPDATE SET
                run_slug        = excluded.run_slug,
                status          = excluded.status,
                config_snapshot = excluded.config_snapshot,
                rows_processed  = excluded.rows_processed,
                error_message   = excluded.error_message,
                started_at      = excluded.started_at,
                finished_at     = NULL;
            """,
            (
                run.run_slug,
                run.job_name,
                run.run_date.isoformat(),
                run.status,
                json.dumps(run.config_snapshot, default=str),
                run.rows_processed,
                run.error_message,
                run.started_at.isoformat(),
            ),
        )
        row = self.fetchone(
            "SELECT run_id FROM job_runs WHERE job_name = ? AND run_date = ?;",
            (run.job_name, run.run_date.isoformat()),
        )
        assert row is not None
        return int(row["run_id"])

    def finish(self, run: RunMetadata) -> None:
        """Write the final status, counts and error of ``run``."""
        self.execute(
            """
            UPDATE job_runs SET
                status         = ?,
                rows_processed = ?,
                error_message  = ?,
                finished_at    = ?
            WHERE job_name = ? AND run_date = ?;
            """,
            (
                run.status,
                run.rows_processed,
                run.error_message,
                run.finished_at.isoformat() if run.finished_at else None,
                run.job_name,
                run.run_date.isoformat(),
            ),
        )

    def get_run(self, job_name: str, run_date: date) -> Optional[RunMetadata]:
        row = self.fetchone(
            "SELECT * FROM job_runs WHERE job_name = ? AND run_date = ?;",
            (job_name, run_date.isoformat()),
        )
        return _row_to_run(row) if row else None

    def get_recent(self, job_name: Optional[str] = None, limit: int = 20) -> list[RunMetadata]:
        """Most recently started runs first."""
        if job_name:
            rows = self.fetchall(
                "SELECT * FROM job_runs WHERE job_name = ? ORDER BY started_at DESC LIMIT ?;",
                (job_name, limit),
            )
        else:
            rows = self.fetchall(
                "SELECT * FROM job_runs ORDER BY started_at DESC LIMIT ?;", (limit,)
            )
        return [_row_to_run(r) for r in rows]


class AiUsageRepository(BaseRepository):
    """Append-only access to ``ai_usage_log``."""

    def insert(self, record: AiUsageRecord) -> None:
        self.execute(
            """
            INSERT INTO ai_usage_log (
                user_id, feature, model, input_tokens, output_tokens,
                estimated_cost_usd, success, duration_ms
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                record.user_id,
                record.feature,
                record.model,
                record.input_tokens,
                record.output_tokens,
                record.estimated_cost_usd,
                int(record.success),
                record.duration_ms,
            ),
        )

    def count(self, feature: Optional[str] = None) -> int:
        if feature:
            row = self.fetchone(
                "SELECT COUNT(*) AS n FROM ai_usage_log WHERE feature = ?;", (feature,)
            )
        else:
            row = self.fetchone("SELECT COUNT(*) AS n FROM ai_usage_log;")
        return int(row["n"]) if row else 0


def _row_to_run(row) -> RunMetadata:  # type: ignore[no-untyped-def]
    return RunMetadata(
        run_id=row["run_id"],
        run_slug=row["run_slug"],
        job_name=row["job_name"],
        run_date=date.fromisoformat(row["run_date"]),
        status=row["status"],
        config_snapshot=from_json(row["config_snapshot"], {}),
        rows_processed=row["rows_processed"],
        error_message=row["error_message"],
        started_at=datetime.fromisoformat(row["started_at"]),
        finished_at=datetime.fromisoformat(row["finished_at"]) if row["finished_at"] else None,
    )
