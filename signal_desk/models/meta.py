"""
Run and telemetry metadata — the audit backbone.

``RunMetadata`` is the job audit record. One row exists per
``(job_name, run_date)``; re-running a date overwrites it, so the table
always shows the latest attempt for each day. Every run records a
``config_snapshot`` (``AppConfig`` minus secrets) so a run can be reproduced.

``RunMetadata`` is the **only** Pydantic model in the system that is NOT
frozen. Its ``status``, ``rows_processed``, ``error_message``, and
``finished_at`` fields are updated as the run executes.

``AiUsageRecord`` is one fire-and-forget telemetry row per generator call.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_RUN_STATUSES = frozenset({"started", "success", "partial", "failed"})

# USD per million tokens for the default (Haiku-class) generator model.
INPUT_USD_PER_MTOK = 0.8
OUTPUT_USD_PER_MTOK = 4.0


class RunMetadata(BaseModel):
    """Job execution audit record.

    Attributes:
        run_id: Auto-assigned DB PK; ``None`` before insertion.
        run_slug: UUID4 string uniquely identifying this attempt.
        job_name: Logical job, e.g. ``"recommendations_daily"``.
        run_date: The business date the job ran for.
        status: Current execution status.
        config_snapshot: Secret-free ``AppConfig.model_dump()`` at start.
        rows_processed: Users whose feed was written.
        error_message: Error description if ``status`` is failed/partial.
        started_at: UTC datetime when the run began.
        finished_at: UTC datetime when the run completed or failed.
    """

    model_config = ConfigDict(frozen=False)

    run_id: Optional[int] = None
    run_slug: str
    job_name: str
    run_date: date
    status: str = "started"
    config_snapshot: dict[str, Any] = {}
    rows_processed: int = 0
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_RUN_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_RUN_STATUSES)}."
            )
        return v


class AiUsageRecord(BaseModel):
    """Token usage and outcome of one generator call."""

    model_config = ConfigDict(frozen=True)

    feature: str
    user_id: Optional[str] = None
    model: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    estimated_cost_usd: float = 0.0
    success: bool = True
    duration_ms: int = 0

    @classmethod
    def from_usage(
        cls,
        feature: str,
        model: Optional[str],
        usage: Optional[dict[str, Any]],
        success: bool,
        duration_ms: Optional[float],
        user_id: Optional[str] = None,
    ) -> "AiUsageRecord":
        """Build a record from a raw provider ``usage`` block (either key style)."""
        usage = usage or {}
        input_tokens = _to_int(usage.get("input_tokens", usage.get("inputTokens")))
        output_tokens = _to_int(usage.get("output_tokens", usage.get("outputTokens")))
        return cls(
            feature=feature,
            user_id=user_id,
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost_usd=estimate_cost_usd(input_tokens, output_tokens),
            success=success,
            duration_ms=max(0, _to_int(duration_ms)),
        )


def estimate_cost_usd(input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost of a call, rounded to 6 decimals."""
    cost = (input_tokens * INPUT_USD_PER_MTOK + output_tokens * OUTPUT_USD_PER_MTOK) / 1_000_000
    return round(cost, 6)


def _to_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError, OverflowError):
        return 0
