"""
Daily market context: regime classification and crisis flag.

Both are keyed by date and produced by upstream daily jobs. When no row
exists for a date the documented defaults below apply; a missing regime
or crisis row is never an error.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

DEFAULT_REGIME = "transition"
DEFAULT_VOLATILITY_REGIME = "normal"
DEFAULT_REGIME_CONFIDENCE = 0.5


class RegimeState(BaseModel):
    """Market risk posture for one date.

    Attributes:
        state_date: Date the state applies to (``None`` for a default state).
        regime: e.g. ``"risk_on"``, ``"risk_off"``, ``"transition"``.
        volatility_regime: e.g. ``"normal"``, ``"elevated"``, ``"crisis"``.
        leadership: Leading sectors/assets.
        macro_drivers: Narrative macro drivers.
        risk_flags: Human-readable risk warnings.
        confidence: Classifier confidence, clamped to [0, 1].
    """

    model_config = ConfigDict(frozen=True)

    state_date: Optional[date] = None
    regime: str = DEFAULT_REGIME
    volatility_regime: str = DEFAULT_VOLATILITY_REGIME
    leadership: list[str] = []
    macro_drivers: list[str] = []
    risk_flags: list[str] = []
    confidence: float = DEFAULT_REGIME_CONFIDENCE

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: object) -> float:
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return DEFAULT_REGIME_CONFIDENCE
        if value != value:  # NaN
            return DEFAULT_REGIME_CONFIDENCE
        return max(0.0, min(1.0, value))

    @classmethod
    def default_for(cls, state_date: date) -> "RegimeState":
        return cls(state_date=state_date)


class CrisisState(BaseModel):
    """Market-wide stress flag for one date."""

    model_config = ConfigDict(frozen=True)

    state_date: Optional[date] = None
    is_active: bool = False
    summary: Optional[str] = None

    @classmethod
    def default_for(cls, state_date: date) -> "CrisisState":
        return cls(state_date=state_date)
