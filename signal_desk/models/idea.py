"""
Recommendation idea models.

Raw generator output (``CandidateIdea``) is an untrusted mapping of any
shape; it is validated and coerced at exactly one boundary,
``signal_desk.ideas.normalizer.normalize_idea``. Everything downstream works
with the canonical tagged union:

  - ``TradeIdea`` — category ``strategic`` or ``opportunistic``.
  - ``RiskIdea``  — category ``risk``.

``CANONICAL_IDEA_ADAPTER`` re-validates canonical ideas read back from the
database using the ``category`` discriminator.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from signal_desk.taxonomy.signal_taxonomy import (
    IdeaAction,
    IdeaTimeframe,
    RiskSeverity,
)

# Bounds enforced by the normalizer and re-checked by the models.
MAX_TITLE_LEN = 140
MAX_INVALIDATION_LEN = 180
MAX_RATIONALE = 3
MAX_BULLETS = 3
MAX_RISKS = 2
MAX_TAGS = 8

CandidateIdea = Mapping[str, Any]


class TradeIdea(BaseModel):
    """A strategic or opportunistic position idea."""

    model_config = ConfigDict(frozen=True)

    idea_id: str
    category: Literal["strategic", "opportunistic"]
    symbol: Optional[str] = None
    action: IdeaAction = IdeaAction.WATCH
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    timeframe: IdeaTimeframe = IdeaTimeframe.WEEKS
    invalidation: str = Field(min_length=1, max_length=MAX_INVALIDATION_LEN)
    rationale: list[str] = Field(default_factory=list, max_length=MAX_RATIONALE)
    risks: list[str] = Field(default_factory=list, max_length=MAX_RISKS)
    tags: list[str] = Field(default_factory=list)
    opportunistic_type: Optional[str] = None


class RiskIdea(BaseModel):
    """A market or symbol-level risk alert shown at the end of the feed."""

    model_config = ConfigDict(frozen=True)

    idea_id: str
    category: Literal["risk"] = "risk"
    symbol: Optional[str] = None
    severity: RiskSeverity = RiskSeverity.MEDIUM
    title: str = Field(max_length=MAX_TITLE_LEN)
    bullets: list[str] = Field(default_factory=list, max_length=MAX_BULLETS)
    tags: list[str] = Field(default_factory=list)


CanonicalIdea = Annotated[Union[TradeIdea, RiskIdea], Field(discriminator="category")]

CANONICAL_IDEA_ADAPTER: TypeAdapter[Union[TradeIdea, RiskIdea]] = TypeAdapter(CanonicalIdea)
CANONICAL_IDEA_LIST_ADAPTER: TypeAdapter[list[Union[TradeIdea, RiskIdea]]] = TypeAdapter(
    list[CanonicalIdea]
)


class UserAgentProfile(BaseModel):
    """Per-user personalization knobs.

    ``focus`` near 1 favours opportunistic ideas over strategic ones, near 0
    the reverse. ``risk_level`` near 0 means a cautious user. Missing or
    unparseable values default to 0.5.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    focus: float = 0.5
    risk_level: float = 0.5
    horizon: Optional[str] = None

    @field_validator("focus", "risk_level", mode="before")
    @classmethod
    def default_missing(cls, v: object) -> float:
        if v is None:
            return 0.5
        try:
            value = float(v)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5
        return value if value == value else 0.5


class UserRecommendationSet(BaseModel):
    """A user's ordered feed for one date (strategic, opportunistic, risk)."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    rec_date: date
    items: list[CanonicalIdea] = []
