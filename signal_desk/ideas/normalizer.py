"""
Idea normalizer: the single validation boundary for generator output.

``normalize_idea`` coerces one raw idea of any shape into a bounded
``CanonicalIdea`` and never raises. Unknown or missing values take the
documented defaults:

    category     → strategic   (unless "risk" or "opportunistic")
    action       → WATCH
    timeframe    → weeks
    severity     → medium
    confidence   → clamped to [0, 1]; unparseable → 0
    invalidation → "Invalidation not provided"
    title        → "<SYMBOL or Market> risk"

List fields are trimmed, emptied entries dropped, and capped (rationale 3,
risks 2, bullets 3, tags 8). Tags are lower-cased.

Normalizing an already-canonical idea (its ``model_dump()``) returns an
equal idea.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Union

from signal_desk.models.idea import (
    MAX_BULLETS,
    MAX_INVALIDATION_LEN,
    MAX_RATIONALE,
    MAX_RISKS,
    MAX_TAGS,
    MAX_TITLE_LEN,
    CandidateIdea,
    RiskIdea,
    TradeIdea,
)
from signal_desk.taxonomy.signal_taxonomy import IdeaAction, IdeaTimeframe, RiskSeverity

DEFAULT_INVALIDATION = "Invalidation not provided"

_ACTIONS = {a.value for a in IdeaAction}
_SEVERITIES = {s.value for s in RiskSeverity}

Idea = Union[TradeIdea, RiskIdea]


@dataclass
class IdeaSections:
    """Canonical ideas partitioned by feed section, each in normalizer order."""

    strategic:     list[TradeIdea] = field(default_factory=list)
    opportunistic: list[TradeIdea] = field(default_factory=list)
    risk:          list[RiskIdea] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.strategic) + len(self.opportunistic) + len(self.risk)


def normalize_idea(raw: CandidateIdea | Any, index: int, run_date: str) -> Idea:
    """Coerce one raw generator idea into a ``CanonicalIdea``.

    Args:
        raw:      Untrusted idea; anything that is not a mapping counts as ``{}``.
        index:    0-based position in the generator output (used for ids).
        run_date: ISO run date (used for ids).

    Returns:
        ``TradeIdea`` or ``RiskIdea``.
    """
    row: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

    category = _text(row.get("category")).lower()
    symbol = _text(row.get("symbol")).upper() or None
    supplied_id = row.get("ideaId") or row.get("idea_id")
    idea_id = (
        str(supplied_id)
        if supplied_id
        else f"{category or 'idea'}-{symbol or 'market'}-{index + 1}-{run_date}"
    )
    tags = [t.lower() for t in _str_list(row.get("tags"))][:MAX_TAGS]

    if category == "risk":
        severity = _text(row.get("severity")).lower()
        bullets = row.get("bullets") if isinstance(row.get("bullets"), list) else row.get("rationale")
        return RiskIdea(
            idea_id=idea_id,
            symbol=symbol,
            severity=severity if severity in _SEVERITIES else RiskSeverity.MEDIUM,
            title=(_text(row.get("title")) or f"{symbol or 'Market'} risk")[:MAX_TITLE_LEN],
            bullets=_str_list(bullets)[:MAX_BULLETS],
            tags=tags,
        )

    action = _text(row.get("action")).upper()
    timeframe = _text(row.get("timeframe")).lower()
    invalidation = _text(row.get("invalidation")).strip()[:MAX_INVALIDATION_LEN].strip()
    opp_type = row.get("opportunistic_type") or row.get("opportunisticType")

    return TradeIdea(
        idea_id=idea_id,
        category="opportunistic" if category == "opportunistic" else "strategic",
        symbol=symbol,
        action=action if action in _ACTIONS else IdeaAction.WATCH,
        confidence=_clamp01(row.get("confidence")),
        timeframe=IdeaTimeframe.MONTHS if timeframe == "months" else IdeaTimeframe.WEEKS,
        invalidation=invalidation or DEFAULT_INVALIDATION,
        rationale=_str_list(row.get("rationale"))[:MAX_RATIONALE],
        risks=_str_list(row.get("risks"))[:MAX_RISKS],
        tags=tags,
        opportunistic_type=str(opp_type) if opp_type else None,
    )


def normalize_ideas(raw_ideas: Iterable[Any], run_date: str) -> list[Idea]:
    """Normalize a whole generator batch, preserving order."""
    return [normalize_idea(raw, i, run_date) for i, raw in enumerate(raw_ideas)]


def split_ideas(ideas: Iterable[Idea]) -> IdeaSections:
    """Partition canonical ideas by category, preserving relative order."""
    sections = IdeaSections()
    for idea in ideas:
        if isinstance(idea, RiskIdea):
            sections.risk.append(idea)
        elif idea.category == "opportunistic":
            sections.opportunistic.append(idea)
        else:
            sections.strategic.append(idea)
    return sections


def _text(value: Any) -> str:
    return str(value) if value else ""


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out = []
    for item in value:
        text = _text(item).strip()
        if text:
            out.append(text)
    return out


def _clamp01(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return max(0.0, min(1.0, number))
