"""
Per-user feed policy.

Turns the day's canonical idea sections into one user's feed.

Threshold
---------
    min_confidence = base (0.45)
                   + bump (0.10) if risk_level < low_risk_threshold (0.3)
                   + bump (0.10) if crisis is active

Caps
----
    start           strategic 4, opportunistic 3, risk 4
    focus > 0.7   → strategic     = high_focus_strategic_cap (2)
    focus < 0.3   → opportunistic = low_focus_opportunistic_cap (1)
    crisis active → strategic     = min(strategic, 2)
                    opportunistic = min(opportunistic, 1)

Profile and crisis adjustments only ever lower a cap. The risk cap is not
touched by crisis mode.

Feed
----
Strategic and opportunistic items are filtered by ``confidence >=
min_confidence`` and then truncated to the cap, keeping normalizer order.
Risk items are truncated only. In crisis every output item gets a
``crisis_mode`` tag (no duplicates). Sections are concatenated strategic,
opportunistic, risk.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, TypeVar, Union

from signal_desk.config import DistributionConfig
from signal_desk.ideas.normalizer import IdeaSections
from signal_desk.models.idea import RiskIdea, TradeIdea, UserAgentProfile
from signal_desk.taxonomy.signal_taxonomy import CRISIS_MODE_TAG

_I = TypeVar("_I", TradeIdea, RiskIdea)


@dataclass(frozen=True)
class FeedPolicy:
    """Effective threshold and caps for one user on one date."""

    min_confidence:    float
    strategic_cap:     int
    opportunistic_cap: int
    risk_cap:          int
    crisis_active:     bool


def derive_policy(
    profile: UserAgentProfile,
    crisis_active: bool,
    config: DistributionConfig,
) -> FeedPolicy:
    """Compute a user's confidence threshold and category caps."""
    min_confidence = config.base_min_confidence
    if profile.risk_level < config.low_risk_threshold:
        min_confidence += config.low_risk_confidence_bump
    if crisis_active:
        min_confidence += config.crisis_confidence_bump

    strategic_cap = config.strategic_cap
    opportunistic_cap = config.opportunistic_cap
    risk_cap = config.risk_cap

    if profile.focus > config.high_focus_threshold:
        strategic_cap = min(strategic_cap, config.high_focus_strategic_cap)
    if profile.focus < config.low_focus_threshold:
        opportunistic_cap = min(opportunistic_cap, config.low_focus_opportunistic_cap)

    if crisis_active:
        strategic_cap = min(strategic_cap, config.crisis_strategic_cap)
        opportunistic_cap = min(opportunistic_cap, config.crisis_opportunistic_cap)

    return FeedPolicy(
        # 0.45 + 0.10 must compare equal to 0.55.
        min_confidence=round(min_confidence, 4),
        strategic_cap=strategic_cap,
        opportunistic_cap=opportunistic_cap,
        risk_cap=risk_cap,
        crisis_active=crisis_active,
    )


def apply_policy(sections: IdeaSections, policy: FeedPolicy) -> list[Union[TradeIdea, RiskIdea]]:
    """Filter, cap, tag and order the sections under ``policy``."""
    strategic = [i for i in sections.strategic if i.confidence >= policy.min_confidence]
    opportunistic = [i for i in sections.opportunistic if i.confidence >= policy.min_confidence]

    feed: list[Union[TradeIdea, RiskIdea]] = [
        *strategic[:policy.strategic_cap],
        *opportunistic[:policy.opportunistic_cap],
        *sections.risk[:policy.risk_cap],
    ]
    if policy.crisis_active:
        feed = [_with_tag(item, CRISIS_MODE_TAG) for item in feed]
    return feed


def personalize_feed(
    sections: IdeaSections,
    profile: UserAgentProfile,
    crisis_active: bool,
    config: DistributionConfig,
) -> list[Union[TradeIdea, RiskIdea]]:
    """One user's ordered feed for the day."""
    return apply_policy(sections, derive_policy(profile, crisis_active, config))


def _with_tag(item: _I, tag: str) -> _I:
    return item.model_copy(update={"tags": _dedupe([*item.tags, tag])})


def _dedupe(values: Sequence[str]) -> list[str]:
    return list(dict.fromkeys(values))
