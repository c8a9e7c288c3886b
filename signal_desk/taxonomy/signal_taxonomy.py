"""
Signal and idea taxonomy.

Technical-signal vocabulary:
  - ``Recommendation`` — confluence classification of one asset.
  - ``SignalConfidence`` — coarse confidence attached to a classification.
  - ``SignalSide``     — which side of the book an indicator point counts for.
  - ``AlertType``      — proactive buy/sell opportunity or reactive stop-loss.

Idea vocabulary (daily recommendation feed):
  - ``IdeaCategory``, ``IdeaAction``, ``IdeaTimeframe``, ``RiskSeverity``.

Every idea enum has a documented default used when generator output carries
an unknown value; see ``signal_desk.ideas.normalizer``.

This module has NO imports from any other ``signal_desk`` package.
"""

from enum import StrEnum


class Recommendation(StrEnum):
    """Confluence classification, strongest bullish to strongest bearish."""

    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"

    @property
    def is_buy(self) -> bool:
        return "BUY" in self.value

    @property
    def is_sell(self) -> bool:
        return "SELL" in self.value


class SignalConfidence(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SignalSide(StrEnum):
    BULL = "bull"
    BEAR = "bear"


class AlertType(StrEnum):
    BUY = "buy"
    SELL = "sell"
    STOPLOSS = "stoploss"


class IdeaCategory(StrEnum):
    """Feed section an idea belongs to. Unknown values → ``STRATEGIC``."""

    STRATEGIC = "strategic"
    OPPORTUNISTIC = "opportunistic"
    RISK = "risk"


class IdeaAction(StrEnum):
    """Suggested action on a trade idea. Unknown values → ``WATCH``."""

    BUY = "BUY"
    SELL = "SELL"
    WATCH = "WATCH"


class IdeaTimeframe(StrEnum):
    """Holding horizon of a trade idea. Unknown values → ``WEEKS``."""

    WEEKS = "weeks"
    MONTHS = "months"


class RiskSeverity(StrEnum):
    """Severity of a risk alert. Unknown values → ``MEDIUM``."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Feed ordering: strategic first, then opportunistic, then risk.
FEED_SECTION_ORDER: tuple[IdeaCategory, ...] = (
    IdeaCategory.STRATEGIC,
    IdeaCategory.OPPORTUNISTIC,
    IdeaCategory.RISK,
)

CRISIS_MODE_TAG = "crisis_mode"
