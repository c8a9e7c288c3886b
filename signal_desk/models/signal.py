"""
Signal outputs: confluence classification, ATR risk levels and alerts.

All three are ephemeral: recomputed on every evaluation pass and never
persisted by this package.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from signal_desk.taxonomy.signal_taxonomy import (
    AlertType,
    Recommendation,
    SignalConfidence,
    SignalSide,
)


class SignalPoint(BaseModel):
    """One indicator's contribution to a confluence score."""

    model_config = ConfigDict(frozen=True)

    indicator: str
    side: SignalSide
    weight: int
    detail: str


class ConfluenceResult(BaseModel):
    """Classification of one asset from weighted indicator agreement.

    Attributes:
        recommendation: STRONG_BUY … STRONG_SELL.
        net: ``bull - bear``.
        bull: Sum of bullish weights.
        bear: Sum of bearish weights.
        confidence: high (strong), medium (plain buy/sell) or low (hold).
        points: Human-readable explanation per scored rule.
        signals: Structured breakdown of the same rules.
    """

    model_config = ConfigDict(frozen=True)

    recommendation: Recommendation
    net: int
    bull: int = 0
    bear: int = 0
    confidence: SignalConfidence
    points: list[str] = []
    signals: list[SignalPoint] = []


class RiskLevels(BaseModel):
    """ATR-based stop-loss / take-profit for an entry price.

    All fields are ``None`` when price or ATR was unavailable.
    """

    model_config = ConfigDict(frozen=True)

    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    atr_multiplier: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return self.stop_loss is None


class Alert(BaseModel):
    """A proactive (buy/sell) or reactive (stoploss) alert.

    Higher ``priority`` surfaces first; stop-loss alerts use 3, signal
    alerts use 2.
    """

    model_config = ConfigDict(frozen=True)

    alert_id: str
    type: AlertType
    symbol: str
    title: str
    priority: int
    confidence: SignalConfidence
    net: int = 0
    points: list[str] = []
    price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    atr_multiplier: Optional[float] = None
    drawdown_pct: Optional[float] = None
