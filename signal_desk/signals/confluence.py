"""
Confluence scoring: weighted agreement among technical indicators.

Scoring rules (bull / bear weights)
-----------------------------------
    RSI        < rsi_os            → +2 bull   (oversold)
               < 40                → +1 bull   (weak)
               > rsi_ob            → +2 bear   (overbought)
               > 60                → +1 bear   (strong)
    MACD line  > signal            → +2 bull,  otherwise +2 bear
    MACD hist  > 0 / < 0           → +1 bull / +1 bear
    Price      <= lower band       → +2 bull
               >= upper band       → +2 bear
    Trend      price > SMA50 > SMA200 → +1 bull
               price < SMA50 < SMA200 → +1 bear
    Volume     ratio > vol_thresh  → +1 to the side of change_percent
                                     (>= 0 bull, < 0 bear)

Classification (first match wins)
---------------------------------
    net = bull − bear
    net >=  4              → STRONG_BUY   (high)
    net >=  min_confluence → BUY          (medium)
    net <= −4              → STRONG_SELL  (high)
    net <= −min_confluence → SELL         (medium)
    otherwise              → HOLD         (low)

Partial data
------------
Without both a MACD and a Bollinger block the asset is not scored at all:
the result is HOLD / net 0 / low with no points. Any other missing value
simply contributes nothing. The scorer never raises.
"""

from __future__ import annotations

from typing import Optional

from signal_desk.config import SignalConfig
from signal_desk.models.market import AssetSnapshot
from signal_desk.models.signal import ConfluenceResult, SignalPoint
from signal_desk.taxonomy.signal_taxonomy import (
    Recommendation,
    SignalConfidence,
    SignalSide,
)

STRONG_THRESHOLD = 4

# Fixed RSI bands around the configurable oversold/overbought levels.
RSI_WEAK = 40.0
RSI_STRONG = 60.0


def empty_confluence() -> ConfluenceResult:
    """The no-decision result used when indicator data is incomplete."""
    return ConfluenceResult(
        recommendation=Recommendation.HOLD,
        net=0,
        bull=0,
        bear=0,
        confidence=SignalConfidence.LOW,
        points=[],
        signals=[],
    )


def calculate_confluence(
    asset: AssetSnapshot,
    config: SignalConfig,
) -> ConfluenceResult:
    """Score one asset's indicators and classify it.

    Args:
        asset:  Snapshot carrying the indicator block and ``change_percent``.
        config: Oversold/overbought/volume/min-confluence thresholds.

    Returns:
        ``ConfluenceResult``; deterministic for a given (asset, config).
    """
    ind = asset.indicators
    if ind is None or ind.macd is None or ind.bollinger is None:
        return empty_confluence()

    tally = _Tally()
    price = ind.current_price if ind.current_price is not None else asset.price

    # ── RSI ───────────────────────────────────────────────────────────────────
    if ind.rsi is not None:
        if ind.rsi < config.rsi_os:
            tally.bull(2, "RSI", f"Oversold ({ind.rsi:.1f})", "RSI oversold (+2)")
        elif ind.rsi < RSI_WEAK:
            tally.bull(1, "RSI", f"Low RSI ({ind.rsi:.1f})", "RSI low (+1)")

        if ind.rsi > config.rsi_ob:
            tally.bear(2, "RSI", f"Overbought ({ind.rsi:.1f})", "RSI overbought (-2)")
        elif ind.rsi > RSI_STRONG:
            tally.bear(1, "RSI", f"High RSI ({ind.rsi:.1f})", "RSI high (-1)")

    # ── MACD ──────────────────────────────────────────────────────────────────
    if ind.macd.line > ind.macd.signal:
        tally.bull(2, "MACD", "Bullish crossover", "MACD bullish (+2)")
    else:
        tally.bear(2, "MACD", "Bearish crossover", "MACD bearish (-2)")

    if ind.macd.histogram > 0:
        tally.bull(1, "MACD", "Positive histogram", "MACD histogram positive (+1)")
    elif ind.macd.histogram < 0:
        tally.bear(1, "MACD", "Negative histogram", "MACD histogram negative (-1)")

    # ── Bollinger ─────────────────────────────────────────────────────────────
    if price is not None:
        if price <= ind.bollinger.lower:
            tally.bull(2, "BOLL", "Price at lower band", "Price at lower Bollinger band (+2)")
        if price >= ind.bollinger.upper:
            tally.bear(2, "BOLL", "Price at upper band", "Price at upper Bollinger band (-2)")

    # ── Trend (SMA alignment) ─────────────────────────────────────────────────
    if price is not None and ind.sma50 and ind.sma200:
        if price > ind.sma50 > ind.sma200:
            tally.bull(1, "SMA", "Uptrend (SMA50 > SMA200)", "Bullish SMA alignment (+1)")
        elif price < ind.sma50 < ind.sma200:
            tally.bear(1, "SMA", "Downtrend (SMA50 < SMA200)", "Bearish SMA alignment (-1)")

    # ── Volume spike ──────────────────────────────────────────────────────────
    if ind.volume_ratio is not None and ind.volume_ratio > config.vol_thresh:
        detail = f"Unusual volume x{ind.volume_ratio:.2f}"
        if asset.change_percent is not None:
            if asset.change_percent >= 0:
                tally.bull(1, "VOL", detail, "Volume spike on up move (+1)")
            else:
                tally.bear(1, "VOL", detail, "Volume spike on down move (-1)")

    return _classify(tally, config.min_confluence)


def _classify(tally: "_Tally", min_confluence: int) -> ConfluenceResult:
    net = tally.bull_total - tally.bear_total

    recommendation: Recommendation
    confidence: SignalConfidence
    if net >= STRONG_THRESHOLD:
        recommendation, confidence = Recommendation.STRONG_BUY, SignalConfidence.HIGH
    elif net >= min_confluence:
        recommendation, confidence = Recommendation.BUY, SignalConfidence.MEDIUM
    elif net <= -STRONG_THRESHOLD:
        recommendation, confidence = Recommendation.STRONG_SELL, SignalConfidence.HIGH
    elif net <= -min_confluence:
        recommendation, confidence = Recommendation.SELL, SignalConfidence.MEDIUM
    else:
        recommendation, confidence = Recommendation.HOLD, SignalConfidence.LOW

    return ConfluenceResult(
        recommendation=recommendation,
        net=net,
        bull=tally.bull_total,
        bear=tally.bear_total,
        confidence=confidence,
        points=list(tally.points),
        signals=list(tally.signals),
    )


class _Tally:
    """Accumulates weighted bull/bear points and their explanations."""

    def __init__(self) -> None:
        self.bull_total = 0
        self.bear_total = 0
        self.points: list[str] = []
        self.signals: list[SignalPoint] = []

    def bull(self, weight: int, indicator: str, detail: str, point: Optional[str] = None) -> None:
        self.bull_total += weight
        self._record(SignalSide.BULL, weight, indicator, detail, point)

    def bear(self, weight: int, indicator: str, detail: str, point: Optional[str] = None) -> None:
        self.bear_total += weight
        self._record(SignalSide.BEAR, weight, indicator, detail, point)

    def _record(
        self,
        side: SignalSide,
        weight: int,
        indicator: str,
        detail: str,
        point: Optional[str],
    ) -> None:
        self.signals.append(
            SignalPoint(indicator=indicator, side=side, weight=weight, detail=detail)
        )
        if point:
            self.points.append(point)
