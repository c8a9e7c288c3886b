"""
Rule-based candidate selection for the daily idea pool.

Joins each ``MarketMetric`` to its ``DailyBar`` by symbol and sorts symbols
into three sections before any generator sees them.

Strategic (regime-dependent):
    risk_on  → close above SMA50 and SMA200, relative strength > 0.02,
               40 < RSI < 75                         score = rel_strength × 100
    risk_off → 20d volatility < 0.2, close above SMA200
                                                     score = (0.25 − vol) × 100
    other regimes produce no strategic candidates.

Opportunistic (any regime):
    RSI < 30 and close above SMA200 → mean_reversion  score = 30 − RSI
    RSI > 70 and close below SMA50  → momentum_fade   score = RSI − 70

Risk (any regime, severity high):
    20d volatility > 0.35 → extreme_volatility
    daily change < −5 %   → sharp_decline

Missing metrics take neutral values (RSI 50, everything else 0). Symbols
without a bar or a close are skipped. Strategic and opportunistic sections
are sorted by score descending; sections are capped at 6 / 5 / 6.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from signal_desk.models.market import DailyBar, MarketMetric
from signal_desk.models.regime import RegimeState

MAX_STRATEGIC_CANDIDATES = 6
MAX_OPPORTUNISTIC_CANDIDATES = 5
MAX_RISK_CANDIDATES = 6


@dataclass(frozen=True)
class Candidate:
    """One pre-selected symbol with the reason it was picked."""

    symbol: str
    reason: str
    score: float = 0.0
    type: Optional[str] = None
    severity: Optional[str] = None
    vol: Optional[float] = None
    change_pct: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Prompt-friendly dict, omitting empty fields."""
        out: dict[str, Any] = {"symbol": self.symbol, "reason": self.reason}
        if self.severity is None:
            out["score"] = round(self.score, 4)
        if self.type is not None:
            out["type"] = self.type
        if self.severity is not None:
            out["severity"] = self.severity
        if self.vol is not None:
            out["vol"] = self.vol
        if self.change_pct is not None:
            out["changePct"] = self.change_pct
        return out


@dataclass
class CandidatePool:
    """Candidates grouped by feed section."""

    strategic:     list[Candidate] = field(default_factory=list)
    opportunistic: list[Candidate] = field(default_factory=list)
    risk:          list[Candidate] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.strategic) + len(self.opportunistic) + len(self.risk)

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        return {
            "strategic": [c.to_dict() for c in self.strategic],
            "opportunistic": [c.to_dict() for c in self.opportunistic],
            "risk": [c.to_dict() for c in self.risk],
        }


def select_candidates(
    regime: RegimeState,
    metrics: Iterable[MarketMetric],
    bars: Iterable[DailyBar],
) -> CandidatePool:
    """Select strategic / opportunistic / risk candidates for one date.

    Args:
        regime:  Regime state for the date (defaults when absent upstream).
        metrics: Daily metrics per symbol.
        bars:    Daily bars per symbol.

    Returns:
        ``CandidatePool`` with sorted, capped sections.
    """
    bars_by_symbol = {b.symbol.upper(): b for b in bars}
    regime_name = (regime.regime or "").lower()
    pool = CandidatePool()

    for m in metrics:
        symbol = m.symbol.upper()
        bar = bars_by_symbol.get(symbol)
        if bar is None:
            continue
        close = _num(bar.close, None)
        if close is None:
            continue

        change_pct = _num(bar.change_pct, 0.0)
        rsi = _num(m.rsi_14, 50.0)
        rel_strength = _num(m.relative_strength, 0.0)
        vol = _num(m.volatility_20d, 0.0)
        above_sma50 = close > _num(m.sma_50, 0.0)
        above_sma200 = close > _num(m.sma_200, 0.0)

        if regime_name == "risk_on":
            if above_sma50 and above_sma200 and rel_strength > 0.02 and 40 < rsi < 75:
                pool.strategic.append(
                    Candidate(symbol=symbol, score=rel_strength * 100, reason="trend_aligned")
                )
        elif regime_name == "risk_off":
            if vol < 0.2 and above_sma200:
                pool.strategic.append(
                    Candidate(symbol=symbol, score=(0.25 - vol) * 100, reason="defensive_quality")
                )

        if rsi < 30 and above_sma200:
            pool.opportunistic.append(
                Candidate(symbol=symbol, score=30 - rsi, reason="oversold_bounce", type="mean_reversion")
            )
        if rsi > 70 and not above_sma50:
            pool.opportunistic.append(
                Candidate(symbol=symbol, score=rsi - 70, reason="overbought_reversal", type="momentum_fade")
            )

        if vol > 0.35:
            pool.risk.append(
                Candidate(symbol=symbol, reason="extreme_volatility", severity="high", vol=vol)
            )
        if change_pct < -5:
            pool.risk.append(
                Candidate(symbol=symbol, reason="sharp_decline", severity="high", change_pct=change_pct)
            )

    pool.strategic.sort(key=lambda c: -c.score)
    pool.opportunistic.sort(key=lambda c: -c.score)

    return CandidatePool(
        strategic=pool.strategic[:MAX_STRATEGIC_CANDIDATES],
        opportunistic=pool.opportunistic[:MAX_OPPORTUNISTIC_CANDIDATES],
        risk=pool.risk[:MAX_RISK_CANDIDATES],
    )


def _num(value: Any, fallback: Optional[float]) -> Optional[float]:
    if value is None:
        return fallback
    try:
        out = float(value)
    except (TypeError, ValueError):
        return fallback
    return out if math.isfinite(out) else fallback
