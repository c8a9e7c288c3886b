"""
ATR-based stop-loss / take-profit levels.

The stop distance widens when momentum is weak and tightens when it is
strong:

    RSI > 60           → stop = entry − 2.0 × ATR
    RSI < 40           → stop = entry − 2.5 × ATR
    otherwise / no RSI → stop = entry − 2.2 × ATR

Take-profit sits at a fixed 2.5 reward/risk ratio on the buy side:

    take_profit − entry = 2.5 × (entry − stop_loss)

Used both for proactive alerts (entry = current price) and reactive
stop-loss checks (entry = the position's buy price).
"""

from __future__ import annotations

from typing import Optional

from signal_desk.models.signal import RiskLevels

REWARD_RISK_RATIO = 2.5

_MULT_STRONG = 2.0
_MULT_WEAK = 2.5
_MULT_NEUTRAL = 2.2


def stop_multiplier(rsi: Optional[float]) -> float:
    """ATR multiple for the stop distance under the current RSI regime."""
    if rsi is not None and rsi > 60:
        return _MULT_STRONG
    if rsi is not None and rsi < 40:
        return _MULT_WEAK
    return _MULT_NEUTRAL


def compute_risk_levels(
    price: Optional[float],
    atr: Optional[float],
    rsi: Optional[float],
) -> RiskLevels:
    """Stop-loss and take-profit for an entry at ``price``.

    Returns:
        ``RiskLevels`` with all fields ``None`` when price or ATR is missing
        or zero.
    """
    if not price or not atr:
        return RiskLevels()

    mult = stop_multiplier(rsi)
    distance = atr * mult
    return RiskLevels(
        stop_loss=price - distance,
        take_profit=price + distance * REWARD_RISK_RATIO,
        atr_multiplier=mult,
    )
