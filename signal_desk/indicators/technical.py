"""
Technical indicators from raw OHLCV history.

Purpose
-------
Turns close/high/low/volume series (oldest first) into the ``Indicators``
block the confluence scorer consumes, and wraps a quote plus history into an
``AssetSnapshot``.

Indicator definitions
---------------------
- **RSI(14)**: Wilder smoothing. First average over the first 14 diffs, then
  ``avg = (avg * 13 + x) / 14``. No losses → 100.
- **MACD(12, 26, 9)**: EMA series seeded with the SMA of the first ``period``
  values. Line = EMA12 − EMA26 (aligned on the latest bars), signal = EMA9 of
  the line, histogram = line − signal.
- **Bollinger(20, 2)**: mean ± 2 population standard deviations of the last
  20 closes.
- **SMA50 / SMA200**: ``None`` until enough history exists.
- **ATR(14)**: Wilder-smoothed true range.
- **Volume ratio**: last volume / mean of the last 20 volumes.

Missing data handling
---------------------
Fewer than 30 closes → ``compute_indicators`` returns ``None``. Individual
indicators that need more history than is available come back as ``None``;
the scorer treats a missing MACD or Bollinger block as "no decision".
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from signal_desk.models.market import AssetSnapshot, BollingerBands, Indicators, MacdValues

MIN_HISTORY_BARS = 30


def sma(values: Sequence[float], period: int) -> Optional[float]:
    """Simple moving average of the last ``period`` values."""
    if period <= 0 or len(values) < period:
        return None
    return sum(values[-period:]) / period


def ema_series(values: Sequence[float], period: int) -> list[float]:
    """EMA series seeded with the SMA of the first ``period`` values.

    The returned list starts at index ``period - 1`` of the input.
    """
    if period <= 0 or len(values) < period:
        return []
    k = 2.0 / (period + 1)
    prev = sum(values[:period]) / period
    out = [prev]
    for value in values[period:]:
        prev = value * k + prev * (1.0 - k)
        out.append(prev)
    return out


def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """Wilder RSI of the close series."""
    if len(closes) <= period:
        return None

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        diff = closes[i] - closes[i - 1]
        gains += max(diff, 0.0)
        losses += max(-diff, 0.0)
    avg_gain = gains / period
    avg_loss = losses / period

    for i in range(period + 1, len(closes)):
        diff = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (period - 1) + max(diff, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-diff, 0.0)) / period

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def macd(closes: Sequence[float]) -> Optional[MacdValues]:
    """MACD(12, 26, 9) at the latest bar."""
    fast = ema_series(closes, 12)
    slow = ema_series(closes, 26)
    if not fast or not slow:
        return None

    n = min(len(fast), len(slow))
    line = [f - s for f, s in zip(fast[-n:], slow[-n:])]
    signal_series = ema_series(line, 9)
    if not signal_series:
        return None

    signal = signal_series[-1]
    value = line[-1]
    return MacdValues(line=value, signal=signal, histogram=value - signal)


def bollinger(
    closes: Sequence[float],
    period: int = 20,
    num_std: float = 2.0,
) -> Optional[BollingerBands]:
    """Bollinger bands over the last ``period`` closes (population std)."""
    if len(closes) < period:
        return None
    window = closes[-period:]
    mean = sum(window) / period
    variance = sum((x - mean) ** 2 for x in window) / period
    sd = math.sqrt(variance)
    return BollingerBands(upper=mean + num_std * sd, middle=mean, lower=mean - num_std * sd)


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> Optional[float]:
    """Wilder-smoothed Average True Range."""
    if min(len(highs), len(lows), len(closes)) <= period:
        return None

    n = min(len(highs), len(lows), len(closes))
    true_ranges: list[float] = []
    for i in range(1, n):
        hl = highs[i] - lows[i]
        hc = abs(highs[i] - closes[i - 1])
        lc = abs(lows[i] - closes[i - 1])
        true_ranges.append(max(hl, hc, lc))
    if len(true_ranges) < period:
        return None

    value = sum(true_ranges[:period]) / period
    for tr in true_ranges[period:]:
        value = (value * (period - 1) + tr) / period
    return value


def volume_ratio(volumes: Sequence[float], window: int = 20) -> Optional[float]:
    """Latest volume relative to the mean of the last ``window`` volumes."""
    if len(volumes) < window:
        return None
    avg = sum(volumes[-window:]) / window
    if not avg:
        return None
    return volumes[-1] / avg


def compute_indicators(
    closes: Sequence[float],
    highs: Sequence[float] = (),
    lows: Sequence[float] = (),
    volumes: Sequence[float] = (),
) -> Optional[Indicators]:
    """Compute the full indicator block, or ``None`` with too little history.

    Args:
        closes:  Close prices, oldest first.
        highs:   High prices aligned with ``closes`` (ATR only).
        lows:    Low prices aligned with ``closes`` (ATR only).
        volumes: Volumes aligned with ``closes`` (volume ratio only).

    Returns:
        ``Indicators`` or ``None`` when fewer than 30 closes are available.
    """
    if len(closes) < MIN_HISTORY_BARS:
        return None
    return Indicators(
        rsi=rsi(closes, 14),
        macd=macd(closes),
        bollinger=bollinger(closes, 20, 2.0),
        sma50=sma(closes, 50),
        sma200=sma(closes, 200),
        atr=atr(highs, lows, closes, 14),
        volume_ratio=volume_ratio(volumes),
        current_price=closes[-1],
    )


def build_snapshot(
    symbol: str,
    closes: Sequence[float],
    highs: Sequence[float],
    lows: Sequence[float],
    volumes: Sequence[float] = (),
    quote_price: Optional[float] = None,
    previous_close: Optional[float] = None,
) -> Optional[AssetSnapshot]:
    """Build an ``AssetSnapshot`` from history plus an optional live quote.

    Non-finite values are dropped from each series before use. The price is
    the live quote when given, else the last close; ``change_percent`` is
    measured against ``previous_close`` (default: the second-to-last close).

    Returns:
        ``AssetSnapshot`` or ``None`` when any of close/high/low has fewer
        than 30 usable bars.
    """
    closes = _finite(closes)
    highs = _finite(highs)
    lows = _finite(lows)
    volumes = _finite(volumes)

    if min(len(closes), len(highs), len(lows)) < MIN_HISTORY_BARS:
        return None

    indicators = compute_indicators(closes, highs, lows, volumes)
    if indicators is None:
        return None

    price = quote_price if quote_price is not None else indicators.current_price
    prev = previous_close if previous_close is not None else closes[-2]
    change_percent = ((price - prev) / prev) * 100.0 if prev else 0.0

    return AssetSnapshot(
        symbol=symbol.upper(),
        price=price,
        change_percent=change_percent,
        indicators=indicators,
    )


def _finite(values: Sequence[float]) -> list[float]:
    out: list[float] = []
    for v in values:
        try:
            f = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(f):
            out.append(f)
    return out
