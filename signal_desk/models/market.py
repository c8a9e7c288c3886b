"""
Market data models: per-asset technical snapshots, open positions, and the
daily market tables the candidate selector reads.

``Indicators`` mirrors the indicator-source contract: every field may be
absent. Models accept both snake_case and camelCase keys so JSON produced by
the web client (``volumeRatio``, ``changePercent`` …) validates unchanged.
"""

from __future__ import annotations

from datetime import date
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class MacdValues(BaseModel):
    """MACD line, signal line and histogram at the latest bar."""

    model_config = _CAMEL

    line: float
    signal: float
    histogram: float


class BollingerBands(BaseModel):
    """Bollinger bands at the latest bar (``middle`` is optional)."""

    model_config = _CAMEL

    upper: float
    lower: float
    middle: Optional[float] = None


class Indicators(BaseModel):
    """Technical indicator block for one asset.

    Attributes:
        rsi: 14-period RSI (0–100).
        macd: MACD values, or ``None`` when history is too short.
        bollinger: Bollinger bands, or ``None`` when history is too short.
        sma50: 50-period simple moving average.
        sma200: 200-period simple moving average.
        volume_ratio: Latest volume divided by its 20-bar mean.
        atr: 14-period Average True Range.
        current_price: Close of the latest bar.
    """

    model_config = _CAMEL

    rsi: Optional[float] = None
    macd: Optional[MacdValues] = None
    bollinger: Optional[BollingerBands] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    volume_ratio: Optional[float] = None
    atr: Optional[float] = None
    current_price: Optional[float] = None


class AssetSnapshot(BaseModel):
    """Current quote plus indicator block for one symbol."""

    model_config = _CAMEL

    symbol: str
    price: Optional[float] = None
    change_percent: Optional[float] = None
    indicators: Optional[Indicators] = None


class Position(BaseModel):
    """An open or closed holding, owned by the portfolio service (read-only here)."""

    model_config = _CAMEL

    position_id: Optional[Union[int, str]] = None
    symbol: str
    buy_price: Optional[float] = None
    quantity: float = 0.0
    sell_date: Optional[date] = None

    @property
    def is_open(self) -> bool:
        return self.sell_date is None


class MarketMetric(BaseModel):
    """Daily derived metrics for one symbol (``market_metrics_daily``)."""

    model_config = ConfigDict(frozen=True)

    metric_date: date
    symbol: str
    rsi_14: Optional[float] = None
    relative_strength: Optional[float] = None
    volatility_20d: Optional[float] = None
    sma_50: Optional[float] = None
    sma_200: Optional[float] = None


class DailyBar(BaseModel):
    """Daily close and percent change for one symbol (``market_daily_bars``)."""

    model_config = ConfigDict(frozen=True)

    bar_date: date
    symbol: str
    close: Optional[float] = None
    change_pct: Optional[float] = None
