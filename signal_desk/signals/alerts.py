"""
Alert synthesis: proactive signal alerts and reactive stop-loss alerts.

Usage flow
----------
1. score_assets(assets, config)
   -> list[ScoredAsset]  (snapshot + its ConfluenceResult)

2. build_signal_alerts(scored)
   -> list[Alert]  (priority 2; one per BUY-ish or SELL-ish classification)

3. build_stop_loss_alerts(positions, snapshots_by_symbol)
   -> list[Alert]  (priority 3; stop measured from the entry price)

4. synthesize_alerts(...) runs all of the above and sorts by priority
   descending, so stop-loss events surface above new opportunities.

Inputs are treated as a frozen snapshot for one evaluation pass and are
never mutated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from signal_desk.config import SignalConfig
from signal_desk.models.market import AssetSnapshot, Position
from signal_desk.models.signal import Alert, ConfluenceResult
from signal_desk.signals.confluence import calculate_confluence
from signal_desk.signals.risk_levels import compute_risk_levels, stop_multiplier
from signal_desk.taxonomy.signal_taxonomy import AlertType, SignalConfidence

logger = logging.getLogger(__name__)

SIGNAL_ALERT_PRIORITY = 2
STOPLOSS_ALERT_PRIORITY = 3


@dataclass(frozen=True)
class ScoredAsset:
    """An asset snapshot paired with its confluence classification."""

    asset:      AssetSnapshot
    confluence: ConfluenceResult


def score_assets(
    assets: Iterable[AssetSnapshot],
    config: SignalConfig,
) -> list[ScoredAsset]:
    """Attach a ``ConfluenceResult`` to every asset that has indicators."""
    return [
        ScoredAsset(asset=a, confluence=calculate_confluence(a, config))
        for a in assets
        if a.indicators is not None
    ]


def build_signal_alerts(scored: Iterable[ScoredAsset]) -> list[Alert]:
    """Emit a buy or sell alert for each non-HOLD classification.

    Each alert carries the ATR risk levels for an entry at the current price.
    """
    alerts: list[Alert] = []

    for sa in scored:
        asset = sa.asset
        conf = sa.confluence
        if asset.indicators is None:
            continue

        if conf.recommendation.is_buy:
            alert_type, prefix = AlertType.BUY, "buy"
        elif conf.recommendation.is_sell:
            alert_type, prefix = AlertType.SELL, "sell"
        else:
            continue

        levels = compute_risk_levels(asset.price, asset.indicators.atr, asset.indicators.rsi)
        alerts.append(
            Alert(
                alert_id=f"{prefix}-{asset.symbol}",
                type=alert_type,
                symbol=asset.symbol,
                title=f"{conf.recommendation.value.replace('_', ' ')} on {asset.symbol}",
                priority=SIGNAL_ALERT_PRIORITY,
                confidence=conf.confidence,
                net=conf.net,
                points=list(conf.points),
                price=asset.price,
                stop_loss=levels.stop_loss,
                take_profit=levels.take_profit,
                atr_multiplier=levels.atr_multiplier,
            )
        )

    return alerts


def build_stop_loss_alerts(
    positions: Iterable[Position],
    snapshots_by_symbol: Mapping[str, AssetSnapshot],
) -> list[Alert]:
    """Emit a stop-loss alert for each open position trading at or below its stop.

    The stop is ``buy_price − ATR × stop_multiplier(rsi)``, anchored on the
    entry, not on the current price. Closed positions, and positions whose
    symbol has no price/ATR, are skipped silently.
    """
    alerts: list[Alert] = []

    for p in positions:
        if not p.is_open or not p.buy_price:
            continue

        asset = snapshots_by_symbol.get(p.symbol)
        if asset is None or asset.indicators is None:
            continue
        atr = asset.indicators.atr
        if not atr or not asset.price:
            continue

        mult = stop_multiplier(asset.indicators.rsi)
        stop = p.buy_price - atr * mult
        if asset.price > stop:
            continue

        drawdown = (asset.price - p.buy_price) / p.buy_price * 100.0
        key = p.position_id if p.position_id is not None else p.symbol
        alerts.append(
            Alert(
                alert_id=f"sl-{key}",
                type=AlertType.STOPLOSS,
                symbol=p.symbol,
                title=f"Stop loss hit on {p.symbol}",
                priority=STOPLOSS_ALERT_PRIORITY,
                confidence=SignalConfidence.HIGH,
                price=asset.price,
                stop_loss=stop,
                atr_multiplier=mult,
                drawdown_pct=drawdown,
            )
        )
        logger.debug(
            "Stop loss triggered | symbol=%s price=%.4f stop=%.4f drawdown=%.2f%%",
            p.symbol, asset.price, stop, drawdown,
        )

    return alerts


def synthesize_alerts(
    assets: Iterable[AssetSnapshot],
    config: SignalConfig,
    positions: Iterable[Position] = (),
    snapshots_by_symbol: Optional[Mapping[str, AssetSnapshot]] = None,
) -> list[Alert]:
    """Proactive + reactive alerts for one evaluation pass, highest priority first.

    Args:
        assets:              Snapshots to score for buy/sell opportunities.
        config:              Scorer thresholds.
        positions:           Portfolio positions to check against their stops.
        snapshots_by_symbol: Current snapshot per symbol for the position
                             check. Defaults to an index of ``assets``.

    Returns:
        Alerts sorted by priority descending (stable within a priority).
    """
    assets = list(assets)
    if snapshots_by_symbol is None:
        snapshots_by_symbol = {a.symbol: a for a in assets}

    alerts = build_signal_alerts(score_assets(assets, config))
    alerts.extend(build_stop_loss_alerts(positions, snapshots_by_symbol))
    return sorted(alerts, key=lambda a: -a.priority)
