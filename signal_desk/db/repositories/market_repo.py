"""
Repository for the daily market context: regime, crisis, metrics and bars.

These tables are filled by upstream daily jobs (or ``signal-desk load-day``);
the distribution run only reads them. Missing regime/crisis rows are reported
as ``None`` here; callers apply the model defaults.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from signal_desk.db.repositories.base import BaseRepository, from_json, to_json
from signal_desk.models.market import DailyBar, MarketMetric
from signal_desk.models.regime import CrisisState, RegimeState

logger = logging.getLogger(__name__)


class MarketContextRepository(BaseRepository):
    """Read/write access to ``regime_state``, ``crisis_state``,
    ``market_metrics_daily`` and ``market_daily_bars``."""

    # ── Regime / crisis ────────────────────────────────────────────────────────

    def get_regime(self, state_date: date) -> Optional[RegimeState]:
        row = self.fetchone(
            "SELECT * FROM regime_state WHERE state_date = ?;", (state_date.isoformat(),)
        )
        if row is None:
            return None
        return RegimeState(
            state_date=date.fromisoformat(row["state_date"]),
            regime=row["regime"],
            volatility_regime=row["volatility_regime"],
            leadership=from_json(row["leadership"], []),
            macro_drivers=from_json(row["macro_drivers"], []),
            risk_flags=from_json(row["risk_flags"], []),
            confidence=row["confidence"],
        )

    def upsert_regime(self, state: RegimeState) -> None:
        if state.state_date is None:
            raise ValueError("RegimeState.state_date is required for persistence.")
        self.execute(
            """
            INSERT INTO regime_state (
                state_date, regime, volatility_regime,
                leadership, macro_drivers, risk_flags, confidence
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(state_date) DO UPDATE SET
                regime            = excluded.regime,
                volatility_regime = excluded.volatility_regime,
                leadership        = excluded.leadership,
                macro_drivers     = excluded.macro_drivers,
                risk_flags        = excluded.risk_flags,
                confidence        = excluded.confidence;
            """,
            (
                state.state_date.isoformat(),
                state.regime,
                state.volatility_regime,
                to_json(state.leadership),
                to_json(state.macro_drivers),
                to_json(state.risk_flags),
                state.confidence,
            ),
        )

    def get_crisis(self, state_date: date) -> Optional[CrisisState]:
        row = self.fetchone(
            "SELECT * FROM crisis_state WHERE state_date = ?;", (state_date.isoformat(),)
        )
        if row is None:
            return None
        return CrisisState(
            state_date=date.fromisoformat(row["state_date"]),
            is_active=bool(row["is_active"]),
            summary=row["summary"],
        )

    def upsert_crisis(self, state: CrisisState) -> None:
        if state.state_date is None:
            raise ValueError("CrisisState.state_date is required for persistence.")
        self.execute(
            """
            INSERT INTO crisis_state (state_date, is_active, summary)
            VALUES (?, ?, ?)
            ON CONFLICT(state_date) DO UPDATE SET
                is_active = excluded.is_active,
                summary   = excluded.summary;
            """,
            (state.state_date.isoformat(), int(state.is_active), state.summary),
        )

    # ── Metrics / bars ─────────────────────────────────────────────────────────

    def get_metrics(self, metric_date: date) -> list[MarketMetric]:
        rows = self.fetchall(
            "SELECT * FROM market_metrics_daily WHERE metric_date = ? ORDER BY symbol;",
            (metric_date.isoformat(),),
        )
        return [
            MarketMetric(
                metric_date=date.fromisoformat(r["metric_date"]),
                symbol=r["symbol"],
                rsi_14=r["rsi_14"],
                relative_strength=r["relative_strength"],
                volatility_20d=r["volatility_20d"],
                sma_50=r["sma_50"],
                sma_200=r["sma_200"],
            )
            for r in rows
        ]

    def upsert_metrics(self, metrics: list[MarketMetric]) -> int:
        self.executemany(
            """
            INSERT INTO market_metrics_daily (
                metric_date, symbol, rsi_14, relative_strength,
                volatility_20d, sma_50, sma_200
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(metric_date, symbol) DO UPDATE SET
                rsi_14            = excluded.rsi_14,
                relative_strength = excluded.relative_strength,
                volatility_20d    = excluded.volatility_20d,
                sma_50            = excluded.sma_50,
                sma_200           = excluded.sma_200;
            """,
            [
                (
                    m.metric_date.isoformat(),
                    m.symbol.upper(),
                    m.rsi_14,
                    m.relative_strength,
                    m.volatility_20d,
                    m.sma_50,
                    m.sma_200,
                )
                for m in metrics
            ],
        )
        return len(metrics)

    def get_bars(self, bar_date: date) -> list[DailyBar]:
        rows = self.fetchall(
            "SELECT * FROM market_daily_bars WHERE bar_date = ? ORDER BY symbol;",
            (bar_date.isoformat(),),
        )
        return [
            DailyBar(
                bar_date=date.fromisoformat(r["bar_date"]),
                symbol=r["symbol"],
                close=r["close"],
                change_pct=r["change_pct"],
            )
            for r in rows
        ]

    def upsert_bars(self, bars: list[DailyBar]) -> int:
        self.executemany(
            """
            INSERT INTO market_daily_bars (bar_date, symbol, close, change_pct)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(bar_date, symbol) DO UPDATE SET
                close      = excluded.close,
                change_pct = excluded.change_pct;
            """,
            [(b.bar_date.isoformat(), b.symbol.upper(), b.close, b.change_pct) for b in bars],
        )
        return len(bars)
