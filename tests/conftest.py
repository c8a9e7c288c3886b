"""
Shared pytest fixtures for the Signal Desk test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied. Created anew for each test that requests it.
  - ``file_db``: Path to an initialized SQLite file under ``tmp_path`` (the
    daily orchestrator opens one connection per step and per user, so it
    cannot share an in-memory database).
  - Sample domain object factories for use in multiple test modules.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from typing import Callable, Generator, Optional

import pytest

from signal_desk.config import AppConfig, DatabaseConfig, DistributionConfig, SignalConfig
from signal_desk.db.connection import get_connection
from signal_desk.db.migrations import initialize_database, run_migrations
from signal_desk.db.schema import apply_schema
from signal_desk.models.idea import RiskIdea, TradeIdea
from signal_desk.models.market import (
    AssetSnapshot,
    BollingerBands,
    Indicators,
    MacdValues,
)

RUN_DATE = date(2026, 3, 2)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def file_db(tmp_path) -> str:
    """Path to an initialized SQLite database file."""
    db_file = str(tmp_path / "signal_desk_test.db")
    with get_connection(db_file) as conn:
        initialize_database(conn)
    return db_file


@pytest.fixture
def app_config(file_db) -> AppConfig:
    """AppConfig pointing at ``file_db``, users processed sequentially."""
    return AppConfig(
        database=DatabaseConfig(db_path=file_db),
        distribution=DistributionConfig(max_workers=1),
    )


@pytest.fixture
def signal_config() -> SignalConfig:
    """Default scorer thresholds: RSI 30/70, volume 2.0, min confluence 2."""
    return SignalConfig()


# ── Sample domain object factories ────────────────────────────────────────────

@pytest.fixture
def bullish_snapshot() -> AssetSnapshot:
    """Every indicator agrees on the bull side (bull 9, bear 0)."""
    return AssetSnapshot(
        symbol="BULL",
        price=90.0,
        change_percent=2.0,
        indicators=Indicators(
            rsi=25.0,
            macd=MacdValues(line=1.0, signal=0.2, histogram=0.4),
            bollinger=BollingerBands(upper=110.0, middle=101.0, lower=92.0),
            sma50=85.0,
            sma200=80.0,
            volume_ratio=3.0,
            atr=2.0,
            current_price=90.0,
        ),
    )


@pytest.fixture
def bearish_snapshot() -> AssetSnapshot:
    """Every indicator agrees on the bear side (bull 0, bear 9)."""
    return AssetSnapshot(
        symbol="BEAR",
        price=120.0,
        change_percent=-2.0,
        indicators=Indicators(
            rsi=80.0,
            macd=MacdValues(line=0.2, signal=1.0, histogram=-0.8),
            bollinger=BollingerBands(upper=110.0, middle=101.0, lower=92.0),
            sma50=130.0,
            sma200=140.0,
            volume_ratio=3.0,
            atr=3.0,
            current_price=120.0,
        ),
    )


@pytest.fixture
def make_trade_idea() -> Callable[..., TradeIdea]:
    """Factory for canonical trade ideas."""

    def _make(
        idea_id: str,
        confidence: float = 0.8,
        category: str = "strategic",
        symbol: Optional[str] = "AAPL",
        tags: Optional[list[str]] = None,
    ) -> TradeIdea:
        return TradeIdea(
            idea_id=idea_id,
            category=category,  # type: ignore[arg-type]
            symbol=symbol,
            confidence=confidence,
            invalidation="Close below 50-day SMA.",
            tags=tags or [],
        )

    return _make


@pytest.fixture
def make_risk_idea() -> Callable[..., RiskIdea]:
    """Factory for canonical risk ideas."""

    def _make(idea_id: str, symbol: Optional[str] = "XYZ", tags: Optional[list[str]] = None) -> RiskIdea:
        return RiskIdea(idea_id=idea_id, symbol=symbol, title=f"{symbol} risk", tags=tags or ["risk"])

    return _make
