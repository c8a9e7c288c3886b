"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

Tables, in foreign key order:
  1. regime_state          (no FKs)   daily regime classification
  2. crisis_state          (no FKs)   daily crisis flag
  3. market_metrics_daily  (no FKs)   per (date, symbol) derived metrics
  4. market_daily_bars     (no FKs)   per (date, symbol) close / change
  5. users                 (no FKs)
  6. user_agent_profiles   (→ users)
  7. base_ideas            (no FKs)   canonical idea pool, replaced per date
  8. user_recommendations  (→ users)  per (user, date) feed, upserted
  9. job_runs              (no FKs)   one audit row per (job_name, run_date)

``ai_usage_log`` is added by migration ``0002``.

Dates are stored as ISO ``YYYY-MM-DD`` text; list/dict columns as JSON text.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_REGIME_STATE = """
CREATE TABLE IF NOT EXISTS regime_state (
    state_date        TEXT    NOT NULL PRIMARY KEY,
    regime            TEXT    NOT NULL DEFAULT 'transition',
    volatility_regime TEXT    NOT NULL DEFAULT 'normal',
    leadership        TEXT    NOT NULL DEFAULT '[]',
    macro_drivers     TEXT    NOT NULL DEFAULT '[]',
    risk_flags        TEXT    NOT NULL DEFAULT '[]',
    confidence        REAL    NOT NULL DEFAULT 0.5,
    created_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_CRISIS_STATE = """
CREATE TABLE IF NOT EXISTS crisis_state (
    state_date  TEXT    NOT NULL PRIMARY KEY,
    is_active   INTEGER NOT NULL DEFAULT 0,
    summary     TEXT,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_MARKET_METRICS = """
CREATE TABLE IF NOT EXISTS market_metrics_daily (
    metric_date       TEXT    NOT NULL,
    symbol            TEXT    NOT NULL,
    rsi_14            REAL,
    relative_strength REAL,
    volatility_20d    REAL,
    sma_50            REAL,
    sma_200           REAL,
    PRIMARY KEY (metric_date, symbol)
);
"""

_DDL_MARKET_BARS = """
CREATE TABLE IF NOT EXISTS market_daily_bars (
    bar_date    TEXT    NOT NULL,
    symbol      TEXT    NOT NULL,
    close       REAL,
    change_pct  REAL,
    PRIMARY KEY (bar_date, symbol)
);
"""

_DDL_USERS = """
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT    NOT NULL PRIMARY KEY,
    email       TEXT,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_USER_PROFILES = """
CREATE TABLE IF NOT EXISTS user_agent_profiles (
    user_id     TEXT    NOT NULL PRIMARY KEY REFERENCES users(user_id) ON DELETE CASCADE,
    focus       REAL,
    risk_level  REAL,
    horizon     TEXT,
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

# Generator-supplied idea ids are not guaranteed unique, so rows are keyed by
# their position in the day's pool.
_DDL_BASE_IDEAS = """
CREATE TABLE IF NOT EXISTS base_ideas (
    idea_date          TEXT    NOT NULL,
    position           INTEGER NOT NULL,
    idea_id            TEXT    NOT NULL,
    category           TEXT    NOT NULL CHECK (category IN ('strategic', 'opportunistic', 'risk')),
    symbol             TEXT,
    action             TEXT,
    confidence         REAL,
    timeframe          TEXT,
    severity           TEXT,
    payload            TEXT    NOT NULL,
    created_at         TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (idea_date, position)
);

CREATE INDEX IF NOT EXISTS idx_base_ideas_id
    ON base_ideas(idea_date, idea_id);
"""

_DDL_USER_RECOMMENDATIONS = """
CREATE TABLE IF NOT EXISTS user_recommendations (
    user_id     TEXT    NOT NULL REFERENCES users(user_id) ON DELETE CASCADE,
    rec_date    TEXT    NOT NULL,
    items       TEXT    NOT NULL DEFAULT '[]',
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (user_id, rec_date)
);
"""

_DDL_JOB_RUNS = """
CREATE TABLE IF NOT EXISTS job_runs (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL,
    job_name        TEXT    NOT NULL,
    run_date        TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started'
                        CHECK (status IN ('started', 'success', 'partial', 'failed')),
    config_snapshot TEXT    NOT NULL DEFAULT '{}',
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL,
    finished_at     TEXT,
    UNIQUE (job_name, run_date)
);

CREATE INDEX IF NOT EXISTS idx_job_runs_started
    ON job_runs(started_at DESC);
"""

_ALL_DDL: list[str] = [
    _DDL_REGIME_STATE,
    _DDL_CRISIS_STATE,
    _DDL_MARKET_METRICS,
    _DDL_MARKET_BARS,
    _DDL_USERS,
    _DDL_USER_PROFILES,
    _DDL_BASE_IDEAS,
    _DDL_USER_RECOMMENDATIONS,
    _DDL_JOB_RUNS,
]

ALL_TABLE_NAMES: list[str] = [
    "regime_state",
    "crisis_state",
    "market_metrics_daily",
    "market_daily_bars",
    "users",
    "user_agent_profiles",
    "base_ideas",
    "user_recommendations",
    "job_runs",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.
    Each statement uses ``IF NOT EXISTS`` guards.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
