"""
Signal Desk — CLI entry point.

All commands follow this pattern:
  1. Load ``AppConfig`` via ``load_config()``.
  2. Configure logging.
  3. Validate inputs.
  4. Execute action (DB init, data load, daily run, scoring, etc.).
  5. Report result to stdout.

Install and run::

    pip install -e .
    signal-desk --help
    signal-desk init-db
    signal-desk validate-config
    signal-desk load-day --file data/day.json
    signal-desk run-daily --date 2026-03-02
    signal-desk score --file assets.json --positions positions.json
    signal-desk show-feed --user u-1 --date 2026-03-02
    signal-desk recent-runs --limit 10
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer

app = typer.Typer(
    name="signal-desk",
    help="Signal Desk — technical signal scoring and daily recommendation distribution.",
    add_completion=False,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _load_config_or_exit(config_path: Optional[str] = None):
    """Load AppConfig, printing a friendly error and exiting on failure."""
    from signal_desk.config import load_config

    try:
        cfg_path = Path(config_path) if config_path else None
        return load_config(cfg_path)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)
    except Exception as exc:
        typer.echo(f"[ERROR] Config validation failed: {exc}", err=True)
        raise typer.Exit(code=1)


def _configure_logging(config):
    """Set up logging from config."""
    from signal_desk.utils.logging import configure_logging
    configure_logging(config.logging)


def _read_json_or_exit(path_str: str, label: str) -> Any:
    path = Path(path_str)
    if not path.exists():
        typer.echo(f"[ERROR] {label} file not found: {path}", err=True)
        raise typer.Exit(code=1)
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        typer.echo(f"[ERROR] JSON parse error in {path}: {exc}", err=True)
        raise typer.Exit(code=1)


def _parse_date_or_exit(value: Optional[str]):
    from signal_desk.utils.time_utils import parse_run_date

    try:
        return parse_run_date(value)
    except ValueError as exc:
        typer.echo(f"[ERROR] {exc}", err=True)
        raise typer.Exit(code=1)


# ── Commands ──────────────────────────────────────────────────────────────────

@app.command("init-db")
def init_db(
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config (e.g. data/db/test.db).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Initialize the SQLite database and apply the full schema.

    Safe to run multiple times — all DDL uses IF NOT EXISTS.
    Also runs pending schema migrations.
    """
    from signal_desk.db.connection import get_connection
    from signal_desk.db.migrations import run_migrations
    from signal_desk.db.schema import ALL_TABLE_NAMES, apply_schema

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    target_path = db_path or config.database.db_path
    typer.echo(f"Initializing database at: {target_path}")

    with get_connection(
        target_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        apply_schema(conn)
        migrations_applied = run_migrations(conn)

    typer.echo(f"  Tables: {len(ALL_TABLE_NAMES)} created/verified.")
    typer.echo(f"  Migrations applied: {migrations_applied}")
    typer.echo("[OK] Database ready.")


@app.command("validate-config")
def validate_config(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file (default: config/default.toml).",
    ),
    show_full: bool = typer.Option(
        False,
        "--full",
        help="Print full config including all fields.",
    ),
) -> None:
    """Validate the configuration file and print parsed values.

    Exits with code 1 if the config fails validation.
    """
    config = _load_config_or_exit(config_path)
    sig = config.signals
    dist = config.distribution

    typer.echo("Configuration validated successfully.")
    typer.echo("")
    typer.echo(f"  Database path:     {config.database.db_path}")
    typer.echo(f"  RSI bands:         {sig.rsi_os} / {sig.rsi_ob}")
    typer.echo(f"  Volume threshold:  {sig.vol_thresh}")
    typer.echo(f"  Min confluence:    {sig.min_confluence}")
    typer.echo(f"  Base confidence:   {dist.base_min_confidence}")
    typer.echo(
        f"  Caps (S/O/R):      {dist.strategic_cap}/{dist.opportunistic_cap}/{dist.risk_cap}"
    )
    typer.echo(f"  Workers:           {dist.max_workers}")
    typer.echo(f"  Generator model:   {config.generator.model}")
    typer.echo(f"  Generator API key: {'set' if config.generator.api_key else 'not set (fallback)'}")
    typer.echo(f"  Log level:         {config.logging.level}")
    typer.echo(f"  Debug mode:        {config.debug}")

    if show_full:
        typer.echo("")
        typer.echo("Full config (JSON):")
        typer.echo(
            json.dumps(
                config.model_dump(mode="json", exclude={"generator": {"api_key": True}}),
                indent=2,
            )
        )

    typer.echo("")
    typer.echo("[OK] Config is valid.")


@app.command("load-day")
def load_day(
    bundle_file: str = typer.Option(
        ...,
        "--file",
        "-f",
        help="JSON bundle with date, regime, crisis, metrics, bars and users.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Load one day of market context (and users) into the database.

    \b
    Bundle shape:
      {
        "date":    "2026-03-02",
        "regime":  {"regime": "risk_on", "volatility_regime": "normal", ...},
        "crisis":  {"is_active": false, "summary": null},
        "metrics": [{"symbol": "AAPL", "rsi_14": 55, "sma_50": 180, ...}],
        "bars":    [{"symbol": "AAPL", "close": 190, "change_pct": 0.8}],
        "users":   [{"user_id": "u-1", "focus": 0.5, "risk_level": 0.5}]
      }

    Every section except ``date`` is optional. Uses UPSERT semantics.
    """
    from pydantic import ValidationError

    from signal_desk.db.connection import get_connection
    from signal_desk.db.migrations import initialize_database
    from signal_desk.db.repositories.market_repo import MarketContextRepository
    from signal_desk.db.repositories.user_repo import UserRepository
    from signal_desk.models.idea import UserAgentProfile
    from signal_desk.models.market import DailyBar, MarketMetric
    from signal_desk.models.regime import CrisisState, RegimeState

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    bundle = _read_json_or_exit(bundle_file, "Bundle")
    if not isinstance(bundle, dict) or "date" not in bundle:
        typer.echo("[ERROR] Bundle must be an object with a 'date' field.", err=True)
        raise typer.Exit(code=1)

    day = _parse_date_or_exit(bundle["date"])

    try:
        regime = (
            RegimeState(**{**bundle["regime"], "state_date": day}) if bundle.get("regime") else None
        )
        crisis = (
            CrisisState(**{**bundle["crisis"], "state_date": day}) if bundle.get("crisis") else None
        )
        metrics = [MarketMetric(**{**m, "metric_date": day}) for m in bundle.get("metrics", [])]
        bars = [DailyBar(**{**b, "bar_date": day}) for b in bundle.get("bars", [])]
        users = [
            (u, UserAgentProfile(user_id=u["user_id"], focus=u.get("focus"),
                                 risk_level=u.get("risk_level"), horizon=u.get("horizon")))
            for u in bundle.get("users", [])
        ]
    except (ValidationError, KeyError, TypeError) as exc:
        typer.echo(f"[ERROR] Bundle validation failed: {exc}", err=True)
        raise typer.Exit(code=1)

    with get_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        initialize_database(conn)
        market = MarketContextRepository(conn)
        if regime is not None:
            market.upsert_regime(regime)
        if crisis is not None:
            market.upsert_crisis(crisis)
        market.upsert_metrics(metrics)
        market.upsert_bars(bars)

        user_repo = UserRepository(conn)
        for raw, profile in users:
            user_repo.upsert_user(profile.user_id, raw.get("email"), raw.get("created_at"))
            user_repo.upsert_profile(profile)

    typer.echo(f"Loaded {day}:")
    typer.echo(f"  Regime:  {regime.regime if regime else '(none)'}")
    typer.echo(f"  Crisis:  {crisis.is_active if crisis else '(none)'}")
    typer.echo(f"  Metrics: {len(metrics)}  Bars: {len(bars)}  Users: {len(users)}")
    typer.echo("[OK] Day loaded.")


@app.command("run-daily")
def run_daily(
    run_date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Business date YYYY-MM-DD (default: today UTC).",
    ),
    db_path: Optional[str] = typer.Option(
        None,
        "--db-path",
        help="Override DB path from config.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Build the canonical idea pool and every user's feed for a date.

    Re-running a date replaces that date's ideas and feeds.
    Exits with code 1 if the run fails, 2 if some users failed.
    """
    from signal_desk.errors import SignalDeskError
    from signal_desk.pipeline.daily_distribution import DailyDistributionOrchestrator

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    day = _parse_date_or_exit(run_date)

    orchestrator = DailyDistributionOrchestrator(config=config, db_path=db_path)
    try:
        summary = orchestrator.run(day)
    except SignalDeskError as exc:
        typer.echo(f"[ERROR] Daily run failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Daily distribution {summary.run_date} | status={summary.status}")
    typer.echo(f"  Generator:     {summary.generator_mode} ({summary.generator_model})")
    typer.echo(
        f"  Idea pool:     strategic={summary.strategic} "
        f"opportunistic={summary.opportunistic} risk={summary.risk}"
    )
    typer.echo(f"  Users:         {summary.users_processed} ok, {summary.users_failed} failed")
    for err in summary.errors[:5]:
        typer.echo(f"  ! {err}", err=True)

    if summary.status == "success":
        typer.echo("[OK] Run complete.")
    elif summary.status == "partial":
        raise typer.Exit(code=2)
    else:
        raise typer.Exit(code=1)


@app.command("score")
def score(
    assets_file: str = typer.Option(
        ...,
        "--file",
        "-f",
        help="JSON array of asset snapshots (symbol, price, changePercent, indicators).",
    ),
    positions_file: Optional[str] = typer.Option(
        None,
        "--positions",
        help="Optional JSON array of positions to check against their stops.",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Score asset snapshots and print confluence results plus alerts as JSON."""
    from pydantic import TypeAdapter, ValidationError

    from signal_desk.models.market import AssetSnapshot, Position
    from signal_desk.signals.alerts import score_assets, synthesize_alerts

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    try:
        assets = TypeAdapter(list[AssetSnapshot]).validate_python(
            _read_json_or_exit(assets_file, "Assets")
        )
        positions = (
            TypeAdapter(list[Position]).validate_python(
                _read_json_or_exit(positions_file, "Positions")
            )
            if positions_file
            else []
        )
    except ValidationError as exc:
        typer.echo(f"[ERROR] Input validation failed: {exc}", err=True)
        raise typer.Exit(code=1)

    scored = score_assets(assets, config.signals)
    alerts = synthesize_alerts(assets, config.signals, positions)

    out = {
        "confluence": [
            {"symbol": s.asset.symbol, **s.confluence.model_dump(mode="json")} for s in scored
        ],
        "alerts": [a.model_dump(mode="json") for a in alerts],
    }
    typer.echo(json.dumps(out, indent=2))


@app.command("show-feed")
def show_feed(
    user_id: str = typer.Option(..., "--user", help="User id."),
    rec_date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Feed date YYYY-MM-DD (default: today UTC).",
    ),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """Print a user's persisted feed for a date as JSON."""
    from signal_desk.db.connection import get_connection
    from signal_desk.db.migrations import initialize_database
    from signal_desk.db.repositories.feed_repo import UserRecommendationRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)
    day = _parse_date_or_exit(rec_date)

    with get_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        initialize_database(conn)
        feed = UserRecommendationRepository(conn).get(user_id, day)

    if feed is None:
        typer.echo(f"No feed for user={user_id} on {day}.", err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(feed.model_dump(mode="json"), indent=2))


@app.command("recent-runs")
def recent_runs(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of runs to show."),
    job_name: Optional[str] = typer.Option(None, "--job", help="Filter by job name."),
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to TOML config file.",
    ),
) -> None:
    """List the most recent job run records."""
    from signal_desk.db.connection import get_connection
    from signal_desk.db.migrations import initialize_database
    from signal_desk.db.repositories.run_repo import JobRunRepository

    config = _load_config_or_exit(config_path)
    _configure_logging(config)

    with get_connection(
        config.database.db_path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    ) as conn:
        initialize_database(conn)
        runs = JobRunRepository(conn).get_recent(job_name=job_name, limit=limit)

    if not runs:
        typer.echo("No runs recorded.")
        return

    for r in runs:
        typer.echo(
            f"  {r.run_date} | {r.job_name:<24} | {r.status:<8} | "
            f"rows={r.rows_processed:<4} | started={r.started_at.isoformat()}"
            + (f" | {r.error_message}" if r.error_message else "")
        )


# ── Entry point ───────────────────────────────────────────────────────────────

if __name__ == "__main__":
    app()
