"""
End-to-end tests for the Typer CLI.

Each test writes a throwaway TOML config pointing at a database under
``tmp_path`` and invokes commands through ``typer.testing.CliRunner``.
Logging setup is patched out so handlers never bind to the runner's streams.

What we test
------------
1. init-db creates the schema; validate-config reports the parsed values.
2. load-day → run-daily → show-feed round trip; recent-runs lists the run.
3. score prints confluence results and alerts as JSON.
4. Bad inputs exit with code 1 and an [ERROR] message.
"""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from signal_desk import cli
from signal_desk.db.connection import get_connection
from signal_desk.db.schema import ALL_TABLE_NAMES, get_existing_tables

runner = CliRunner()

BUNDLE = {
    "date": "2026-03-02",
    "regime": {"regime": "risk_on", "volatility_regime": "normal", "leadership": ["tech"]},
    "crisis": {"is_active": False},
    "metrics": [
        {"symbol": "AAPL", "rsi_14": 55, "relative_strength": 0.1, "volatility_20d": 0.15,
         "sma_50": 150, "sma_200": 140},
        {"symbol": "XYZ", "rsi_14": 24, "volatility_20d": 0.5, "sma_50": 70, "sma_200": 50},
    ],
    "bars": [
        {"symbol": "AAPL", "close": 160, "change_pct": 1.0},
        {"symbol": "XYZ", "close": 60, "change_pct": -7.0},
    ],
    "users": [
        {"user_id": "u-1", "email": "u1@example.com", "created_at": "2026-01-01T00:00:00Z"},
        {"user_id": "u-2", "risk_level": 0.2, "created_at": "2026-01-02T00:00:00Z"},
    ],
}


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    monkeypatch.setattr(cli, "_configure_logging", lambda config: None)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("SIGNAL_DESK_DB_PATH", raising=False)


@pytest.fixture
def config_file(tmp_path) -> str:
    db_path = (tmp_path / "cli.db").as_posix()
    path = tmp_path / "test.toml"
    path.write_text(
        f'[database]\ndb_path = "{db_path}"\n'
        '[distribution]\nmax_workers = 1\n'
        '[logging]\nlog_file = ""\n'
    )
    return str(path)


@pytest.fixture
def bundle_file(tmp_path) -> str:
    path = tmp_path / "day.json"
    path.write_text(json.dumps(BUNDLE))
    return str(path)


def _invoke(*args: str):
    return runner.invoke(cli.app, list(args))


class TestSetupCommands:
    def test_init_db(self, config_file, tmp_path):
        result = _invoke("init-db", "--config", config_file)
        assert result.exit_code == 0, result.output
        assert "[OK] Database ready." in result.output

        with get_connection(str(tmp_path / "cli.db")) as conn:
            assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(conn))

    def test_validate_config(self, config_file):
        result = _invoke("validate-config", "--config", config_file, "--full")
        assert result.exit_code == 0, result.output
        assert "RSI bands:         30.0 / 70.0" in result.output
        assert "not set (fallback)" in result.output
        assert '"api_key"' not in result.output

    def test_missing_config(self, tmp_path):
        result = _invoke("validate-config", "--config", str(tmp_path / "nope.toml"))
        assert result.exit_code == 1
        assert "[ERROR]" in result.output


class TestDailyFlow:
    def test_load_run_show(self, config_file, bundle_file):
        result = _invoke("load-day", "--file", bundle_file, "--config", config_file)
        assert result.exit_code == 0, result.output
        assert "Metrics: 2  Bars: 2  Users: 2" in result.output

        result = _invoke("run-daily", "--date", "2026-03-02", "--config", config_file)
        assert result.exit_code == 0, result.output
        assert "status=success" in result.output
        assert "strategic=1 opportunistic=1 risk=2" in result.output

        result = _invoke("show-feed", "--user", "u-2", "--date", "2026-03-02", "--config", config_file)
        assert result.exit_code == 0, result.output
        feed = json.loads(result.output)
        # Cautious user: the 0.53 opportunistic idea is filtered out.
        assert [i["category"] for i in feed["items"]] == ["strategic", "risk", "risk"]

        result = _invoke("recent-runs", "--config", config_file)
        assert result.exit_code == 0, result.output
        assert "recommendations_daily" in result.output
        assert "success" in result.output

    def test_show_feed_missing(self, config_file):
        result = _invoke("show-feed", "--user", "ghost", "--date", "2026-03-02", "--config", config_file)
        assert result.exit_code == 1

    def test_recent_runs_empty(self, config_file):
        result = _invoke("recent-runs", "--config", config_file)
        assert result.exit_code == 0
        assert "No runs recorded." in result.output

    def test_bad_date(self, config_file):
        result = _invoke("run-daily", "--date", "03/02/2026", "--config", config_file)
        assert result.exit_code == 1
        assert "[ERROR]" in result.output

    def test_bundle_without_date(self, config_file, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"metrics": []}))
        result = _invoke("load-day", "--file", str(path), "--config", config_file)
        assert result.exit_code == 1
        assert "'date'" in result.output


class TestScore:
    def test_score_with_positions(self, config_file, tmp_path):
        assets = [
            {
                "symbol": "BULL",
                "price": 90,
                "changePercent": 2,
                "indicators": {
                    "rsi": 25,
                    "macd": {"line": 1, "signal": 0.2, "histogram": 0.4},
                    "bollinger": {"upper": 110, "lower": 92},
                    "sma50": 85,
                    "sma200": 80,
                    "volumeRatio": 3,
                    "atr": 2,
                    "currentPrice": 90,
                },
            },
            {"symbol": "AAPL", "price": 94, "indicators": {"atr": 2, "rsi": 50}},
        ]
        positions = [{"positionId": 7, "symbol": "AAPL", "buyPrice": 100, "quantity": 3}]
        assets_path = tmp_path / "assets.json"
        positions_path = tmp_path / "positions.json"
        assets_path.write_text(json.dumps(assets))
        positions_path.write_text(json.dumps(positions))

        result = _invoke(
            "score", "--file", str(assets_path), "--positions", str(positions_path),
            "--config", config_file,
        )
        assert result.exit_code == 0, result.output
        out = json.loads(result.output)
        assert out["confluence"][0]["symbol"] == "BULL"
        assert out["confluence"][0]["recommendation"] == "STRONG_BUY"
        assert [a["alert_id"] for a in out["alerts"]] == ["sl-7", "buy-BULL"]

    def test_score_invalid_input(self, config_file, tmp_path):
        path = tmp_path / "assets.json"
        path.write_text(json.dumps([{"price": 1}]))
        result = _invoke("score", "--file", str(path), "--config", config_file)
        assert result.exit_code == 1
        assert "[ERROR]" in result.output
