"""
Tests for DailyDistributionOrchestrator.

Runs the full pipeline against a temporary SQLite file with the deterministic
fallback generator, patching individual steps or repositories to simulate
failures.

Seeded market (risk_on):
  AAPL  trend-aligned, relative strength 0.10 → strategic (conf ≈ 0.583)
  MSFT  trend-aligned, relative strength 0.05 → strategic (conf ≈ 0.567)
  XYZ   RSI 24 above SMA200, vol 0.5, −7 %    → opportunistic (conf 0.53) + 2 risk

Users (oldest first): u1 default profile, u2 cautious (risk_level 0.2),
u3 without a profile row.

What we test
------------
1. Happy path: pool 2/1/2, per-user feeds follow the policy, status success.
2. Re-running a date yields identical ideas and feeds and one job_runs row.
3. Crisis mode shrinks feeds and tags every item.
4. Missing regime row falls back to the default regime.
5. A failing user write yields status partial; other users are unaffected.
6. Concurrent users produce the same feeds as sequential processing.
7. Generator failure → UpstreamFailure, run recorded failed, previous pool kept.
8. Pool replacement failure → PersistenceFailure, no feeds written.
9. Telemetry and run-tracking failures never fail the run.
"""

from __future__ import annotations

import sqlite3
from datetime import date
from unittest.mock import patch

import pytest

from signal_desk.config import AppConfig, DatabaseConfig, DistributionConfig
from signal_desk.db.connection import get_connection
from signal_desk.db.repositories.feed_repo import UserRecommendationRepository
from signal_desk.db.repositories.idea_repo import BaseIdeaRepository
from signal_desk.db.repositories.market_repo import MarketContextRepository
from signal_desk.db.repositories.run_repo import AiUsageRepository, JobRunRepository
from signal_desk.db.repositories.user_repo import UserRepository
from signal_desk.errors import PersistenceFailure, UpstreamFailure
from signal_desk.ideas.generator import MODE_FALLBACK, FallbackIdeaGenerator
from signal_desk.models.idea import UserAgentProfile
from signal_desk.models.market import DailyBar, MarketMetric
from signal_desk.models.regime import CrisisState, RegimeState
from signal_desk.pipeline.daily_distribution import USAGE_FEATURE, DailyDistributionOrchestrator
from signal_desk.taxonomy.signal_taxonomy import CRISIS_MODE_TAG

D = date(2026, 3, 2)
USERS = ["u1", "u2", "u3"]


def _seed(db_path: str, regime: bool = True, crisis: bool = False) -> None:
    with get_connection(db_path) as conn:
        market = MarketContextRepository(conn)
        if regime:
            market.upsert_regime(RegimeState(state_date=D, regime="risk_on", leadership=["tech"]))
        if crisis:
            market.upsert_crisis(CrisisState(state_date=D, is_active=True, summary="stress"))
        market.upsert_metrics([
            MarketMetric(metric_date=D, symbol="AAPL", rsi_14=55, relative_strength=0.10,
                         volatility_20d=0.15, sma_50=150, sma_200=140),
            MarketMetric(metric_date=D, symbol="MSFT", rsi_14=55, relative_strength=0.05,
                         volatility_20d=0.15, sma_50=150, sma_200=140),
            MarketMetric(metric_date=D, symbol="XYZ", rsi_14=24, relative_strength=-0.1,
                         volatility_20d=0.5, sma_50=70, sma_200=50),
        ])
        market.upsert_bars([
            DailyBar(bar_date=D, symbol="AAPL", close=160, change_pct=1.0),
            DailyBar(bar_date=D, symbol="MSFT", close=160, change_pct=0.5),
            DailyBar(bar_date=D, symbol="XYZ", close=60, change_pct=-7.0),
        ])

        users = UserRepository(conn)
        for i, user_id in enumerate(USERS):
            users.upsert_user(user_id, f"{user_id}@example.com", f"2026-01-0{i + 1}T00:00:00Z")
        users.upsert_profile(UserAgentProfile(user_id="u1"))
        users.upsert_profile(UserAgentProfile(user_id="u2", risk_level=0.2))


def _orchestrator(config: AppConfig) -> DailyDistributionOrchestrator:
    return DailyDistributionOrchestrator(config, generator=FallbackIdeaGenerator())


def _feed(db_path: str, user_id: str):
    with get_connection(db_path) as conn:
        return UserRecommendationRepository(conn).get(user_id, D)


def _raw_feeds(db_path: str) -> dict:
    with get_connection(db_path) as conn:
        repo = UserRecommendationRepository(conn)
        return {u: repo.get_raw_items(u, D) for u in USERS}


def _ideas(db_path: str) -> list:
    with get_connection(db_path) as conn:
        return BaseIdeaRepository(conn).list_for_date(D)


def _job_run(db_path: str, config: AppConfig):
    with get_connection(db_path) as conn:
        return JobRunRepository(conn).get_run(config.distribution.job_name, D)


class _ExplodingGenerator:
    def generate(self, pool, regime):
        raise RuntimeError("model endpoint on fire")


class TestHappyPath:
    def test_summary(self, app_config, file_db):
        _seed(file_db)
        summary = _orchestrator(app_config).run(D)

        assert summary.status == "success"
        assert summary.run_id is not None
        assert summary.generator_mode == MODE_FALLBACK
        assert (summary.strategic, summary.opportunistic, summary.risk) == (2, 1, 2)
        assert [r.user_id for r in summary.user_results] == USERS
        assert summary.users_processed == 3
        assert summary.errors == []

    def test_feeds_follow_policy(self, app_config, file_db):
        _seed(file_db)
        summary = _orchestrator(app_config).run("2026-03-02")
        by_user = {r.user_id: r for r in summary.user_results}

        assert (by_user["u1"].strategic, by_user["u1"].opportunistic, by_user["u1"].risk) == (2, 1, 2)
        # Cautious user: threshold 0.55 drops the 0.53 opportunistic idea.
        assert (by_user["u2"].strategic, by_user["u2"].opportunistic, by_user["u2"].risk) == (2, 0, 2)
        assert by_user["u3"].total == 5

        feed = _feed(file_db, "u1")
        assert [i.category for i in feed.items] == [
            "strategic", "strategic", "opportunistic", "risk", "risk",
        ]
        assert [i.symbol for i in feed.items[:2]] == ["AAPL", "MSFT"]

    def test_pool_persisted_in_order(self, app_config, file_db):
        _seed(file_db)
        _orchestrator(app_config).run(D)
        ideas = _ideas(file_db)
        assert [i.idea_id for i in ideas] == [
            "strategic-AAPL-1-2026-03-02",
            "strategic-MSFT-2-2026-03-02",
            "opportunistic-XYZ-3-2026-03-02",
            "risk-XYZ-4-2026-03-02",
            "risk-XYZ-5-2026-03-02",
        ]

    def test_job_run_recorded(self, app_config, file_db):
        _seed(file_db)
        _orchestrator(app_config).run(D)
        run = _job_run(file_db, app_config)
        assert run.status == "success"
        assert run.rows_processed == 3
        assert run.finished_at is not None
        assert "api_key" not in run.config_snapshot["generator"]

    def test_usage_logged(self, app_config, file_db):
        _seed(file_db)
        _orchestrator(app_config).run(D)
        with get_connection(file_db) as conn:
            assert AiUsageRepository(conn).count(USAGE_FEATURE) == 1
            row = conn.execute("SELECT success, input_tokens FROM ai_usage_log;").fetchone()
        assert row["success"] == 0
        assert row["input_tokens"] == 0

    def test_no_users(self, app_config, file_db):
        summary = _orchestrator(app_config).run(D)
        assert summary.status == "success"
        assert summary.user_results == []


class TestIdempotency:
    def test_rerun_is_identical(self, app_config, file_db):
        _seed(file_db)
        orch = _orchestrator(app_config)
        orch.run(D)
        ideas_first, feeds_first = _ideas(file_db), _raw_feeds(file_db)

        orch.run(D)

        assert _ideas(file_db) == ideas_first
        assert _raw_feeds(file_db) == feeds_first
        with get_connection(file_db) as conn:
            n = conn.execute("SELECT COUNT(*) AS n FROM job_runs;").fetchone()["n"]
        assert n == 1

    def test_concurrent_matches_sequential(self, app_config, file_db):
        _seed(file_db)
        _orchestrator(app_config).run(D)
        sequential = _raw_feeds(file_db)

        concurrent_config = app_config.model_copy(
            update={"distribution": DistributionConfig(max_workers=4)}
        )
        summary = _orchestrator(concurrent_config).run(D)

        assert [r.user_id for r in summary.user_results] == USERS
        assert _raw_feeds(file_db) == sequential


class TestMarketContext:
    def test_crisis_mode(self, app_config, file_db):
        _seed(file_db, crisis=True)
        summary = _orchestrator(app_config).run(D)
        u1 = next(r for r in summary.user_results if r.user_id == "u1")
        assert (u1.strategic, u1.opportunistic, u1.risk) == (2, 0, 2)

        feed = _feed(file_db, "u1")
        assert all(CRISIS_MODE_TAG in i.tags for i in feed.items)
        # The canonical pool itself is untagged.
        assert not any(CRISIS_MODE_TAG in i.tags for i in _ideas(file_db))

    def test_missing_regime_uses_default(self, app_config, file_db):
        _seed(file_db, regime=False)
        summary = _orchestrator(app_config).run(D)
        assert summary.status == "success"
        # Default "transition" regime: no strategic candidates.
        assert (summary.strategic, summary.opportunistic, summary.risk) == (0, 1, 2)


class TestPerUserFailure:
    def test_one_user_fails(self, app_config, file_db):
        _seed(file_db)
        original = UserRecommendationRepository.upsert

        def flaky(self, rec_set):
            if rec_set.user_id == "u2":
                raise sqlite3.OperationalError("disk I/O error")
            return original(self, rec_set)

        with patch.object(UserRecommendationRepository, "upsert", flaky):
            summary = _orchestrator(app_config).run(D)

        assert summary.status == "partial"
        assert summary.users_processed == 2
        assert summary.users_failed == 1
        failed = next(r for r in summary.user_results if not r.success)
        assert failed.user_id == "u2"
        assert "disk I/O error" in failed.error
        assert _feed(file_db, "u1") is not None
        assert _feed(file_db, "u2") is None
        assert _feed(file_db, "u3") is not None
        assert _job_run(file_db, app_config).status == "partial"

    def test_every_user_fails(self, app_config, file_db):
        _seed(file_db)
        with patch.object(
            UserRecommendationRepository, "upsert", side_effect=sqlite3.OperationalError("locked")
        ):
            summary = _orchestrator(app_config).run(D)

        assert summary.status == "failed"
        assert summary.users_processed == 0
        assert len(summary.errors) == 3


class TestFatalFailures:
    def test_generator_failure(self, app_config, file_db):
        _seed(file_db)
        _orchestrator(app_config).run(D)
        pool_before = _ideas(file_db)

        orch = DailyDistributionOrchestrator(app_config, generator=_ExplodingGenerator())
        with pytest.raises(UpstreamFailure) as exc_info:
            orch.run(D)

        assert exc_info.value.step == "generate"
        assert _ideas(file_db) == pool_before
        run = _job_run(file_db, app_config)
        assert run.status == "failed"
        assert "model endpoint on fire" in run.error_message

    def test_context_load_failure(self, app_config, file_db):
        orch = _orchestrator(app_config)
        with patch.object(
            MarketContextRepository, "get_regime", side_effect=sqlite3.DatabaseError("corrupt")
        ):
            with pytest.raises(UpstreamFailure) as exc_info:
                orch.run(D)
        assert exc_info.value.step == "load_context"

    def test_pool_replacement_failure(self, app_config, file_db):
        _seed(file_db)
        orch = _orchestrator(app_config)
        with patch.object(orch, "_replace_ideas", side_effect=PersistenceFailure("disk full")):
            with pytest.raises(PersistenceFailure):
                orch.run(D)

        assert all(_feed(file_db, u) is None for u in USERS)
        assert _job_run(file_db, app_config).status == "failed"

    def test_replace_is_atomic(self, app_config, file_db):
        _seed(file_db)
        orch = _orchestrator(app_config)
        orch.run(D)
        pool_before = _ideas(file_db)

        with patch.object(
            BaseIdeaRepository, "executemany", side_effect=sqlite3.IntegrityError("boom")
        ):
            with pytest.raises(PersistenceFailure):
                orch.run(D)

        assert _ideas(file_db) == pool_before

    def test_unreachable_database(self, tmp_path):
        config = AppConfig(database=DatabaseConfig(db_path=str(tmp_path)))
        with pytest.raises(PersistenceFailure):
            _orchestrator(config).run(D)


class TestBestEffortSteps:
    def test_telemetry_failure_is_swallowed(self, app_config, file_db):
        _seed(file_db)
        with patch.object(AiUsageRepository, "insert", side_effect=sqlite3.OperationalError("nope")):
            summary = _orchestrator(app_config).run(D)
        assert summary.status == "success"

    def test_run_tracking_failure_is_swallowed(self, app_config, file_db):
        _seed(file_db)
        with patch.object(
            JobRunRepository, "upsert_start", side_effect=sqlite3.OperationalError("nope")
        ):
            summary = _orchestrator(app_config).run(D)
        assert summary.run_id is None
        assert summary.status == "success"
        assert summary.users_processed == 3
