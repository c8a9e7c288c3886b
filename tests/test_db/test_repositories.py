"""
Tests for repository CRUD against an in-memory database.

What we test
------------
1. MarketContextRepository: regime/crisis round trip and upsert, metrics and
   bars keyed by (date, symbol).
2. UserRepository: profile listing order, default profile for users without
   a profile row, email preserved on re-upsert.
3. BaseIdeaRepository: replace_for_date is delete-then-insert, preserves
   order, tolerates duplicate ids, and is scoped to one date.
4. UserRecommendationRepository: one row per (user, date), overwrite on upsert.
5. JobRunRepository: one row per (job, date), reset on restart, finish, recent.
6. AiUsageRepository: insert and count.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from signal_desk.db.repositories.feed_repo import UserRecommendationRepository
from signal_desk.db.repositories.idea_repo import BaseIdeaRepository
from signal_desk.db.repositories.market_repo import MarketContextRepository
from signal_desk.db.repositories.run_repo import AiUsageRepository, JobRunRepository
from signal_desk.db.repositories.user_repo import UserRepository
from signal_desk.models.idea import UserAgentProfile, UserRecommendationSet
from signal_desk.models.market import DailyBar, MarketMetric
from signal_desk.models.meta import AiUsageRecord, RunMetadata
from signal_desk.models.regime import CrisisState, RegimeState

D = date(2026, 3, 2)
D2 = date(2026, 3, 3)


@pytest.fixture
def users(in_memory_db) -> UserRepository:
    repo = UserRepository(in_memory_db)
    repo.upsert_user("late", created_at="2026-02-01T00:00:00Z")
    repo.upsert_user("early", "early@example.com", created_at="2026-01-01T00:00:00Z")
    repo.upsert_profile(UserAgentProfile(user_id="early", focus=0.9, risk_level=0.1, horizon="long"))
    return repo


def _run(slug: str = "slug-1", run_date: date = D, **kwargs) -> RunMetadata:
    return RunMetadata(
        run_slug=slug,
        job_name="recommendations_daily",
        run_date=run_date,
        config_snapshot={"debug": False},
        started_at=kwargs.pop("started_at", datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)),
        **kwargs,
    )


class TestMarketContextRepository:
    def test_missing_rows_are_none(self, in_memory_db):
        repo = MarketContextRepository(in_memory_db)
        assert repo.get_regime(D) is None
        assert repo.get_crisis(D) is None
        assert repo.get_metrics(D) == []

    def test_regime_round_trip_and_upsert(self, in_memory_db):
        repo = MarketContextRepository(in_memory_db)
        state = RegimeState(state_date=D, regime="risk_off", leadership=["utilities"],
                            risk_flags=["credit spreads"], confidence=0.7)
        repo.upsert_regime(state)
        assert repo.get_regime(D) == state

        repo.upsert_regime(state.model_copy(update={"regime": "risk_on"}))
        assert repo.get_regime(D).regime == "risk_on"

    def test_regime_requires_date(self, in_memory_db):
        with pytest.raises(ValueError):
            MarketContextRepository(in_memory_db).upsert_regime(RegimeState())

    def test_crisis_round_trip(self, in_memory_db):
        repo = MarketContextRepository(in_memory_db)
        repo.upsert_crisis(CrisisState(state_date=D, is_active=True, summary="liquidity"))
        crisis = repo.get_crisis(D)
        assert crisis.is_active is True
        assert crisis.summary == "liquidity"

    def test_metrics_and_bars_keyed_by_date_and_symbol(self, in_memory_db):
        repo = MarketContextRepository(in_memory_db)
        repo.upsert_metrics([
            MarketMetric(metric_date=D, symbol="msft", rsi_14=50),
            MarketMetric(metric_date=D, symbol="AAPL", rsi_14=40),
            MarketMetric(metric_date=D2, symbol="AAPL", rsi_14=45),
        ])
        repo.upsert_metrics([MarketMetric(metric_date=D, symbol="AAPL", rsi_14=41)])
        repo.upsert_bars([DailyBar(bar_date=D, symbol="aapl", close=10.0, change_pct=-1.0)])

        metrics = repo.get_metrics(D)
        assert [(m.symbol, m.rsi_14) for m in metrics] == [("AAPL", 41.0), ("MSFT", 50.0)]
        assert repo.get_bars(D)[0].symbol == "AAPL"
        assert repo.get_bars(D2) == []


class TestUserRepository:
    def test_profiles_ordered_by_account_age(self, users):
        assert [p.user_id for p in users.list_profiles()] == ["early", "late"]

    def test_missing_profile_gets_defaults(self, users):
        late = users.list_profiles()[1]
        assert (late.focus, late.risk_level, late.horizon) == (0.5, 0.5, None)

    def test_profile_values(self, users):
        early = users.list_profiles()[0]
        assert (early.focus, early.risk_level, early.horizon) == (0.9, 0.1, "long")

    def test_reupsert_keeps_email_and_created_at(self, users, in_memory_db):
        users.upsert_user("early", created_at="2030-01-01T00:00:00Z")
        row = in_memory_db.execute("SELECT email, created_at FROM users WHERE user_id = 'early';").fetchone()
        assert row["email"] == "early@example.com"
        assert row["created_at"] == "2026-01-01T00:00:00Z"


class TestBaseIdeaRepository:
    def test_replace_preserves_order(self, in_memory_db, make_trade_idea, make_risk_idea):
        repo = BaseIdeaRepository(in_memory_db)
        ideas = [make_risk_idea("r1"), make_trade_idea("s1"), make_trade_idea("o1", category="opportunistic")]
        assert repo.replace_for_date(D, ideas) == 3
        assert repo.list_for_date(D) == ideas

    def test_replace_drops_previous_pool(self, in_memory_db, make_trade_idea):
        repo = BaseIdeaRepository(in_memory_db)
        repo.replace_for_date(D, [make_trade_idea(f"s{i}") for i in range(4)])
        repo.replace_for_date(D, [make_trade_idea("new")])
        assert [i.idea_id for i in repo.list_for_date(D)] == ["new"]
        assert repo.count_for_date(D) == 1

    def test_replace_is_scoped_to_date(self, in_memory_db, make_trade_idea):
        repo = BaseIdeaRepository(in_memory_db)
        repo.replace_for_date(D, [make_trade_idea("a")])
        repo.replace_for_date(D2, [])
        assert repo.count_for_date(D) == 1
        assert repo.count_for_date(D2) == 0

    def test_duplicate_ids_allowed(self, in_memory_db, make_trade_idea):
        repo = BaseIdeaRepository(in_memory_db)
        repo.replace_for_date(D, [make_trade_idea("dup"), make_trade_idea("dup", symbol="MSFT")])
        assert [i.symbol for i in repo.list_for_date(D)] == ["AAPL", "MSFT"]

    def test_queryable_columns(self, in_memory_db, make_trade_idea, make_risk_idea):
        BaseIdeaRepository(in_memory_db).replace_for_date(
            D, [make_trade_idea("s", confidence=0.7), make_risk_idea("r")]
        )
        rows = in_memory_db.execute(
            "SELECT category, action, confidence, severity FROM base_ideas ORDER BY position;"
        ).fetchall()
        assert tuple(rows[0]) == ("strategic", "WATCH", 0.7, None)
        assert tuple(rows[1]) == ("risk", None, None, "medium")


class TestUserRecommendationRepository:
    def test_upsert_overwrites(self, in_memory_db, users, make_trade_idea, make_risk_idea):
        repo = UserRecommendationRepository(in_memory_db)
        repo.upsert(UserRecommendationSet(user_id="early", rec_date=D, items=[make_trade_idea("a")]))
        repo.upsert(UserRecommendationSet(user_id="early", rec_date=D, items=[make_risk_idea("b")]))

        feed = repo.get("early", D)
        assert [i.idea_id for i in feed.items] == ["b"]
        n = in_memory_db.execute("SELECT COUNT(*) AS n FROM user_recommendations;").fetchone()["n"]
        assert n == 1

    def test_missing_feed(self, in_memory_db):
        repo = UserRecommendationRepository(in_memory_db)
        assert repo.get("nobody", D) is None
        assert repo.get_raw_items("nobody", D) is None

    def test_empty_feed(self, in_memory_db, users):
        repo = UserRecommendationRepository(in_memory_db)
        repo.upsert(UserRecommendationSet(user_id="late", rec_date=D))
        assert repo.get_raw_items("late", D) == "[]"


class TestJobRunRepository:
    def test_start_and_finish(self, in_memory_db):
        repo = JobRunRepository(in_memory_db)
        run = _run()
        run.run_id = repo.upsert_start(run)
        run.status = "partial"
        run.rows_processed = 2
        run.error_message = "user[u2]: boom"
        run.finished_at = datetime(2026, 3, 2, 6, 1, tzinfo=timezone.utc)
        repo.finish(run)

        stored = repo.get_run("recommendations_daily", D)
        assert stored.run_id == run.run_id
        assert stored.status == "partial"
        assert stored.rows_processed == 2
        assert stored.error_message == "user[u2]: boom"
        assert stored.config_snapshot == {"debug": False}
        assert stored.finished_at == run.finished_at

    def test_restart_resets_same_row(self, in_memory_db):
        repo = JobRunRepository(in_memory_db)
        first_id = repo.upsert_start(_run("a"))
        repo.finish(_run("a", status="failed", error_message="x",
                         finished_at=datetime(2026, 3, 2, 7, tzinfo=timezone.utc)))
        second_id = repo.upsert_start(_run("b"))

        assert second_id == first_id
        stored = repo.get_run("recommendations_daily", D)
        assert stored.run_slug == "b"
        assert stored.status == "started"
        assert stored.error_message is None
        assert stored.finished_at is None

    def test_get_recent(self, in_memory_db):
        repo = JobRunRepository(in_memory_db)
        repo.upsert_start(_run("a", D))
        repo.upsert_start(_run("b", D2, started_at=datetime(2026, 3, 3, 6, tzinfo=timezone.utc)))
        assert [r.run_slug for r in repo.get_recent()] == ["b", "a"]
        assert [r.run_slug for r in repo.get_recent(limit=1)] == ["b"]
        assert repo.get_recent(job_name="other") == []


class TestAiUsageRepository:
    def test_insert_and_count(self, in_memory_db):
        repo = AiUsageRepository(in_memory_db)
        repo.insert(AiUsageRecord.from_usage("ideas_generation", "m", {"input_tokens": 10}, True, 12.7))
        repo.insert(AiUsageRecord.from_usage("other", None, None, False, None))
        assert repo.count() == 2
        assert repo.count("ideas_generation") == 1
