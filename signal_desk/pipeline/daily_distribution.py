"""
Daily recommendation distribution — one idempotent run per date.

Steps
-----
  1. Load the day's context: RegimeState / CrisisState (defaults when no row
     exists), market metrics and bars.
  2. Select candidates and call the idea generator.
  3. Normalize every raw idea and split them into sections.
  4. Replace the canonical idea pool for the date (one transaction).
  5. For every user (oldest account first) derive the personalized feed,
  6. and upsert it in that user's own transaction. With
     ``distribution.max_workers > 1`` users run on a thread pool.
  7. Log generator telemetry to ``ai_usage_log`` (best-effort).

Failure model
-------------
  - Steps 1–4 (and loading the user list) are fatal: the run is recorded as
    ``failed`` and ``UpstreamFailure`` / ``PersistenceFailure`` is raised.
    Because step 4 is a single transaction, a failed run never leaves a
    half-written idea pool.
  - A failure for one user is captured on that user's ``UserFeedResult``;
    other users are unaffected and the run finishes as ``partial``.
  - Run tracking (``job_runs``) and telemetry failures are logged and dropped.

Re-running a date replaces the idea pool and every user's feed, and resets the
date's ``job_runs`` record.

Usage::

    orchestrator = DailyDistributionOrchestrator(config)
    summary = orchestrator.run(date(2026, 3, 2))
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, Union
from uuid import uuid4

from signal_desk.config import AppConfig
from signal_desk.distribution.policy import personalize_feed
from signal_desk.errors import PersistenceFailure, SignalDeskError, UpstreamFailure
from signal_desk.ideas.candidates import CandidatePool, select_candidates
from signal_desk.ideas.generator import GeneratorResult, IdeaGenerator, build_generator
from signal_desk.ideas.normalizer import IdeaSections, normalize_ideas, split_ideas
from signal_desk.models.idea import RiskIdea, TradeIdea, UserAgentProfile, UserRecommendationSet
from signal_desk.models.market import DailyBar, MarketMetric
from signal_desk.models.regime import CrisisState, RegimeState
from signal_desk.utils.time_utils import parse_run_date, utcnow

logger = logging.getLogger(__name__)

USAGE_FEATURE = "ideas_generation"


# ── Result types ──────────────────────────────────────────────────────────────

@dataclass
class UserFeedResult:
    """Outcome of personalization + upsert for one user.

    Attributes:
        user_id:       User processed.
        success:       True if the feed was written.
        strategic:     Strategic items in the written feed.
        opportunistic: Opportunistic items in the written feed.
        risk:          Risk items in the written feed.
        error:         Exception message if success=False.
    """

    user_id:       str
    success:       bool
    strategic:     int = 0
    opportunistic: int = 0
    risk:          int = 0
    error:         Optional[str] = None

    @property
    def total(self) -> int:
        return self.strategic + self.opportunistic + self.risk


@dataclass
class DistributionSummary:
    """Complete result of one daily distribution run.

    Attributes:
        run_date:        Business date of the run.
        run_id:          ``job_runs.run_id`` (None if run tracking failed).
        status:          "success", "partial", or "failed".
        started_at:      UTC datetime when the run started.
        finished_at:     UTC datetime when the run finished.
        generator_mode:  ``ai``, ``fallback``, ``fallback_parse`` or ``fallback_error``.
        generator_model: Model reported by the generator.
        strategic:       Canonical strategic ideas in the day's pool.
        opportunistic:   Canonical opportunistic ideas in the day's pool.
        risk:            Canonical risk ideas in the day's pool.
        user_results:    Per-user outcomes, in processing order.
        errors:          Accumulated error messages.
    """

    run_date:        date
    run_id:          Optional[int]      = None
    status:          str                = "started"
    started_at:      Optional[datetime] = None
    finished_at:     Optional[datetime] = None
    generator_mode:  Optional[str]      = None
    generator_model: Optional[str]      = None
    strategic:       int                = 0
    opportunistic:   int                = 0
    risk:            int                = 0
    user_results:    list[UserFeedResult] = field(default_factory=list)
    errors:          list[str]          = field(default_factory=list)

    @property
    def users_processed(self) -> int:
        return sum(1 for r in self.user_results if r.success)

    @property
    def users_failed(self) -> int:
        return sum(1 for r in self.user_results if not r.success)


# ── Orchestrator ──────────────────────────────────────────────────────────────

class DailyDistributionOrchestrator:
    """Builds the canonical idea pool and every user's feed for a date.

    Args:
        config:    AppConfig for this run.
        db_path:   Override DB path (defaults to config.database.db_path).
        generator: Idea generator; defaults to ``build_generator(config.generator)``.
    """

    def __init__(
        self,
        config: AppConfig,
        db_path: Optional[str] = None,
        generator: Optional[IdeaGenerator] = None,
    ) -> None:
        self.config    = config
        self.db_path   = db_path or config.database.db_path
        self.generator = generator or build_generator(config.generator)

    def run(self, run_date: Union[date, str, None] = None) -> DistributionSummary:
        """Execute the daily distribution for ``run_date`` (default: today UTC).

        Returns:
            DistributionSummary.

        Raises:
            UpstreamFailure:    Context load, user load or generation failed.
            PersistenceFailure: Schema setup or the idea pool replacement failed.
        """
        run_date = parse_run_date(run_date)
        summary  = DistributionSummary(run_date=run_date, started_at=utcnow())
        run_slug = str(uuid4())
        day      = run_date.isoformat()

        logger.info("DailyDistribution | run_slug=%s | date=%s", run_slug, day)
        self._ensure_schema()
        summary.run_id = self._persist_run_start(run_slug, run_date, summary.started_at)

        try:
            # ── Steps 1–4: shared, fatal ──────────────────────────────────────
            logger.info("[1/5] Loading market context ...")
            regime, crisis, metrics, bars = self._load_context(run_date)

            logger.info("[2/5] Selecting candidates and generating ideas ...")
            pool = select_candidates(regime, metrics, bars)
            generated = self._generate(pool, regime)
            summary.generator_mode  = generated.mode
            summary.generator_model = generated.model

            logger.info("[3/5] Normalizing %d raw ideas ...", len(generated.ideas))
            ideas    = normalize_ideas(generated.ideas, day)
            sections = split_ideas(ideas)
            summary.strategic     = len(sections.strategic)
            summary.opportunistic = len(sections.opportunistic)
            summary.risk          = len(sections.risk)

            logger.info("[4/5] Replacing canonical idea pool (%d ideas) ...", len(ideas))
            self._replace_ideas(run_date, ideas)

            profiles = self._load_profiles()

        except SignalDeskError as exc:
            summary.status = "failed"
            summary.errors.append(str(exc))
            summary.finished_at = utcnow()
            logger.error("DailyDistribution failed | date=%s | %s", day, exc)
            self._persist_run_finish(summary)
            raise

        # ── Steps 5–6: per user, isolated ─────────────────────────────────────
        logger.info(
            "[5/5] Personalizing feeds for %d users (crisis=%s) ...",
            len(profiles), crisis.is_active,
        )
        summary.user_results = self._distribute(run_date, sections, profiles, crisis.is_active)
        for r in summary.user_results:
            if not r.success:
                summary.errors.append(f"user[{r.user_id}]: {r.error}")

        # ── Step 7: telemetry ─────────────────────────────────────────────────
        self._log_usage(generated)

        summary.finished_at = utcnow()
        if not summary.users_failed:
            summary.status = "success"
        elif summary.users_processed:
            summary.status = "partial"
        else:
            summary.status = "failed"

        self._persist_run_finish(summary)

        logger.info(
            "DailyDistribution finished | status=%s | users_ok=%d/%d | "
            "strategic=%d opportunistic=%d risk=%d | mode=%s",
            summary.status, summary.users_processed, len(summary.user_results),
            summary.strategic, summary.opportunistic, summary.risk, summary.generator_mode,
        )
        return summary

    # ── Shared steps ──────────────────────────────────────────────────────────

    def _connect(self):  # type: ignore[no-untyped-def]
        from signal_desk.db.connection import get_connection

        return get_connection(
            self.db_path,
            wal_mode=self.config.database.wal_mode,
            busy_timeout_ms=self.config.database.busy_timeout_ms,
        )

    def _ensure_schema(self) -> None:
        """Verify the DB is reachable and its schema current (idempotent)."""
        from signal_desk.db.migrations import initialize_database

        try:
            with self._connect() as conn:
                initialize_database(conn)
        except Exception as exc:
            raise PersistenceFailure(f"schema check failed: {exc}") from exc

    def _load_context(
        self, run_date: date
    ) -> tuple[RegimeState, CrisisState, list[MarketMetric], list[DailyBar]]:
        """Regime, crisis, metrics and bars for the date; defaults for missing rows."""
        from signal_desk.db.repositories.market_repo import MarketContextRepository

        try:
            with self._connect() as conn:
                repo    = MarketContextRepository(conn)
                regime  = repo.get_regime(run_date)
                crisis  = repo.get_crisis(run_date)
                metrics = repo.get_metrics(run_date)
                bars    = repo.get_bars(run_date)
        except Exception as exc:
            raise UpstreamFailure("load_context", str(exc)) from exc

        if regime is None:
            logger.info("No regime_state row for %s; using defaults.", run_date)
            regime = RegimeState.default_for(run_date)
        if crisis is None:
            crisis = CrisisState.default_for(run_date)

        logger.debug(
            "Context %s | regime=%s vol=%s crisis=%s metrics=%d bars=%d",
            run_date, regime.regime, regime.volatility_regime, crisis.is_active,
            len(metrics), len(bars),
        )
        return regime, crisis, metrics, bars

    def _generate(self, pool: CandidatePool, regime: RegimeState) -> GeneratorResult:
        try:
            return self.generator.generate(pool, regime)
        except Exception as exc:
            raise UpstreamFailure("generate", str(exc)) from exc

    def _replace_ideas(self, run_date: date, ideas: list[Union[TradeIdea, RiskIdea]]) -> int:
        from signal_desk.db.repositories.idea_repo import BaseIdeaRepository

        try:
            with self._connect() as conn:
                return BaseIdeaRepository(conn).replace_for_date(run_date, ideas)
        except Exception as exc:
            raise PersistenceFailure(f"replace base_ideas for {run_date}: {exc}") from exc

    def _load_profiles(self) -> list[UserAgentProfile]:
        from signal_desk.db.repositories.user_repo import UserRepository

        try:
            with self._connect() as conn:
                return UserRepository(conn).list_profiles()
        except Exception as exc:
            raise UpstreamFailure("load_users", str(exc)) from exc

    # ── Per-user steps ────────────────────────────────────────────────────────

    def _distribute(
        self,
        run_date: date,
        sections: IdeaSections,
        profiles: list[UserAgentProfile],
        crisis_active: bool,
    ) -> list[UserFeedResult]:
        """Personalize and write every user's feed; results keep input order."""
        workers = min(self.config.distribution.max_workers, len(profiles))
        if workers <= 1:
            return [
                self._personalize_user(run_date, sections, p, crisis_active) for p in profiles
            ]

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="feed") as pool:
            return list(
                pool.map(
                    lambda p: self._personalize_user(run_date, sections, p, crisis_active),
                    profiles,
                )
            )

    def _personalize_user(
        self,
        run_date: date,
        sections: IdeaSections,
        profile: UserAgentProfile,
        crisis_active: bool,
    ) -> UserFeedResult:
        """Build and upsert one user's feed. Never raises."""
        from signal_desk.db.repositories.feed_repo import UserRecommendationRepository

        try:
            items = personalize_feed(sections, profile, crisis_active, self.config.distribution)
            with self._connect() as conn:
                UserRecommendationRepository(conn).upsert(
                    UserRecommendationSet(user_id=profile.user_id, rec_date=run_date, items=items)
                )
        except Exception as exc:
            logger.error("Feed for user=%s failed: %s", profile.user_id, exc)
            return UserFeedResult(user_id=profile.user_id, success=False, error=str(exc))

        return UserFeedResult(
            user_id=profile.user_id,
            success=True,
            strategic=sum(1 for i in items if i.category == "strategic"),
            opportunistic=sum(1 for i in items if i.category == "opportunistic"),
            risk=sum(1 for i in items if i.category == "risk"),
        )

    # ── Telemetry / run tracking (non-fatal) ──────────────────────────────────

    def _log_usage(self, generated: GeneratorResult) -> None:
        """Write one ``ai_usage_log`` row for the generator call."""
        try:
            from signal_desk.db.repositories.run_repo import AiUsageRepository
            from signal_desk.models.meta import AiUsageRecord

            record = AiUsageRecord.from_usage(
                feature=USAGE_FEATURE,
                model=generated.model,
                usage=generated.usage,
                success=generated.is_ai,
                duration_ms=generated.duration_ms,
            )
            with self._connect() as conn:
                AiUsageRepository(conn).insert(record)
        except Exception as exc:
            logger.warning("Could not log AI usage: %s", exc)

    def _persist_run_start(
        self, run_slug: str, run_date: date, started_at: Optional[datetime]
    ) -> Optional[int]:
        """Upsert the ``job_runs`` record as started.

        Returns the run_id, or None if persistence fails (non-fatal).
        """
        try:
            from signal_desk.db.repositories.run_repo import JobRunRepository
            from signal_desk.models.meta import RunMetadata

            run = RunMetadata(
                run_slug=run_slug,
                job_name=self.config.distribution.job_name,
                run_date=run_date,
                config_snapshot=self.config.model_dump(
                    mode="json", exclude={"generator": {"api_key": True}}
                ),
                started_at=started_at or utcnow(),
            )
            with self._connect() as conn:
                return JobRunRepository(conn).upsert_start(run)
        except Exception as exc:
            logger.warning("Could not persist run start: %s", exc)
            return None

    def _persist_run_finish(self, summary: DistributionSummary) -> None:
        """Update the ``job_runs`` record with the final status."""
        try:
            from signal_desk.db.repositories.run_repo import JobRunRepository
            from signal_desk.models.meta import RunMetadata

            run = RunMetadata(
                run_id=summary.run_id,
                run_slug="",
                job_name=self.config.distribution.job_name,
                run_date=summary.run_date,
                status=summary.status,
                rows_processed=summary.users_processed,
                error_message="; ".join(summary.errors) if summary.errors else None,
                started_at=summary.started_at or utcnow(),
                finished_at=summary.finished_at or utcnow(),
            )
            with self._connect() as conn:
                JobRunRepository(conn).finish(run)
        except Exception as exc:
            logger.warning("Could not persist run finish: %s", exc)
