"""
Progression service against a real (SQLite) database.

Sections:
  - profiles
  - lesson completion and path progress
  - submissions
  - concurrency: serialization, version conflicts, timeouts
  - leaderboard
"""

import asyncio
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from academy.analytics.analytics_engine import AnalyticsEngine
from academy.core.config import settings
from academy.core.exceptions import (
    ConflictError,
    InvalidLessonReferenceError,
    LessonLockedError,
    NotFoundError,
    StorageTimeoutError,
)
from academy.gamification.leaderboard import LeaderboardScope, Timeframe
from academy.gamification.xp_engine import XpEngine
from academy.models.gamification import LearnerProfile, XpReason
from academy.schemas.gamification import ProfileCreate
from academy.services.catalog_service import CatalogService

from tests.conftest import outcome

GLOBAL = LeaderboardScope()


async def add_learner(service, learner_id, **kwargs):
    return await service.create_profile(ProfileCreate(learner_id=learner_id, username=learner_id, **kwargs))


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


async def test_new_profile_starts_at_level_one(learner):
    assert learner.xp == 0
    assert learner.level == 1
    assert learner.tier.value == "beginner"
    assert learner.xp_to_next_level == 100


async def test_create_profile_is_idempotent(service, learner):
    again = await service.create_profile(ProfileCreate(learner_id="alice", display_name="Someone else"))
    assert again.display_name == "Alice"
    assert again.joined_at == learner.joined_at


async def test_unknown_learner(service):
    with pytest.raises(NotFoundError):
        await service.get_profile("nobody")


async def test_retired_learner_accepts_no_new_activity(service, learner, day):
    retired = await service.retire_profile("alice")
    assert retired.retired_at is not None

    with pytest.raises(NotFoundError):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
    with pytest.raises(NotFoundError):
        await service.submit_solution("alice", "two-sum", outcome())

    # Data is kept
    assert (await service.get_profile("alice")).retired_at is not None


# ---------------------------------------------------------------------------
# Lesson completion
# ---------------------------------------------------------------------------


class TestCompleteLesson:
    async def test_awards_xp_and_tracks_progress(self, service, learner, day):
        result = await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))

        assert result.applied is True
        assert result.xp_awarded == 10
        assert result.xp == 10
        assert result.current_lesson_id == "loops"
        assert result.current_streak == 1
        assert result.completion_percent == pytest.approx(33.33, abs=0.01)

    async def test_replay_does_not_award_twice(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
        replay = await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))

        assert replay.applied is False
        assert replay.xp_awarded == 0
        profile = await service.get_profile("alice")
        assert profile.xp == 10

    async def test_unknown_learner(self, service, catalog, day):
        with pytest.raises(NotFoundError):
            await service.complete_lesson("ghost", "python-basics", "variables", occurred_at=day(0))

    async def test_unknown_lesson(self, service, learner):
        with pytest.raises(NotFoundError):
            await service.complete_lesson("alice", "python-basics", "decorators")

    async def test_unknown_path(self, service, learner):
        with pytest.raises(NotFoundError):
            await service.complete_lesson("alice", "haskell-basics", "variables")

    async def test_lesson_from_another_path(self, service, learner):
        with pytest.raises(InvalidLessonReferenceError):
            await service.complete_lesson("alice", "python-basics", "borrowing")

        profile = await service.get_profile("alice")
        assert profile.xp == 0

    async def test_locked_chapter(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))

        with pytest.raises(LessonLockedError):
            await service.complete_lesson("alice", "python-basics", "functions", occurred_at=day(0))

        progress = await service.get_path_progress("alice", "python-basics")
        assert progress.progress.completed_lessons == ["variables"]
        assert [c.locked for c in progress.chapters] == [False, True]

    async def test_locks_can_be_disabled(self, service, learner, day, monkeypatch):
        monkeypatch.setattr(settings, "ENFORCE_CHAPTER_LOCKS", False)
        result = await service.complete_lesson("alice", "python-basics", "functions", occurred_at=day(0))
        assert result.applied is True

    async def test_finishing_a_path(self, service, learner, day):
        for lesson_id in ("variables", "loops", "functions"):
            result = await service.complete_lesson("alice", "python-basics", lesson_id, occurred_at=day(0))

        assert result.path_completed is True
        assert result.current_lesson_id is None
        assert result.completion_percent == 100.0
        assert result.path_xp_earned == 60

        progress = await service.get_path_progress("alice", "python-basics")
        assert progress.progress.completed_at == day(0)
        assert progress.total_xp == 60

    async def test_consecutive_days_earn_a_streak_bonus(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
        second = await service.complete_lesson("alice", "python-basics", "loops", occurred_at=day(1))

        assert second.current_streak == 2
        assert second.streak_bonus == settings.STREAK_BONUS_XP
        assert second.xp == 10 + 20 + settings.STREAK_BONUS_XP

    async def test_same_day_earns_no_bonus(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
        second = await service.complete_lesson("alice", "python-basics", "loops", occurred_at=day(0, hour=18))

        assert second.current_streak == 1
        assert second.streak_bonus == 0


class TestPathProgress:
    async def test_enroll_points_at_the_first_lesson(self, service, learner):
        progress = await service.enroll("alice", "python-basics")
        again = await service.enroll("alice", "python-basics")

        assert progress.current_lesson_id == "variables"
        assert progress.completed_lessons == []
        assert again.started_at == progress.started_at

    async def test_not_started(self, service, learner):
        with pytest.raises(NotFoundError):
            await service.get_path_progress("alice", "python-basics")

    async def test_chapters_unlock_in_order(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
        await service.complete_lesson("alice", "python-basics", "loops", occurred_at=day(0))

        progress = await service.get_path_progress("alice", "python-basics")

        assert [c.locked for c in progress.chapters] == [False, False]
        assert [c.completed_lessons for c in progress.chapters] == [2, 0]
        assert progress.completion_percent == pytest.approx(66.67, abs=0.01)
        assert progress.progress.current_lesson_id == "functions"

    async def test_paths_are_tracked_separately(self, service, learner, day):
        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))
        await service.complete_lesson("alice", "rust-basics", "borrowing", occurred_at=day(0))

        python = await service.get_path_progress("alice", "python-basics")
        rust = await service.get_path_progress("alice", "rust-basics")
        assert python.progress.xp_earned == 10
        assert rust.progress.completed_at == day(0)
        assert (await service.get_profile("alice")).xp == 25


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class TestSubmitSolution:
    async def test_first_acceptance_awards_xp(self, service, learner, day):
        result = await service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0)))

        assert result.first_solve is True
        assert result.xp_awarded == 50
        assert result.profile.xp == 50
        assert result.profile.easy_solved == 1
        assert result.submission.runtime_ms == 42.0
        assert await service.has_solved("alice", "two-sum") is True

    async def test_resolve_awards_nothing(self, service, learner, day):
        await service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0)))
        again = await service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0)))

        assert again.first_solve is False
        assert again.xp_awarded == 0
        assert again.profile.xp == 50
        assert again.profile.easy_solved == 1
        assert again.profile.total_submissions == 2
        assert again.profile.accepted_submissions == 2

    async def test_rejected_verdict(self, service, learner, day):
        result = await service.submit_solution(
            "alice", "two-sum",
            outcome("wrong_answer", submitted_at=day(0), runtime_ms=12.0, error_message="expected 3, got 4"),
        )

        assert result.first_solve is False
        assert result.profile.xp == 0
        assert result.profile.total_submissions == 1
        assert result.profile.current_streak == 0
        assert result.submission.runtime_ms is None
        assert result.submission.error_message == "expected 3, got 4"
        assert await service.has_solved("alice", "two-sum") is False

    async def test_level_up(self, service, learner, day):
        result = await service.submit_solution("alice", "median-stream", outcome(submitted_at=day(0)))

        assert result.level_up is True
        assert result.profile.level == 3
        assert result.profile.hard_solved == 1

    async def test_unknown_challenge(self, service, learner):
        with pytest.raises(NotFoundError):
            await service.submit_solution("alice", "three-sum", outcome())

    async def test_replayed_submission_id(self, service, learner, day):
        first = await service.submit_solution(
            "alice", "two-sum", outcome(submitted_at=day(0)), submission_id="judge-42"
        )
        replay = await service.submit_solution(
            "alice", "two-sum", outcome(submitted_at=day(0)), submission_id="judge-42"
        )

        assert first.submission.id == "judge-42"
        assert replay.replayed is True
        assert replay.xp_awarded == 0
        assert replay.profile.xp == 50
        assert replay.profile.total_submissions == 1

    async def test_submission_id_reused_for_another_challenge(self, service, learner, day):
        await service.submit_solution("alice", "two-sum", outcome(), submission_id="judge-42")
        with pytest.raises(ConflictError):
            await service.submit_solution("alice", "lru-cache", outcome(), submission_id="judge-42")

    async def test_challenge_counters_span_learners(self, service, catalog, learner, day):
        await add_learner(service, "bob")
        await service.submit_solution("alice", "lru-cache", outcome("wrong_answer", submitted_at=day(0)))
        await service.submit_solution("alice", "lru-cache", outcome(submitted_at=day(0)))
        await service.submit_solution("alice", "lru-cache", outcome(submitted_at=day(0)))
        await service.submit_solution("bob", "lru-cache", outcome(submitted_at=day(0)))

        async with catalog() as session:
            challenge = await CatalogService(session).get_challenge("lru-cache")

        assert challenge.total_submissions == 4
        assert challenge.total_solved == 2
        assert challenge.acceptance_rate == 50.0

    async def test_history_and_stats(self, service, catalog, learner, day):
        await service.submit_solution("alice", "two-sum", outcome("compile_error", submitted_at=day(0)))
        await service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0, hour=13), runtime_ms=10.0))
        await service.submit_solution(
            "alice", "lru-cache", outcome(language="go", submitted_at=day(1), runtime_ms=20.0)
        )
        await service.submit_solution("alice", "lru-cache", outcome(submitted_at=day(1, hour=14), runtime_ms=30.0))

        async with catalog() as session:
            engine = AnalyticsEngine(session)
            history = await engine.list_submissions("alice")
            accepted_go = await engine.list_submissions("alice", language="go")
            stats = await engine.submission_stats("alice", today=date(2024, 3, 2))

        assert [s.created_at for s in history] == sorted((s.created_at for s in history), reverse=True)
        assert len(accepted_go) == 1
        assert stats["total"] == 4
        assert stats["accepted"] == 3
        assert stats["acceptance_rate"] == 0.75
        assert stats["by_status"] == {"accepted": 3, "compile_error": 1}
        assert stats["by_language"] == {"python": 3, "go": 1}
        assert stats["median_runtime_ms"] == 20.0
        assert stats["p90_runtime_ms"] == pytest.approx(28.0)

        activity = stats["recent_activity"]
        assert len(activity) == settings.ACTIVITY_WINDOW_DAYS
        assert activity[-2] == {"date": date(2024, 3, 1), "count": 2, "accepted": 1}
        assert activity[-1] == {"date": date(2024, 3, 2), "count": 2, "accepted": 2}


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    async def test_lesson_and_submission_race_without_lost_updates(self, service, learner, day):
        await asyncio.gather(
            service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0)),
            service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0))),
        )

        profile = await service.get_profile("alice")
        assert profile.xp == 60
        assert profile.total_submissions == 1
        assert profile.current_streak == 1

    async def test_many_concurrent_submissions(self, service, learner, day):
        await asyncio.gather(*(
            service.submit_solution("alice", "lru-cache", outcome(submitted_at=day(0)))
            for _ in range(8)
        ))

        profile = await service.get_profile("alice")
        assert profile.total_submissions == 8
        assert profile.medium_solved == 1
        assert profile.xp == 120

    async def test_stale_profile_write_is_detected(self, service, catalog, learner, day):
        async with catalog() as session:
            stale = await session.get(LearnerProfile, "alice")

            await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))

            stale.xp += 1
            with pytest.raises(StaleDataError):
                await session.flush()
            await session.rollback()

        assert (await service.get_profile("alice")).xp == 10

    async def test_conflicts_are_retried(self, service, learner, monkeypatch):
        monkeypatch.setattr(settings, "CONFLICT_BACKOFF_MS", 0)
        attempts = []

        async def flaky(session):
            attempts.append(1)
            if len(attempts) < 3:
                raise StaleDataError("row version changed")
            return "done"

        assert await service._atomic("alice", "flaky", flaky) == "done"
        assert len(attempts) == 3

    async def test_conflicts_give_up_after_the_retry_budget(self, service, learner, monkeypatch):
        monkeypatch.setattr(settings, "CONFLICT_BACKOFF_MS", 0)
        monkeypatch.setattr(settings, "CONFLICT_MAX_RETRIES", 2)
        attempts = []

        async def always_stale(session):
            attempts.append(1)
            raise StaleDataError("row version changed")

        with pytest.raises(ConflictError) as info:
            await service._atomic("alice", "always_stale", always_stale)

        assert len(attempts) == 3
        assert info.value.retryable is True

    async def test_slow_storage_times_out(self, service, learner, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.05)

        async def slow(session):
            await asyncio.sleep(1)

        with pytest.raises(StorageTimeoutError) as info:
            await service._atomic("alice", "slow", slow)
        assert info.value.code == "timeout"

    async def test_failed_attempt_is_rolled_back(self, service, learner):
        async def half_done(session):
            profile = await session.get(LearnerProfile, "alice")
            XpEngine(session).award_xp(profile, 500, XpReason.CHALLENGE_SOLVED)
            await session.flush()
            raise RuntimeError("judge went away")

        with pytest.raises(RuntimeError):
            await service._atomic("alice", "half_done", half_done)

        assert (await service.get_profile("alice")).xp == 0


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------


class TestLeaderboard:
    async def test_ranking_with_ties(self, service, learner, day):
        await add_learner(service, "bob", country="DE")
        await service.submit_solution("alice", "two-sum", outcome(submitted_at=day(0)))
        await service.submit_solution("bob", "two-sum", outcome(submitted_at=day(0)))

        entries = await service.get_leaderboard(GLOBAL, limit=10)

        # Equal XP: alice joined first
        assert [e.learner_id for e in entries] == ["alice", "bob"]
        assert [e.rank for e in entries] == [1, 2]
        assert all(e.is_podium for e in entries)

    async def test_scope_and_paging(self, service, learner, day):
        await add_learner(service, "bob", country="DE")
        await add_learner(service, "carol", country="NL", cohort="spring-24")

        nl = await service.get_leaderboard(LeaderboardScope.parse("country:NL"), limit=10)
        cohort = await service.get_leaderboard(LeaderboardScope.parse("cohort:spring-24"), limit=10)
        second_page = await service.get_leaderboard(GLOBAL, limit=1, offset=1)

        assert {e.learner_id for e in nl} == {"alice", "carol"}
        assert [e.learner_id for e in cohort] == ["carol"]
        assert len(second_page) == 1
        assert second_page[0].rank == 2
        assert await service.count_ranked(GLOBAL) == 3

    async def test_mutations_invalidate_the_cached_ranking(self, service, cache, learner, day):
        first = await service.get_leaderboard(GLOBAL, limit=10)
        assert first[0].xp == 0
        assert await cache.get("global|all", namespace="leaderboard") is not None

        await service.complete_lesson("alice", "python-basics", "variables", occurred_at=day(0))

        assert await cache.get("global|all", namespace="leaderboard") is None
        after = await service.get_leaderboard(GLOBAL, limit=10)
        assert after[0].xp == 10

    async def test_ranking_read_overtaken_by_a_write_is_not_cached(self, service, cache, learner, monkeypatch):
        bounded = service._bounded

        async def write_lands_during_read(operation, work):
            result = await bounded(operation, work)
            if operation == "leaderboard":
                await service._invalidate_leaderboards()
            return result

        monkeypatch.setattr(service, "_bounded", write_lands_during_read)
        entries = await service.get_leaderboard(GLOBAL, limit=10)

        assert [e.learner_id for e in entries] == ["alice"]
        assert await cache.get("global|all", namespace="leaderboard") is None

        monkeypatch.setattr(service, "_bounded", bounded)
        await service.get_leaderboard(GLOBAL, limit=10)
        assert await cache.get("global|all", namespace="leaderboard") is not None

    async def test_podium(self, service, learner, day):
        for learner_id in ("bob", "carol", "dave"):
            await add_learner(service, learner_id)
        await service.submit_solution("dave", "two-sum", outcome(submitted_at=day(0)))

        podium = await service.get_podium(GLOBAL)

        assert [e.learner_id for e in podium] == ["dave", "alice", "bob"]
        assert [e.rank for e in podium] == [1, 2, 3]

    async def test_retired_learners_drop_out(self, service, learner):
        await add_learner(service, "bob")
        await service.get_leaderboard(GLOBAL, limit=10)

        await service.retire_profile("bob")

        entries = await service.get_leaderboard(GLOBAL, limit=10)
        assert [e.learner_id for e in entries] == ["alice"]

    async def test_timeframes_rank_recent_xp(self, service, learner):
        await add_learner(service, "bob")
        now = datetime.utcnow()
        await service.submit_solution(
            "alice", "median-stream", outcome(submitted_at=now - timedelta(days=20))
        )
        await service.complete_lesson("bob", "python-basics", "variables", occurred_at=now)

        all_time = await service.get_leaderboard(GLOBAL, limit=10)
        weekly = await service.get_leaderboard(GLOBAL, limit=10, timeframe=Timeframe.WEEKLY)
        monthly = await service.get_leaderboard(GLOBAL, limit=10, timeframe=Timeframe.MONTHLY)

        assert [e.learner_id for e in all_time] == ["alice", "bob"]
        assert [(e.learner_id, e.score) for e in weekly] == [("bob", 10), ("alice", 0)]
        assert [(e.learner_id, e.score) for e in monthly] == [("alice", 300), ("bob", 10)]

    async def test_learner_rank(self, service, learner, day):
        await add_learner(service, "bob")
        await service.submit_solution("bob", "lru-cache", outcome(submitted_at=day(0)))

        entry = await service.get_learner_rank("alice", GLOBAL)
        assert entry.rank == 2
        assert entry.score == 0

        with pytest.raises(NotFoundError):
            await service.get_learner_rank("nobody", GLOBAL)
