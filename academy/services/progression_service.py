"""Progression service: atomic lesson and submission updates per learner.

Every mutation is one read-modify-write transaction against a single
learner profile. Writers for the same learner are serialized in-process by
a per-learner lock; across processes the ``version`` columns on
``LearnerProfile`` and ``UserProgress`` turn a lost update into a
``StaleDataError``, which is retried a bounded number of times before it
surfaces as ``ConflictError``. Every storage round trip runs under
``STORAGE_TIMEOUT_SECONDS`` and fails with ``StorageTimeoutError`` when
exceeded. A failed attempt is rolled back as a whole.
"""

import asyncio
import random
import weakref
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, TypeVar

from aiocache import Cache
from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
import structlog

from academy.core.config import settings
from academy.core.logging import operation_context
from academy.core.exceptions import (
    ConflictError,
    InvalidLessonReferenceError,
    NotFoundError,
    StorageTimeoutError,
)
from academy.gamification import leaderboard
from academy.gamification.leaderboard import LeaderboardScope, Timeframe
from academy.gamification.progress_tracker import (
    chapter_lock_states,
    complete_lesson,
    path_completion_percent,
)
from academy.gamification.submission_aggregator import record_submission, update_streak
from academy.gamification.xp_engine import XpEngine
from academy.models.content import Challenge, LearningPath, Lesson
from academy.models.gamification import LearnerProfile, SolvedChallenge, XpHistory, XpReason
from academy.models.progress import UserProgress
from academy.models.submission import Submission
from academy.schemas.gamification import LeaderboardEntryResponse, ProfileCreate, ProfileResponse
from academy.schemas.progress import (
    ChapterProgress,
    LessonCompletionResponse,
    PathProgressResponse,
    UserProgressResponse,
)
from academy.schemas.submissions import JudgedOutcome, SubmissionResponse, SubmissionResult

logger = structlog.get_logger()

T = TypeVar("T")

LEADERBOARD_NAMESPACE = "leaderboard"


class LearnerLocks:
    """One ``asyncio.Lock`` per learner, dropped once nobody holds a reference."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_learner(self, learner_id: str) -> asyncio.Lock:
        lock = self._locks.get(learner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[learner_id] = lock
        return lock


class ProgressionService:
    """Orchestrates progress tracking, submission aggregation and ranking."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: Optional[Cache] = None,
        locks: Optional[LearnerLocks] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.locks = locks or LearnerLocks()
        # Bumped on every invalidation; a ranking read that straddles one is not cached
        self._leaderboard_generation = 0

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    async def _in_transaction(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self.session_factory() as session:
            try:
                result = await work(session)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                raise

    async def _bounded(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        try:
            return await asyncio.wait_for(
                self._in_transaction(work),
                timeout=settings.STORAGE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("Storage timed out", operation=operation, timeout=settings.STORAGE_TIMEOUT_SECONDS)
            raise StorageTimeoutError(
                f"{operation} did not finish within {settings.STORAGE_TIMEOUT_SECONDS}s",
                operation=operation,
            )

    async def _atomic(
        self,
        learner_id: str,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run ``work`` as one transaction, retrying on write conflicts."""
        attempts = settings.CONFLICT_MAX_RETRIES + 1
        with operation_context(operation, learner_id):
            async with self.locks.for_learner(learner_id):
                for attempt in range(1, attempts + 1):
                    try:
                        result = await self._bounded(operation, work)
                    except (StaleDataError, IntegrityError) as e:
                        if attempt == attempts:
                            logger.error("Write conflict persisted", attempts=attempt)
                            raise ConflictError(
                                f"{operation} for learner {learner_id} kept conflicting",
                                operation=operation,
                            ) from e
                        logger.warning("Write conflict, retrying", attempt=attempt, error=type(e).__name__)
                        await asyncio.sleep(self._backoff_seconds(attempt))
                        continue

                    await self._invalidate_leaderboards()
                    return result

    @staticmethod
    def _backoff_seconds(attempt: int) -> float:
        base = settings.CONFLICT_BACKOFF_MS * (2 ** (attempt - 1))
        return (base + random.uniform(0, settings.CONFLICT_BACKOFF_MS)) / 1000

    async def _invalidate_leaderboards(self) -> None:
        self._leaderboard_generation += 1
        if self.cache is None:
            return
        try:
            await self.cache.clear(namespace=LEADERBOARD_NAMESPACE)
        except Exception as e:
            # Cached rankings still expire after LEADERBOARD_CACHE_TTL
            logger.warning("Failed to invalidate leaderboard cache", error=str(e))

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    @staticmethod
    async def _active_profile(session: AsyncSession, learner_id: str) -> LearnerProfile:
        profile = await session.get(LearnerProfile, learner_id)
        if profile is None or profile.is_retired:
            raise NotFoundError("learner", learner_id)
        return profile

    @staticmethod
    async def _path(session: AsyncSession, path_id: str) -> LearningPath:
        path = await session.get(LearningPath, path_id)
        if path is None:
            raise NotFoundError("path", path_id)
        return path

    @staticmethod
    async def _progress(session: AsyncSession, learner_id: str, path_id: str) -> Optional[UserProgress]:
        result = await session.execute(
            select(UserProgress).where(
                UserProgress.learner_id == learner_id,
                UserProgress.path_id == path_id,
            )
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def create_profile(self, data: ProfileCreate) -> ProfileResponse:
        """Create a learner profile; an existing one is returned unchanged."""

        async def work(session: AsyncSession) -> ProfileResponse:
            profile = await session.get(LearnerProfile, data.learner_id)
            if profile is None:
                profile = LearnerProfile(**data.model_dump())
                session.add(profile)
                await session.flush()
                logger.info("Learner profile created", learner_id=data.learner_id)
            return ProfileResponse.model_validate(profile)

        return await self._atomic(data.learner_id, "create_profile", work)

    async def retire_profile(self, learner_id: str) -> ProfileResponse:
        async def work(session: AsyncSession) -> ProfileResponse:
            profile = await self._active_profile(session, learner_id)
            profile.retired_at = datetime.utcnow()
            await session.flush()
            logger.info("Learner profile retired", learner_id=learner_id)
            return ProfileResponse.model_validate(profile)

        return await self._atomic(learner_id, "retire_profile", work)

    async def get_profile(self, learner_id: str) -> ProfileResponse:
        async def work(session: AsyncSession) -> ProfileResponse:
            profile = await session.get(LearnerProfile, learner_id)
            if profile is None:
                raise NotFoundError("learner", learner_id)
            return ProfileResponse.model_validate(profile)

        return await self._bounded("get_profile", work)

    # ------------------------------------------------------------------
    # Lessons
    # ------------------------------------------------------------------

    async def enroll(self, learner_id: str, path_id: str) -> UserProgressResponse:
        """Start ``path_id`` for the learner; enrolling twice is a no-op."""

        async def work(session: AsyncSession) -> UserProgressResponse:
            await self._active_profile(session, learner_id)
            path = await self._path(session, path_id)
            progress = await self._progress(session, learner_id, path_id)
            if progress is None:
                progress = UserProgress(
                    learner_id=learner_id,
                    path_id=path_id,
                    current_lesson_id=next(iter(path.lesson_ids()), None),
                )
                session.add(progress)
                await session.flush()
                logger.info("Learner enrolled", learner_id=learner_id, path_id=path_id)
            return UserProgressResponse.model_validate(progress)

        return await self._atomic(learner_id, "enroll", work)

    async def complete_lesson(
        self,
        learner_id: str,
        path_id: str,
        lesson_id: str,
        occurred_at: Optional[datetime] = None,
    ) -> LessonCompletionResponse:
        """Apply a lesson completion; replays of the same event change nothing."""
        occurred_at = occurred_at or datetime.utcnow()

        async def work(session: AsyncSession) -> LessonCompletionResponse:
            profile = await self._active_profile(session, learner_id)
            path = await self._path(session, path_id)
            if path.find_lesson(lesson_id) is None:
                if await session.get(Lesson, lesson_id) is None:
                    raise NotFoundError("lesson", lesson_id)
                raise InvalidLessonReferenceError(lesson_id, path_id)

            progress = await self._progress(session, learner_id, path_id)
            if progress is None:
                progress = UserProgress(learner_id=learner_id, path_id=path_id, started_at=occurred_at)
                session.add(progress)

            completion = complete_lesson(
                progress,
                path,
                lesson_id,
                now=occurred_at,
                enforce_locks=settings.ENFORCE_CHAPTER_LOCKS,
            )

            xp_engine = XpEngine(session)
            level_up = False
            bonus = 0
            if completion.applied:
                award = xp_engine.award_xp(
                    profile, completion.xp_awarded, XpReason.LESSON_COMPLETED,
                    source_id=lesson_id, awarded_at=occurred_at,
                )
                level_up = bool(award and award.level_up)
                bonus, bonus_level_up = self._apply_streak(xp_engine, profile, occurred_at)
                level_up = level_up or bonus_level_up

            await session.flush()

            if completion.applied:
                logger.info(
                    "Lesson completed",
                    learner_id=learner_id,
                    path_id=path_id,
                    lesson_id=lesson_id,
                    xp=completion.xp_awarded,
                    path_completed=completion.path_completed,
                )
            else:
                logger.info("Lesson already completed", learner_id=learner_id, lesson_id=lesson_id)

            return LessonCompletionResponse(
                learner_id=learner_id,
                path_id=path_id,
                lesson_id=lesson_id,
                applied=completion.applied,
                xp_awarded=completion.xp_awarded,
                streak_bonus=bonus,
                path_completed=completion.path_completed,
                completion_percent=path_completion_percent(progress, path.total_lessons),
                path_xp_earned=progress.xp_earned,
                current_lesson_id=progress.current_lesson_id,
                xp=profile.xp,
                level=profile.level,
                tier=profile.tier.value,
                level_up=level_up,
                current_streak=profile.current_streak,
            )

        return await self._atomic(learner_id, "complete_lesson", work)

    @staticmethod
    def _apply_streak(xp_engine: XpEngine, profile: LearnerProfile, occurred_at: datetime):
        streak = update_streak(profile, occurred_at.date())
        if not streak.extended:
            return 0, False
        bonus = xp_engine.streak_bonus(streak.current_streak)
        award = xp_engine.award_xp(
            profile, bonus, XpReason.STREAK_BONUS,
            source_id=occurred_at.date().isoformat(), awarded_at=occurred_at,
        )
        return bonus, bool(award and award.level_up)

    async def get_path_progress(self, learner_id: str, path_id: str) -> PathProgressResponse:
        async def work(session: AsyncSession) -> PathProgressResponse:
            path = await self._path(session, path_id)
            progress = await self._progress(session, learner_id, path_id)
            if progress is None:
                raise NotFoundError("progress", f"{learner_id}/{path_id}")

            completed = progress.completed_set
            locks = chapter_lock_states(path, completed)
            chapters = [
                ChapterProgress(
                    chapter_id=chapter.id,
                    title=chapter.title,
                    order=chapter.order,
                    locked=locked,
                    completed_lessons=sum(1 for lesson in chapter.lessons if lesson.id in completed),
                    total_lessons=len(chapter.lessons),
                )
                for chapter, locked in zip(path.ordered_chapters(), locks)
            ]
            return PathProgressResponse(
                progress=UserProgressResponse.model_validate(progress),
                completion_percent=path_completion_percent(progress, path.total_lessons),
                total_lessons=path.total_lessons,
                total_xp=path.total_xp,
                chapters=chapters,
            )

        return await self._bounded("get_path_progress", work)

    # ------------------------------------------------------------------
    # Submissions
    # ------------------------------------------------------------------

    async def submit_solution(
        self,
        learner_id: str,
        challenge_id: str,
        outcome: JudgedOutcome,
        submission_id: Optional[str] = None,
    ) -> SubmissionResult:
        """Record a judged submission and fold it into the learner profile.

        ``submission_id`` makes the call idempotent: a replay of a stored id
        returns the stored submission and the current profile untouched.
        """
        submitted_at = outcome.submitted_at or datetime.utcnow()

        async def work(session: AsyncSession) -> SubmissionResult:
            profile = await self._active_profile(session, learner_id)

            if submission_id is not None:
                existing = await session.get(Submission, submission_id)
                if existing is not None:
                    if existing.learner_id != learner_id or existing.challenge_id != challenge_id:
                        raise ConflictError(
                            f"submission {submission_id} belongs to another learner or challenge",
                            submission_id=submission_id,
                        )
                    logger.info("Submission replayed", learner_id=learner_id, submission_id=submission_id)
                    return SubmissionResult(
                        submission=SubmissionResponse.model_validate(existing),
                        profile=ProfileResponse.model_validate(profile),
                        first_solve=False,
                        xp_awarded=0,
                        streak_bonus=0,
                        level_up=False,
                        replayed=True,
                    )

            challenge = await session.get(Challenge, challenge_id)
            if challenge is None:
                raise NotFoundError("challenge", challenge_id)

            accepted = outcome.status.value == "accepted"
            submission = Submission(
                challenge_id=challenge_id,
                learner_id=learner_id,
                language=outcome.language.value,
                status=outcome.status.value,
                runtime_ms=outcome.runtime_ms if accepted else None,
                memory_mb=outcome.memory_mb if accepted else None,
                runtime_percentile=outcome.runtime_percentile if accepted else None,
                memory_percentile=outcome.memory_percentile if accepted else None,
                error_message=outcome.error_message,
                test_cases_passed=outcome.test_cases_passed,
                total_test_cases=outcome.total_test_cases,
                created_at=submitted_at,
            )
            if submission_id is not None:
                submission.id = submission_id
            session.add(submission)

            already_solved = await self._has_solved(session, learner_id, challenge_id)
            result = record_submission(profile, submission, challenge, already_solved)

            xp_engine = XpEngine(session)
            level_up = False
            bonus = 0
            await session.flush()
            if result.first_solve:
                session.add(SolvedChallenge(
                    learner_id=learner_id,
                    challenge_id=challenge_id,
                    difficulty=challenge.difficulty,
                    submission_id=submission.id,
                    solved_at=submitted_at,
                ))
                award = xp_engine.award_xp(
                    profile, result.xp_to_award, XpReason.CHALLENGE_SOLVED,
                    source_id=challenge_id, awarded_at=submitted_at,
                )
                level_up = bool(award and award.level_up)
            if result.accepted:
                bonus, bonus_level_up = self._apply_streak(xp_engine, profile, submitted_at)
                level_up = level_up or bonus_level_up

            # Challenge counters are shared by all learners: increment in SQL
            await session.execute(
                update(Challenge)
                .where(Challenge.id == challenge_id)
                .values(
                    total_submissions=Challenge.total_submissions + 1,
                    total_solved=Challenge.total_solved + (1 if result.first_solve else 0),
                )
                .execution_options(synchronize_session=False)
            )
            await session.flush()

            logger.info(
                "Submission recorded",
                learner_id=learner_id,
                challenge_id=challenge_id,
                status=submission.status,
                first_solve=result.first_solve,
                xp=result.xp_to_award,
            )
            return SubmissionResult(
                submission=SubmissionResponse.model_validate(submission),
                profile=ProfileResponse.model_validate(profile),
                first_solve=result.first_solve,
                xp_awarded=result.xp_to_award,
                streak_bonus=bonus,
                level_up=level_up,
            )

        return await self._atomic(learner_id, "submit_solution", work)

    @staticmethod
    async def _has_solved(session: AsyncSession, learner_id: str, challenge_id: str) -> bool:
        result = await session.execute(
            select(SolvedChallenge.id).where(
                SolvedChallenge.learner_id == learner_id,
                SolvedChallenge.challenge_id == challenge_id,
            )
        )
        return result.first() is not None

    async def has_solved(self, learner_id: str, challenge_id: str) -> bool:
        async def work(session: AsyncSession) -> bool:
            return await self._has_solved(session, learner_id, challenge_id)

        return await self._bounded("has_solved", work)

    # ------------------------------------------------------------------
    # Leaderboard
    # ------------------------------------------------------------------

    async def _ranking(self, scope: LeaderboardScope, timeframe: Timeframe) -> List[LeaderboardEntryResponse]:
        """Full ranking for ``scope``, read with a single statement."""
        cache_key = f"{scope}|{timeframe.value}"
        generation = self._leaderboard_generation
        if self.cache is not None:
            try:
                cached = await self.cache.get(cache_key, namespace=LEADERBOARD_NAMESPACE)
            except Exception as e:
                logger.warning("Leaderboard cache read failed", error=str(e))
                cached = None
            if cached is not None:
                return [LeaderboardEntryResponse.model_validate(entry) for entry in cached]

        async def work(session: AsyncSession) -> List[LeaderboardEntryResponse]:
            query = select(LearnerProfile).where(LearnerProfile.retired_at.is_(None))
            if scope.kind == "country":
                query = query.where(LearnerProfile.country == scope.value)
            elif scope.kind == "cohort":
                query = query.where(LearnerProfile.cohort == scope.value)

            scores = None
            if timeframe.days is None:
                result = await session.execute(query)
                profiles = list(result.scalars().all())
            else:
                since = datetime.utcnow() - timedelta(days=timeframe.days)
                window = (
                    select(
                        XpHistory.learner_id.label("learner_id"),
                        func.sum(XpHistory.amount).label("window_xp"),
                    )
                    .where(XpHistory.awarded_at >= since)
                    .group_by(XpHistory.learner_id)
                    .subquery()
                )
                query = query.add_columns(func.coalesce(window.c.window_xp, 0)).outerjoin(
                    window, window.c.learner_id == LearnerProfile.learner_id
                )
                result = await session.execute(query)
                rows = result.all()
                profiles = [row[0] for row in rows]
                scores = {row[0].learner_id: int(row[1]) for row in rows}

            entries = leaderboard.rank(profiles, scope, scores=scores)
            return [LeaderboardEntryResponse.model_validate(entry) for entry in entries]

        entries = await self._bounded("leaderboard", work)

        if self.cache is not None and generation == self._leaderboard_generation:
            # Only guards this process; other workers' snapshots expire with the TTL
            try:
                await self.cache.set(
                    cache_key,
                    [entry.model_dump(mode="json") for entry in entries],
                    ttl=settings.LEADERBOARD_CACHE_TTL,
                    namespace=LEADERBOARD_NAMESPACE,
                )
            except Exception as e:
                logger.warning("Leaderboard cache write failed", error=str(e))
        return entries

    async def get_leaderboard(
        self,
        scope: LeaderboardScope,
        limit: int,
        offset: int = 0,
        timeframe: Timeframe = Timeframe.ALL,
    ) -> List[LeaderboardEntryResponse]:
        return leaderboard.page(await self._ranking(scope, timeframe), limit, offset)

    async def count_ranked(self, scope: LeaderboardScope, timeframe: Timeframe = Timeframe.ALL) -> int:
        return len(await self._ranking(scope, timeframe))

    async def get_learner_rank(
        self,
        learner_id: str,
        scope: LeaderboardScope,
        timeframe: Timeframe = Timeframe.ALL,
    ) -> LeaderboardEntryResponse:
        entry = leaderboard.find_entry(await self._ranking(scope, timeframe), learner_id)
        if entry is None:
            raise NotFoundError("ranked learner", learner_id)
        return entry

    async def get_podium(
        self, scope: LeaderboardScope, timeframe: Timeframe = Timeframe.ALL
    ) -> List[LeaderboardEntryResponse]:
        return leaderboard.podium(await self._ranking(scope, timeframe))
