"""Mirror of CMS content (paths and challenges) used by the progression engine."""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from academy.core.exceptions import CatalogConflictError, NotFoundError
from academy.gamification.progress_tracker import next_lesson_id
from academy.models.content import Challenge, Chapter, LearningPath, Lesson
from academy.models.progress import UserProgress
from academy.schemas.content import ChallengeIn, LearningPathIn

logger = structlog.get_logger()


class CatalogService:
    """Writes the content tables. Content is authored in the CMS; this only syncs it."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def upsert_path(self, data: LearningPathIn) -> LearningPath:
        """Sync the stored structure of a path with ``data``.

        Rows are updated in place so learner progress keeps pointing at the
        path. A sync that drops a lesson some learner already completed is
        rejected, and every progress record gets its next lesson recomputed.
        """
        path = await self.db.get(LearningPath, data.id)
        try:
            await self._check_ownership(data)
            if path is None:
                path = LearningPath(id=data.id)
                self.db.add(path)
            else:
                await self._check_removed_lessons(path, data)
                self._park_orders(path)
                await self.db.flush()

            self._apply_structure(path, data)
            await self.db.flush()
            repointed = await self._repoint_progress(path)
            await self.db.commit()
        except Exception as e:
            logger.error("Failed to sync learning path", path_id=data.id, error=str(e))
            await self.db.rollback()
            raise

        logger.info(
            "Learning path synced",
            path_id=data.id,
            chapters=len(data.chapters),
            lessons=path.total_lessons,
            progress_repointed=repointed,
        )
        return path

    async def _check_ownership(self, data: LearningPathIn) -> None:
        """Chapter and lesson ids are global; they may not move between paths."""
        chapter_ids = [chapter.id for chapter in data.chapters]
        lesson_ids = [lesson.id for chapter in data.chapters for lesson in chapter.lessons]

        if chapter_ids:
            result = await self.db.execute(
                select(Chapter.id, Chapter.path_id)
                .where(Chapter.id.in_(chapter_ids), Chapter.path_id != data.id)
            )
            taken = result.first()
            if taken is not None:
                raise CatalogConflictError(
                    f"chapter {taken.id} belongs to path {taken.path_id}",
                    path_id=data.id,
                    chapter_id=taken.id,
                )

        if lesson_ids:
            result = await self.db.execute(
                select(Lesson.id, Chapter.path_id)
                .join(Chapter, Lesson.chapter_id == Chapter.id)
                .where(Lesson.id.in_(lesson_ids), Chapter.path_id != data.id)
            )
            taken = result.first()
            if taken is not None:
                raise CatalogConflictError(
                    f"lesson {taken.id} belongs to path {taken.path_id}",
                    path_id=data.id,
                    lesson_id=taken.id,
                )

    async def _check_removed_lessons(self, path: LearningPath, data: LearningPathIn) -> None:
        kept = {lesson.id for chapter in data.chapters for lesson in chapter.lessons}
        removed = set(path.lesson_ids()) - kept
        if not removed:
            return

        result = await self.db.execute(select(UserProgress).where(UserProgress.path_id == path.id))
        for progress in result.scalars():
            completed = sorted(removed & progress.completed_set)
            if completed:
                raise CatalogConflictError(
                    f"lessons {', '.join(completed)} are completed by learners and cannot be removed",
                    path_id=path.id,
                    lesson_ids=completed,
                )

    @staticmethod
    def _park_orders(path: LearningPath) -> None:
        # Move every existing row to a negative order so the new orders can
        # be written without tripping the per-parent unique constraints
        parked = 0
        for chapter in path.chapters:
            parked += 1
            chapter.order = -parked
            for lesson in chapter.lessons:
                parked += 1
                lesson.order = -parked

    @staticmethod
    def _apply_structure(path: LearningPath, data: LearningPathIn) -> None:
        path.title = data.title
        path.slug = data.slug
        path.description = data.description
        path.difficulty = data.difficulty.value
        path.estimated_hours = data.estimated_hours

        chapters = {chapter.id: chapter for chapter in path.chapters}
        lessons = {lesson.id: lesson for chapter in path.chapters for lesson in chapter.lessons}

        synced = []
        for chapter_in in data.chapters:
            chapter = chapters.get(chapter_in.id) or Chapter(id=chapter_in.id)
            chapter.title = chapter_in.title
            chapter.order = chapter_in.order
            chapter.description = chapter_in.description

            chapter_lessons = []
            for lesson_in in chapter_in.lessons:
                lesson = lessons.get(lesson_in.id) or Lesson(id=lesson_in.id)
                lesson.title = lesson_in.title
                lesson.order = lesson_in.order
                lesson.type = lesson_in.type.value
                lesson.xp_reward = lesson_in.xp_reward
                lesson.estimated_minutes = lesson_in.estimated_minutes
                lesson.challenge_id = lesson_in.challenge_id
                chapter_lessons.append(lesson)
            chapter.lessons = chapter_lessons
            synced.append(chapter)

        # Chapters and lessons left out become orphans and are deleted
        path.chapters = synced

    async def _repoint_progress(self, path: LearningPath) -> int:
        """Recompute ``current_lesson_id`` for everyone enrolled in ``path``."""
        result = await self.db.execute(select(UserProgress).where(UserProgress.path_id == path.id))
        repointed = 0
        for progress in result.scalars():
            pointer = next_lesson_id(path, progress.completed_set)
            if progress.current_lesson_id != pointer:
                progress.current_lesson_id = pointer
                repointed += 1
        return repointed

    async def upsert_challenge(self, data: ChallengeIn) -> Challenge:
        """Create or update a challenge; judge counters are left untouched."""
        challenge = await self.db.get(Challenge, data.id)
        if challenge is None:
            challenge = Challenge(id=data.id, total_submissions=0, total_solved=0)
            self.db.add(challenge)

        challenge.title = data.title
        challenge.slug = data.slug
        challenge.difficulty = data.difficulty.value
        challenge.xp_reward = data.xp_reward
        challenge.category = data.category
        challenge.is_boss_challenge = data.is_boss_challenge

        try:
            await self.db.commit()
        except Exception as e:
            logger.error("Failed to sync challenge", challenge_id=data.id, error=str(e))
            await self.db.rollback()
            raise

        logger.info("Challenge synced", challenge_id=data.id, difficulty=challenge.difficulty)
        return challenge

    async def get_path(self, path_id: str) -> LearningPath:
        path = await self.db.get(LearningPath, path_id)
        if path is None:
            raise NotFoundError("path", path_id)
        return path

    async def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = await self.db.get(Challenge, challenge_id)
        if challenge is None:
            raise NotFoundError("challenge", challenge_id)
        return challenge

    async def list_challenges(self, difficulty: Optional[str] = None) -> List[Challenge]:
        query = select(Challenge)
        if difficulty:
            query = query.where(Challenge.difficulty == difficulty)
        result = await self.db.execute(query.order_by(Challenge.id))
        return list(result.scalars().all())
