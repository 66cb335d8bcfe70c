"""Chapter unlocking and lesson completion for a single learning path."""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from academy.core.exceptions import InvalidLessonReferenceError, LessonLockedError, NotFoundError
from academy.models.content import LearningPath
from academy.models.progress import UserProgress


@dataclass(frozen=True)
class LessonCompletion:
    """Outcome of applying a lesson completion to a progress record."""
    lesson_id: str
    applied: bool
    xp_awarded: int = 0
    path_completed: bool = False


def is_chapter_locked(path: LearningPath, chapter_index: int, completed_lessons: Iterable[str]) -> bool:
    """Chapter ``i > 0`` stays locked until every lesson of chapter ``i - 1`` is done."""
    chapters = path.ordered_chapters()
    if chapter_index < 0 or chapter_index >= len(chapters):
        raise NotFoundError("chapter", f"{path.id}[{chapter_index}]")
    if chapter_index == 0:
        return False

    completed = set(completed_lessons)
    previous = chapters[chapter_index - 1]
    return not all(lesson.id in completed for lesson in previous.lessons)


def chapter_lock_states(path: LearningPath, completed_lessons: Iterable[str]) -> List[bool]:
    completed = set(completed_lessons)
    return [is_chapter_locked(path, index, completed) for index in range(len(path.chapters))]


def next_lesson_id(path: LearningPath, completed_lessons: Iterable[str]) -> Optional[str]:
    """First lesson in unlock order that is not completed yet."""
    completed = set(completed_lessons)
    for lesson_id in path.lesson_ids():
        if lesson_id not in completed:
            return lesson_id
    return None


def complete_lesson(
    progress: UserProgress,
    path: LearningPath,
    lesson_id: str,
    xp_reward: Optional[int] = None,
    now: Optional[datetime] = None,
    enforce_locks: bool = False,
) -> LessonCompletion:
    """Mark ``lesson_id`` completed on ``progress``.

    Completing an already completed lesson is a no-op. ``xp_reward``
    defaults to the lesson's own reward.
    """
    if progress.path_id != path.id:
        raise NotFoundError("progress", f"{progress.learner_id}/{path.id}")

    lesson = path.find_lesson(lesson_id)
    if lesson is None:
        raise InvalidLessonReferenceError(lesson_id, path.id)

    completed = progress.completed_set
    if lesson_id in completed:
        return LessonCompletion(lesson_id=lesson_id, applied=False)

    if enforce_locks:
        chapter_index = path.chapter_index_of(lesson_id)
        if is_chapter_locked(path, chapter_index, completed):
            raise LessonLockedError(lesson_id, chapter_index)

    reward = lesson.xp_reward if xp_reward is None else xp_reward
    now = now or datetime.utcnow()

    progress.completed_lessons = list(progress.completed_lessons or []) + [lesson_id]
    progress.xp_earned = (progress.xp_earned or 0) + reward
    progress.current_lesson_id = next_lesson_id(path, progress.completed_lessons)

    path_completed = False
    if progress.completed_at is None and progress.current_lesson_id is None:
        progress.completed_at = now
        path_completed = True

    return LessonCompletion(
        lesson_id=lesson_id,
        applied=True,
        xp_awarded=reward,
        path_completed=path_completed,
    )


def path_completion_percent(progress: UserProgress, total_lessons: int) -> float:
    if total_lessons <= 0:
        return 0.0
    percent = len(progress.completed_set) / total_lessons * 100
    return min(percent, 100.0)
