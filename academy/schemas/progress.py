"""Path progress schemas."""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class UserProgressResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    learner_id: str
    path_id: str
    completed_lessons: List[str]
    current_lesson_id: Optional[str] = None
    xp_earned: int
    started_at: datetime
    completed_at: Optional[datetime] = None


class ChapterProgress(BaseModel):
    chapter_id: str
    title: str
    order: int
    locked: bool
    completed_lessons: int
    total_lessons: int


class PathProgressResponse(BaseModel):
    progress: UserProgressResponse
    completion_percent: float
    total_lessons: int
    total_xp: int
    chapters: List[ChapterProgress]


class LessonCompletionResponse(BaseModel):
    """Progress summary returned after a lesson completion."""
    learner_id: str
    path_id: str
    lesson_id: str
    applied: bool
    xp_awarded: int
    streak_bonus: int
    path_completed: bool
    completion_percent: float
    path_xp_earned: int
    current_lesson_id: Optional[str] = None
    xp: int
    level: int
    tier: str
    level_up: bool
    current_streak: int
