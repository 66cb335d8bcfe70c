"""Catalog sync schemas for content mirrored from the CMS."""

from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from academy.models.content import Difficulty, LessonType


class LessonIn(BaseModel):
    id: str
    title: str
    order: int = Field(ge=0)
    type: LessonType = LessonType.CONCEPT
    xp_reward: int = Field(default=0, ge=0)
    estimated_minutes: int = Field(default=0, ge=0)
    challenge_id: Optional[str] = None


class ChapterIn(BaseModel):
    id: str
    title: str
    order: int = Field(ge=0)
    description: Optional[str] = None
    lessons: List[LessonIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_orders(self):
        orders = [lesson.order for lesson in self.lessons]
        if len(orders) != len(set(orders)):
            raise ValueError(f"lesson orders must be unique within chapter {self.id}")
        return self


class LearningPathIn(BaseModel):
    id: str
    title: str
    slug: Optional[str] = None
    description: Optional[str] = None
    difficulty: Difficulty = Difficulty.EASY
    estimated_hours: int = Field(default=0, ge=0)
    chapters: List[ChapterIn] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_orders(self):
        orders = [chapter.order for chapter in self.chapters]
        if len(orders) != len(set(orders)):
            raise ValueError("chapter orders must be unique within a path")
        lesson_ids = [lesson.id for chapter in self.chapters for lesson in chapter.lessons]
        if len(lesson_ids) != len(set(lesson_ids)):
            raise ValueError("lesson ids must be unique within a path")
        return self


class ChallengeIn(BaseModel):
    id: str
    title: str
    slug: Optional[str] = None
    difficulty: Difficulty
    xp_reward: int = Field(default=0, ge=0)
    category: Optional[str] = None
    is_boss_challenge: bool = False


class ChallengeResponse(BaseModel):
    id: str
    title: str
    difficulty: str
    xp_reward: int
    total_submissions: int
    total_solved: int
    acceptance_rate: float
