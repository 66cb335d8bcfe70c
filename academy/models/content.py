"""Learning content mirrored from the CMS: paths, chapters, lessons, challenges."""

from datetime import datetime
from enum import Enum
from typing import List, Optional
from sqlalchemy import Column, String, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from academy.core.database import Base


class Difficulty(str, Enum):
    """Challenge and path difficulty."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class LessonType(str, Enum):
    """Kinds of lesson inside a chapter."""
    CONCEPT = "concept"
    EXERCISE = "exercise"
    QUIZ = "quiz"
    CHALLENGE = "challenge"


class LearningPath(Base):
    """Ordered sequence of chapters."""
    __tablename__ = "learning_paths"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True)
    description = Column(String)
    difficulty = Column(String, default=Difficulty.EASY.value)
    estimated_hours = Column(Integer, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    chapters = relationship(
        "Chapter",
        back_populates="path",
        order_by="Chapter.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def ordered_chapters(self) -> List["Chapter"]:
        return sorted(self.chapters, key=lambda c: c.order)

    def ordered_lessons(self) -> List["Lesson"]:
        """All lessons in unlock order: chapter order, then lesson order."""
        return [lesson for chapter in self.ordered_chapters() for lesson in chapter.ordered_lessons()]

    def lesson_ids(self) -> List[str]:
        return [lesson.id for lesson in self.ordered_lessons()]

    def find_lesson(self, lesson_id: str) -> Optional["Lesson"]:
        for lesson in self.ordered_lessons():
            if lesson.id == lesson_id:
                return lesson
        return None

    def chapter_index_of(self, lesson_id: str) -> Optional[int]:
        for index, chapter in enumerate(self.ordered_chapters()):
            if any(lesson.id == lesson_id for lesson in chapter.lessons):
                return index
        return None

    @property
    def total_lessons(self) -> int:
        return sum(len(chapter.lessons) for chapter in self.chapters)

    @property
    def total_xp(self) -> int:
        return sum(lesson.xp_reward or 0 for lesson in self.ordered_lessons())


class Chapter(Base):
    """Ordered group of lessons inside a path."""
    __tablename__ = "chapters"

    id = Column(String, primary_key=True)
    path_id = Column(String, ForeignKey("learning_paths.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    order = Column(Integer, nullable=False)
    description = Column(String)

    # Relationships
    path = relationship("LearningPath", back_populates="chapters")
    lessons = relationship(
        "Lesson",
        back_populates="chapter",
        order_by="Lesson.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("path_id", "order"),
    )

    def ordered_lessons(self) -> List["Lesson"]:
        return sorted(self.lessons, key=lambda lesson: lesson.order)


class Lesson(Base):
    """Single lesson with its XP reward."""
    __tablename__ = "lessons"

    id = Column(String, primary_key=True)
    chapter_id = Column(String, ForeignKey("chapters.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    order = Column(Integer, nullable=False)
    type = Column(String, nullable=False, default=LessonType.CONCEPT.value)
    xp_reward = Column(Integer, nullable=False, default=0)
    estimated_minutes = Column(Integer, default=0)
    challenge_id = Column(String, ForeignKey("challenges.id"), nullable=True)

    # Relationships
    chapter = relationship("Chapter", back_populates="lessons")

    __table_args__ = (
        UniqueConstraint("chapter_id", "order"),
    )


class Challenge(Base):
    """Practice problem; the judge outcome for it arrives as a submission."""
    __tablename__ = "challenges"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True)
    difficulty = Column(String, nullable=False, default=Difficulty.EASY.value)
    xp_reward = Column(Integer, nullable=False, default=0)
    category = Column(String)
    is_boss_challenge = Column(Boolean, default=False)
    total_submissions = Column(Integer, nullable=False, default=0)
    total_solved = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_challenges_difficulty", "difficulty"),
    )

    @property
    def acceptance_rate(self) -> float:
        if not self.total_submissions:
            return 0.0
        return self.total_solved / self.total_submissions * 100
