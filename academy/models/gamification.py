"""Gamification models: learner profiles, solved challenges, XP history."""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, DateTime, Date, ForeignKey, UniqueConstraint, Index
import uuid

from academy.core.database import Base
from academy.gamification.tiers import Tier, tier_for_level
from academy.gamification.xp_curve import level_from_xp, xp_to_next_level, level_progress_percent


class XpReason(str, Enum):
    """Why XP was awarded."""
    LESSON_COMPLETED = "lesson_completed"
    CHALLENGE_SOLVED = "challenge_solved"
    STREAK_BONUS = "streak_bonus"


class LearnerProfile(Base):
    """XP, streak and solve counters for one learner.

    ``level`` and ``tier`` are derived from ``xp`` on every read. The
    ``version`` column guards concurrent writers: a stale update raises
    ``StaleDataError`` at flush time.
    """
    __tablename__ = "learner_profiles"

    learner_id = Column(String, primary_key=True)
    display_name = Column(String)
    username = Column(String, unique=True, index=True)
    country = Column(String, index=True)
    cohort = Column(String, index=True)
    xp = Column(Integer, nullable=False, default=0)
    current_streak = Column(Integer, nullable=False, default=0)
    longest_streak = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date)
    easy_solved = Column(Integer, nullable=False, default=0)
    medium_solved = Column(Integer, nullable=False, default=0)
    hard_solved = Column(Integer, nullable=False, default=0)
    total_submissions = Column(Integer, nullable=False, default=0)
    accepted_submissions = Column(Integer, nullable=False, default=0)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    retired_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_learner_profiles_xp_joined", "xp", "joined_at"),
    )

    def __init__(self, **kwargs):
        # Counters are usable before the first flush
        for counter in (
            "xp", "current_streak", "longest_streak", "easy_solved", "medium_solved",
            "hard_solved", "total_submissions", "accepted_submissions",
        ):
            kwargs.setdefault(counter, 0)
        kwargs.setdefault("joined_at", datetime.utcnow())
        super().__init__(**kwargs)

    @property
    def level(self) -> int:
        return level_from_xp(self.xp)

    @property
    def tier(self) -> Tier:
        return tier_for_level(self.level)

    @property
    def total_solved(self) -> int:
        return self.easy_solved + self.medium_solved + self.hard_solved

    @property
    def acceptance_rate(self) -> float:
        if not self.total_submissions:
            return 0.0
        return self.accepted_submissions / self.total_submissions

    @property
    def xp_to_next_level(self) -> int:
        return xp_to_next_level(self.xp)

    @property
    def level_progress_percent(self) -> float:
        return level_progress_percent(self.xp)

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


class SolvedChallenge(Base):
    """First accepted solve of a challenge by a learner."""
    __tablename__ = "solved_challenges"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id = Column(String, ForeignKey("learner_profiles.learner_id"), nullable=False, index=True)
    challenge_id = Column(String, ForeignKey("challenges.id"), nullable=False)
    difficulty = Column(String, nullable=False)
    submission_id = Column(String)
    solved_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("learner_id", "challenge_id"),
    )


class XpHistory(Base):
    """History of XP awards."""
    __tablename__ = "xp_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id = Column(String, ForeignKey("learner_profiles.learner_id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    source_id = Column(String)
    awarded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_xp_history_learner_date", "learner_id", "awarded_at"),
    )
