"""Per-path progress tracking models."""

from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, JSON
import uuid

from academy.core.database import Base


class UserProgress(Base):
    """Progress of one learner through one learning path.

    ``completed_lessons`` only ever grows. It is stored as a JSON list and
    always reassigned (never mutated in place) so the change is tracked.
    """
    __tablename__ = "user_progress"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    learner_id = Column(String, ForeignKey("learner_profiles.learner_id"), nullable=False, index=True)
    path_id = Column(String, ForeignKey("learning_paths.id"), nullable=False, index=True)
    completed_lessons = Column(JSON, nullable=False, default=list)
    current_lesson_id = Column(String)
    xp_earned = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("learner_id", "path_id"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("completed_lessons", [])
        kwargs.setdefault("xp_earned", 0)
        kwargs.setdefault("started_at", datetime.utcnow())
        super().__init__(**kwargs)

    @property
    def completed_set(self) -> frozenset:
        return frozenset(self.completed_lessons or ())

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
