"""Judged submissions. Rows are written once and never updated."""

from datetime import datetime
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, ForeignKey, Index
import uuid

from academy.core.database import Base


class SubmissionStatus(str, Enum):
    """Judge verdicts."""
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    RUNTIME_ERROR = "runtime_error"
    TIME_LIMIT = "time_limit"
    COMPILE_ERROR = "compile_error"


class ProgrammingLanguage(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    JAVA = "java"
    CPP = "cpp"
    GO = "go"
    RUST = "rust"


class Submission(Base):
    """One judged attempt at a challenge."""
    __tablename__ = "submissions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    challenge_id = Column(String, ForeignKey("challenges.id"), nullable=False, index=True)
    learner_id = Column(String, ForeignKey("learner_profiles.learner_id"), nullable=False, index=True)
    language = Column(String, nullable=False)
    status = Column(String, nullable=False)
    # Performance metrics are kept only for accepted submissions
    runtime_ms = Column(Float)
    memory_mb = Column(Float)
    runtime_percentile = Column(Float)
    memory_percentile = Column(Float)
    error_message = Column(String)
    test_cases_passed = Column(Integer, nullable=False, default=0)
    total_test_cases = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_submissions_learner_created", "learner_id", "created_at"),
        Index("ix_submissions_learner_challenge", "learner_id", "challenge_id"),
    )
