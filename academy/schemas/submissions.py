"""Submission schemas."""

from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from academy.models.submission import SubmissionStatus, ProgrammingLanguage
from academy.schemas.gamification import ProfileResponse


class JudgedOutcome(BaseModel):
    """Verdict produced by the external judge."""
    status: SubmissionStatus
    language: ProgrammingLanguage
    runtime_ms: Optional[float] = Field(default=None, ge=0)
    memory_mb: Optional[float] = Field(default=None, ge=0)
    runtime_percentile: Optional[float] = Field(default=None, ge=0, le=100)
    memory_percentile: Optional[float] = Field(default=None, ge=0, le=100)
    error_message: Optional[str] = None
    test_cases_passed: int = Field(default=0, ge=0)
    total_test_cases: int = Field(default=0, ge=0)
    submitted_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_test_counts(self):
        if self.test_cases_passed > self.total_test_cases:
            raise ValueError("test_cases_passed cannot exceed total_test_cases")
        return self


class SubmitSolutionRequest(BaseModel):
    challenge_id: str
    outcome: JudgedOutcome
    submission_id: Optional[str] = None


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    challenge_id: str
    learner_id: str
    language: str
    status: str
    runtime_ms: Optional[float] = None
    memory_mb: Optional[float] = None
    runtime_percentile: Optional[float] = None
    memory_percentile: Optional[float] = None
    error_message: Optional[str] = None
    test_cases_passed: int
    total_test_cases: int
    created_at: datetime


class SubmissionResult(BaseModel):
    """Profile summary returned after a submission is recorded."""
    submission: SubmissionResponse
    profile: ProfileResponse
    first_solve: bool
    xp_awarded: int
    streak_bonus: int
    level_up: bool
    replayed: bool = False


class DailyActivity(BaseModel):
    date: date
    count: int
    accepted: int


class SubmissionStatsResponse(BaseModel):
    learner_id: str
    total: int
    accepted: int
    acceptance_rate: float
    by_status: Dict[str, int]
    by_language: Dict[str, int]
    median_runtime_ms: Optional[float] = None
    p90_runtime_ms: Optional[float] = None
    recent_activity: List[DailyActivity]
