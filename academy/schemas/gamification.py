"""Profile and leaderboard schemas."""

from datetime import date, datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from academy.gamification.tiers import Tier


class ProfileCreate(BaseModel):
    learner_id: str = Field(min_length=1)
    display_name: Optional[str] = None
    username: Optional[str] = None
    country: Optional[str] = None
    cohort: Optional[str] = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    learner_id: str
    display_name: Optional[str] = None
    username: Optional[str] = None
    country: Optional[str] = None
    cohort: Optional[str] = None
    xp: int
    level: int
    tier: Tier
    xp_to_next_level: int
    level_progress_percent: float
    current_streak: int
    longest_streak: int
    last_active_date: Optional[date] = None
    easy_solved: int
    medium_solved: int
    hard_solved: int
    total_solved: int
    total_submissions: int
    accepted_submissions: int
    acceptance_rate: float
    joined_at: datetime
    retired_at: Optional[datetime] = None


class LeaderboardEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rank: int
    learner_id: str
    display_name: Optional[str] = None
    username: Optional[str] = None
    score: int
    xp: int
    level: int
    tier: str
    current_streak: int
    total_solved: int
    country: Optional[str] = None
    joined_at: datetime
    is_podium: bool


class LeaderboardResponse(BaseModel):
    scope: str
    timeframe: str
    total: int
    limit: int
    offset: int
    entries: List[LeaderboardEntryResponse]
    podium: List[LeaderboardEntryResponse] = []
