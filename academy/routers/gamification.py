"""Profile and leaderboard endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from academy.core.config import settings
from academy.core.database import get_db
from academy.core.dependencies import (
    ensure_role,
    ensure_self_or_role,
    get_current_user,
    get_progression_service,
)
from academy.gamification.leaderboard import LeaderboardScope, Timeframe
from academy.gamification.xp_engine import XpEngine
from academy.schemas.gamification import (
    LeaderboardEntryResponse,
    LeaderboardResponse,
    ProfileCreate,
    ProfileResponse,
)
from academy.services.progression_service import ProgressionService

logger = structlog.get_logger()
router = APIRouter()


def parse_scope(scope: str) -> LeaderboardScope:
    try:
        return LeaderboardScope.parse(scope)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("/profiles", response_model=ProfileResponse)
async def create_profile(
    profile: ProfileCreate,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Create a learner profile (returns the existing one if present)."""
    ensure_self_or_role(current_user, profile.learner_id, "system")
    return await service.create_profile(profile)


@router.get("/profiles/{learner_id}", response_model=ProfileResponse)
async def get_profile(
    learner_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Get a learner profile."""
    return await service.get_profile(learner_id)


@router.get("/profiles/{learner_id}/xp")
async def get_xp_summary(
    learner_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service),
    db: AsyncSession = Depends(get_db)
):
    """Lifetime XP next to XP earned in the last 7 and 30 days."""
    profile = await service.get_profile(learner_id)
    engine = XpEngine(db)
    return {
        "learner_id": learner_id,
        "xp": profile.xp,
        "level": profile.level,
        "weekly_xp": await engine.weekly_xp(learner_id),
        "monthly_xp": await engine.monthly_xp(learner_id),
    }


@router.post("/profiles/{learner_id}/retire", response_model=ProfileResponse)
async def retire_profile(
    learner_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Soft-retire a learner: data is kept, rankings and new activity are not."""
    ensure_role(current_user, "admin")
    return await service.retire_profile(learner_id)


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    scope: str = Query("global"),
    timeframe: Timeframe = Query(Timeframe.ALL),
    limit: int = Query(50, ge=1),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Get the XP leaderboard."""
    parsed = parse_scope(scope)
    limit = min(limit, settings.LEADERBOARD_SIZE)
    entries = await service.get_leaderboard(parsed, limit=limit, offset=offset, timeframe=timeframe)

    return {
        "scope": str(parsed),
        "timeframe": timeframe.value,
        "total": await service.count_ranked(parsed, timeframe),
        "limit": limit,
        "offset": offset,
        "entries": entries,
        "podium": await service.get_podium(parsed, timeframe),
    }


@router.get("/leaderboard/rank/{learner_id}", response_model=LeaderboardEntryResponse)
async def get_learner_rank(
    learner_id: str,
    scope: str = Query("global"),
    timeframe: Timeframe = Query(Timeframe.ALL),
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Get one learner's position on the leaderboard."""
    return await service.get_learner_rank(learner_id, parse_scope(scope), timeframe)
