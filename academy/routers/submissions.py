"""Submission endpoints."""

from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from academy.analytics.analytics_engine import AnalyticsEngine
from academy.core.database import get_db
from academy.core.dependencies import ensure_self_or_role, get_current_user, get_progression_service
from academy.models.submission import ProgrammingLanguage, SubmissionStatus
from academy.schemas.submissions import (
    SubmissionResponse,
    SubmissionResult,
    SubmissionStatsResponse,
    SubmitSolutionRequest,
)
from academy.services.progression_service import ProgressionService

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{learner_id}", response_model=SubmissionResult)
async def submit_solution(
    learner_id: str,
    request: SubmitSolutionRequest,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Record a judged submission."""
    ensure_self_or_role(current_user, learner_id, "judge", "system")
    return await service.submit_solution(
        learner_id,
        request.challenge_id,
        request.outcome,
        submission_id=request.submission_id,
    )


@router.get("/{learner_id}", response_model=List[SubmissionResponse])
async def list_submissions(
    learner_id: str,
    status: Optional[SubmissionStatus] = Query(None),
    language: Optional[ProgrammingLanguage] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a learner's submissions, newest first."""
    ensure_self_or_role(current_user, learner_id, "instructor", "system", "admin")
    engine = AnalyticsEngine(db)
    return await engine.list_submissions(
        learner_id,
        status=status,
        language=language.value if language else None,
        limit=limit,
        offset=offset,
    )


@router.get("/{learner_id}/stats", response_model=SubmissionStatsResponse)
async def get_submission_stats(
    learner_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get submission totals and recent activity."""
    ensure_self_or_role(current_user, learner_id, "instructor", "system", "admin")
    engine = AnalyticsEngine(db)
    return await engine.submission_stats(learner_id)


@router.get("/{learner_id}/solved/{challenge_id}")
async def has_solved(
    learner_id: str,
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Whether the learner already solved the challenge."""
    return {
        "learner_id": learner_id,
        "challenge_id": challenge_id,
        "solved": await service.has_solved(learner_id, challenge_id),
    }
