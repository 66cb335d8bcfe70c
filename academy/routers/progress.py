"""Path progress endpoints."""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Body, Depends
import structlog

from academy.core.dependencies import ensure_self_or_role, get_current_user, get_progression_service
from academy.schemas.progress import LessonCompletionResponse, PathProgressResponse, UserProgressResponse
from academy.services.progression_service import ProgressionService

logger = structlog.get_logger()
router = APIRouter()


@router.post("/{learner_id}/paths/{path_id}/enroll", response_model=UserProgressResponse)
async def enroll_in_path(
    learner_id: str,
    path_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Start a learning path."""
    ensure_self_or_role(current_user, learner_id, "system")
    return await service.enroll(learner_id, path_id)


@router.post(
    "/{learner_id}/paths/{path_id}/lessons/{lesson_id}/complete",
    response_model=LessonCompletionResponse,
)
async def complete_lesson(
    learner_id: str,
    path_id: str,
    lesson_id: str,
    occurred_at: Optional[datetime] = Body(None, embed=True),
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Mark a lesson completed. Safe to repeat."""
    ensure_self_or_role(current_user, learner_id, "system")
    return await service.complete_lesson(learner_id, path_id, lesson_id, occurred_at=occurred_at)


@router.get("/{learner_id}/paths/{path_id}", response_model=PathProgressResponse)
async def get_path_progress(
    learner_id: str,
    path_id: str,
    current_user: dict = Depends(get_current_user),
    service: ProgressionService = Depends(get_progression_service)
):
    """Get a learner's progress through one path, with chapter lock states."""
    ensure_self_or_role(current_user, learner_id, "instructor", "system", "admin")
    return await service.get_path_progress(learner_id, path_id)
