"""Catalog sync endpoints, called by the CMS webhook."""

from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from academy.core.database import get_db
from academy.core.dependencies import ensure_role, get_current_user
from academy.models.content import Challenge, Difficulty
from academy.schemas.content import ChallengeIn, ChallengeResponse, LearningPathIn
from academy.services.catalog_service import CatalogService

logger = structlog.get_logger()
router = APIRouter()


def challenge_response(challenge: Challenge) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        title=challenge.title,
        difficulty=challenge.difficulty,
        xp_reward=challenge.xp_reward,
        total_submissions=challenge.total_submissions,
        total_solved=challenge.total_solved,
        acceptance_rate=challenge.acceptance_rate,
    )


@router.put("/paths/{path_id}")
async def sync_path(
    path_id: str,
    path: LearningPathIn,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Sync a learning path's chapters and lessons in place."""
    ensure_role(current_user, "system", "admin")
    if path.id != path_id:
        raise HTTPException(status_code=422, detail="Path id in body does not match URL")

    synced = await CatalogService(db).upsert_path(path)
    return {
        "path_id": synced.id,
        "chapters": len(synced.chapters),
        "total_lessons": synced.total_lessons,
        "total_xp": synced.total_xp,
    }


@router.get("/paths/{path_id}")
async def get_path(
    path_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get a path's structure in unlock order."""
    path = await CatalogService(db).get_path(path_id)
    return {
        "path_id": path.id,
        "title": path.title,
        "total_xp": path.total_xp,
        "chapters": [
            {
                "chapter_id": chapter.id,
                "title": chapter.title,
                "order": chapter.order,
                "lessons": [
                    {"lesson_id": lesson.id, "title": lesson.title, "type": lesson.type, "xp_reward": lesson.xp_reward}
                    for lesson in chapter.ordered_lessons()
                ],
            }
            for chapter in path.ordered_chapters()
        ],
    }


@router.put("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def sync_challenge(
    challenge_id: str,
    challenge: ChallengeIn,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Create or update a challenge."""
    ensure_role(current_user, "system", "admin")
    if challenge.id != challenge_id:
        raise HTTPException(status_code=422, detail="Challenge id in body does not match URL")

    return challenge_response(await CatalogService(db).upsert_challenge(challenge))


@router.get("/challenges", response_model=List[ChallengeResponse])
async def list_challenges(
    difficulty: Optional[Difficulty] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get challenges with their acceptance rates."""
    challenges = await CatalogService(db).list_challenges(difficulty.value if difficulty else None)
    return [challenge_response(c) for c in challenges]


@router.get("/challenges/{challenge_id}", response_model=ChallengeResponse)
async def get_challenge(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one challenge."""
    return challenge_response(await CatalogService(db).get_challenge(challenge_id))
