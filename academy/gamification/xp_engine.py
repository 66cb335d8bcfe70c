"""XP awarding engine."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import structlog

from academy.models.gamification import LearnerProfile, XpHistory, XpReason
from academy.gamification.tiers import Tier
from academy.core.config import settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class XpAward:
    amount: int
    total_xp: int
    old_level: int
    new_level: int
    old_tier: Tier
    new_tier: Tier

    @property
    def level_up(self) -> bool:
        return self.new_level > self.old_level

    @property
    def tier_up(self) -> bool:
        return self.new_tier != self.old_tier


def apply_xp(profile: LearnerProfile, amount: int) -> XpAward:
    """Add ``amount`` XP to the profile; level and tier follow from the curve."""
    if amount < 0:
        raise ValueError(f"XP awards cannot be negative, got {amount}")

    old_level, old_tier = profile.level, profile.tier
    profile.xp += amount
    return XpAward(
        amount=amount,
        total_xp=profile.xp,
        old_level=old_level,
        new_level=profile.level,
        old_tier=old_tier,
        new_tier=profile.tier,
    )


class XpEngine:
    """Engine for awarding XP and querying XP history.

    Awards join the caller's transaction: the engine adds rows to the
    session and never commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def award_xp(
        self,
        profile: LearnerProfile,
        amount: int,
        reason: XpReason,
        source_id: Optional[str] = None,
        awarded_at: Optional[datetime] = None,
    ) -> Optional[XpAward]:
        """Award XP to a learner and record it in the history."""
        if amount == 0:
            return None

        award = apply_xp(profile, amount)
        self.db.add(XpHistory(
            learner_id=profile.learner_id,
            amount=amount,
            reason=reason.value,
            source_id=source_id,
            awarded_at=awarded_at or datetime.utcnow(),
        ))

        logger.info(
            "XP awarded",
            learner_id=profile.learner_id,
            xp=amount,
            reason=reason.value,
            total_xp=award.total_xp,
            level_up=award.level_up,
        )
        return award

    def streak_bonus(self, streak_days: int) -> int:
        """Bonus for extending a streak to ``streak_days`` consecutive days."""
        if streak_days < 2:
            return 0
        return settings.STREAK_BONUS_XP

    async def xp_earned_since(
        self,
        since: datetime,
        learner_ids: Optional[Iterable[str]] = None,
    ) -> Dict[str, int]:
        """XP earned per learner from ``since`` onwards."""
        query = select(
            XpHistory.learner_id,
            func.sum(XpHistory.amount).label("xp"),
        ).where(
            XpHistory.awarded_at >= since
        ).group_by(XpHistory.learner_id)

        if learner_ids is not None:
            query = query.where(XpHistory.learner_id.in_(list(learner_ids)))

        result = await self.db.execute(query)
        return {row.learner_id: int(row.xp or 0) for row in result}

    async def weekly_xp(self, learner_id: str) -> int:
        earned = await self.xp_earned_since(datetime.utcnow() - timedelta(days=7), [learner_id])
        return earned.get(learner_id, 0)

    async def monthly_xp(self, learner_id: str) -> int:
        earned = await self.xp_earned_since(datetime.utcnow() - timedelta(days=30), [learner_id])
        return earned.get(learner_id, 0)
