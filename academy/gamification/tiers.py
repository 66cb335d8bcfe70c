"""Tier ladder keyed by level."""

from enum import Enum
from typing import List, Optional

from academy.core.config import settings
from academy.gamification.xp_curve import level_from_xp


class Tier(str, Enum):
    """Learner tiers, lowest first."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"
    MASTER = "master"
    GRANDMASTER = "grandmaster"
    LEGENDARY = "legendary"


TIER_ORDER: List[Tier] = list(Tier)


def tier_for_level(level: int, thresholds: Optional[List[int]] = None) -> Tier:
    """Highest tier whose minimum level is <= ``level``.

    ``thresholds`` starts at 1 and is strictly increasing (validated in
    settings), so every level maps to exactly one tier.
    """
    thresholds = thresholds or settings.TIER_LEVEL_THRESHOLDS
    tier = Tier.BEGINNER
    for candidate, minimum in zip(TIER_ORDER, thresholds):
        if level >= minimum:
            tier = candidate
    return tier


def tier_for_xp(xp: int, thresholds: Optional[List[int]] = None) -> Tier:
    return tier_for_level(level_from_xp(xp), thresholds)
