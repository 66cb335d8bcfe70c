"""Leaderboard ranking: ordering, tie-breaks, tiers and podium."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional, TypeVar

from academy.core.config import settings
from academy.models.gamification import LearnerProfile

# Ranked rows: LeaderboardEntry or its API model, both carry learner_id and is_podium
E = TypeVar("E")


class Timeframe(str, Enum):
    ALL = "all"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def days(self) -> Optional[int]:
        return {Timeframe.WEEKLY: 7, Timeframe.MONTHLY: 30}.get(self)


@dataclass(frozen=True)
class LeaderboardScope:
    """Which learners take part in a ranking: everyone, a country or a cohort."""
    kind: str = "global"
    value: Optional[str] = None

    KINDS = ("global", "country", "cohort")

    @classmethod
    def parse(cls, raw: Optional[str]) -> "LeaderboardScope":
        if not raw or raw == "global":
            return cls()
        kind, _, value = raw.partition(":")
        if kind not in cls.KINDS or kind == "global" or not value:
            raise ValueError(f"invalid leaderboard scope: {raw!r}")
        return cls(kind=kind, value=value)

    def matches(self, profile: LearnerProfile) -> bool:
        if self.kind == "country":
            return profile.country == self.value
        if self.kind == "cohort":
            return profile.cohort == self.value
        return True

    def __str__(self) -> str:
        return self.kind if self.value is None else f"{self.kind}:{self.value}"


@dataclass(frozen=True)
class LeaderboardEntry:
    """Ranked, immutable snapshot of one profile."""
    rank: int
    learner_id: str
    display_name: Optional[str]
    username: Optional[str]
    score: int
    xp: int
    level: int
    tier: str
    current_streak: int
    total_solved: int
    country: Optional[str]
    joined_at: datetime
    is_podium: bool


def rank(
    profiles: Iterable[LearnerProfile],
    scope: Optional[LeaderboardScope] = None,
    scores: Optional[Mapping[str, int]] = None,
    podium_size: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """Rank ``profiles`` inside ``scope``.

    Order is score descending, then earlier ``joined_at``, then learner id,
    so ranks 1..N are always distinct. ``scores`` replaces lifetime XP as
    the score (XP earned in a timeframe); learners missing from it score 0.
    Retired profiles never rank.
    """
    scope = scope or LeaderboardScope()
    podium_size = settings.PODIUM_SIZE if podium_size is None else podium_size

    def score_of(profile: LearnerProfile) -> int:
        if scores is None:
            return profile.xp
        return scores.get(profile.learner_id, 0)

    candidates = [p for p in profiles if not p.is_retired and scope.matches(p)]
    ordered = sorted(candidates, key=lambda p: (-score_of(p), p.joined_at, p.learner_id))

    return [
        LeaderboardEntry(
            rank=position,
            learner_id=profile.learner_id,
            display_name=profile.display_name,
            username=profile.username,
            score=score_of(profile),
            xp=profile.xp,
            level=profile.level,
            tier=profile.tier.value,
            current_streak=profile.current_streak,
            total_solved=profile.total_solved,
            country=profile.country,
            joined_at=profile.joined_at,
            is_podium=position <= podium_size,
        )
        for position, profile in enumerate(ordered, start=1)
    ]


def podium(entries: List[E]) -> List[E]:
    return [entry for entry in entries if entry.is_podium]


def page(entries: List[E], limit: int, offset: int = 0) -> List[E]:
    return entries[offset:offset + limit]


def find_entry(entries: List[E], learner_id: str) -> Optional[E]:
    for entry in entries:
        if entry.learner_id == learner_id:
            return entry
    return None
