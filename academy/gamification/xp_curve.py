"""Experience curve: XP thresholds per level.

Advancing from level ``n`` to ``n + 1`` costs ``floor(base * growth ** (n - 1))``
XP, so with the default 100 / 1.5 curve the steps are 100, 150, 225, 337...
Every level and progress figure shown anywhere in the service comes from
these functions.
"""

import math
from typing import Optional

from academy.core.config import settings


def _curve(base: Optional[int], growth: Optional[float]):
    base = settings.XP_CURVE_BASE if base is None else base
    growth = settings.XP_CURVE_GROWTH if growth is None else growth
    # Every step must cost at least 1 XP or level_from_xp never terminates
    if base < 1 or growth < 1:
        raise ValueError(f"XP curve needs base >= 1 and growth >= 1, got {base} / {growth}")
    return base, growth


def xp_for_level(level: int, base: Optional[int] = None, growth: Optional[float] = None) -> int:
    """Additional XP needed to go from ``level`` to ``level + 1``."""
    if level < 1:
        raise ValueError(f"level must be positive, got {level}")
    base, growth = _curve(base, growth)
    return math.floor(base * growth ** (level - 1))


def level_from_xp(xp: int, base: Optional[int] = None, growth: Optional[float] = None) -> int:
    """Highest level fully reached with ``xp`` cumulative XP."""
    if xp < 0:
        raise ValueError(f"xp must be non-negative, got {xp}")

    level = 1
    spent = 0
    needed = xp_for_level(1, base, growth)
    while spent + needed <= xp:
        spent += needed
        level += 1
        needed = xp_for_level(level, base, growth)
    return level


def xp_threshold(level: int, base: Optional[int] = None, growth: Optional[float] = None) -> int:
    """Cumulative XP at which ``level`` is reached (0 for level 1)."""
    if level < 1:
        raise ValueError(f"level must be positive, got {level}")
    return sum(xp_for_level(n, base, growth) for n in range(1, level))


def xp_to_next_level(xp: int) -> int:
    level = level_from_xp(xp)
    return xp_threshold(level + 1) - xp


def level_progress_percent(xp: int) -> float:
    """How far ``xp`` is between the current level threshold and the next one."""
    level = level_from_xp(xp)
    floor_xp = xp_threshold(level)
    step = xp_for_level(level)
    return round((xp - floor_xp) / step * 100, 2)
