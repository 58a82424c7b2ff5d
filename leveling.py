"""
Level curve and XP ledger.

A user's progress is a single cumulative XP counter. Everything that needs a
level derives it from that counter through `decompose_level`, and everything
that reads a stored counter goes through `read_cumulative_xp` so legacy rows
are interpreted in exactly one place.
"""

import logging
import math
from typing import Tuple

from config import LEVEL_XP_BASE, LEVEL_XP_EXPONENT, MAX_LEVEL
from errors import InvalidInput

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def xp_for_level(level: int) -> int:
    """XP needed to complete `level` (move from `level` to `level + 1`)."""
    if level < 1 or level > MAX_LEVEL:
        raise InvalidInput(f"Level must be between 1 and {MAX_LEVEL}, got {level}", level=level)
    return round_half_up(LEVEL_XP_BASE * math.pow(level, LEVEL_XP_EXPONENT))


def xp_before_level(level: int) -> int:
    """Cumulative XP spent on levels 1 .. level-1."""
    return sum(xp_for_level(lvl) for lvl in range(1, level))


def decompose_level(cumulative_xp: int) -> Tuple[int, int]:
    """
    Split cumulative XP into (level, xp_within_level).
    At MAX_LEVEL any surplus stays in xp_within_level.
    """
    if cumulative_xp < 0:
        raise InvalidInput(f"Cumulative XP cannot be negative, got {cumulative_xp}",
                           cumulative_xp=cumulative_xp)
    level = 1
    remaining = cumulative_xp
    while level < MAX_LEVEL:
        cost = xp_for_level(level)
        if remaining < cost:
            break
        remaining -= cost
        level += 1
    return level, remaining


def recompose_xp(level: int, xp_within_level: int) -> int:
    """Inverse of decompose_level for well-formed input."""
    if level < 1 or level > MAX_LEVEL:
        raise InvalidInput(f"Level must be between 1 and {MAX_LEVEL}, got {level}", level=level)
    if xp_within_level < 0:
        raise InvalidInput("XP within level cannot be negative", xp_within_level=xp_within_level)
    return xp_before_level(level) + xp_within_level


def level_progress(cumulative_xp: int) -> dict:
    level, current = decompose_level(cumulative_xp)
    return {
        "level": level,
        "current": current,
        "needed": xp_for_level(level),
        "cumulative_xp": cumulative_xp,
    }


# ============================================================================
# Legacy format
# ============================================================================

def resolve_legacy_xp(level: int, stored_xp: int) -> int:
    """
    Interpret an XP value written before the counter was cumulative.

    If the value is smaller than the XP needed to reach the stored level it
    can only be current-level XP, so the missing prefix is added. Otherwise
    it is already cumulative.
    """
    level = max(1, min(level or 1, MAX_LEVEL))
    stored_xp = max(0, stored_xp or 0)
    prefix = xp_before_level(level)
    if stored_xp < prefix:
        return prefix + stored_xp
    return stored_xp


def read_cumulative_xp(stats) -> int:
    """
    Cumulative XP for a UserStats row. Legacy rows are upgraded in memory
    and flagged so the next write persists the cumulative value.
    """
    if stats.xp_is_cumulative:
        return stats.cumulative_xp or 0
    resolved = resolve_legacy_xp(stats.level, stats.cumulative_xp)
    logger.info("Upgraded legacy XP for %s: level=%s stored=%s -> cumulative=%s",
                stats.user_id, stats.level, stats.cumulative_xp, resolved)
    return resolved


def write_cumulative_xp(stats, cumulative_xp: int) -> int:
    """Store cumulative XP and the level derived from it. Returns the level."""
    cumulative_xp = max(0, cumulative_xp)
    level, _ = decompose_level(cumulative_xp)
    stats.cumulative_xp = cumulative_xp
    stats.level = level
    stats.xp_is_cumulative = True
    return level
