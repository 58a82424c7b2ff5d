"""
Workout XP and streak formulas. Pure functions, no database access.
"""

from datetime import date, datetime
from typing import Optional, Sequence

from config import NORMAL_XP_FACTOR, PR_XP_FACTOR, STREAK_MULTIPLIER_CAP, STREAK_STEP
from errors import InvalidInput, MissingBodyweight
from leveling import round_half_up


def require_bodyweight(bodyweight: Optional[float]) -> float:
    if bodyweight is None or bodyweight <= 0:
        raise MissingBodyweight("Please set your bodyweight in profile settings")
    return bodyweight


# ============================================================================
# Exercise XP
# ============================================================================

def score_exercise(weight: float, bodyweight: float, reps: int, sets: int,
                   is_pr: bool = False) -> int:
    """
    PR:     (weight / bodyweight) * 100, reps and sets ignored
    Normal: (weight / bodyweight) * 10 * reps * sets
    """
    bodyweight = require_bodyweight(bodyweight)
    if weight < 0 or reps < 0 or sets < 0:
        raise InvalidInput("Weight, reps and sets cannot be negative",
                           weight=weight, reps=reps, sets=sets)
    ratio = weight / bodyweight
    if is_pr:
        return round_half_up(ratio * PR_XP_FACTOR)
    return round_half_up(ratio * NORMAL_XP_FACTOR * reps * sets)


def score_performance(exercise, bodyweight: float, is_pr: bool) -> int:
    """
    XP for one logged exercise. Non-PR lifts with per-set detail score each
    set on its own and sum; otherwise the best set is scored times set count.
    """
    if is_pr:
        return score_exercise(exercise.weight, bodyweight, 1, 1, is_pr=True)
    details: Sequence = exercise.set_details or []
    if details:
        return sum(score_exercise(s.weight, bodyweight, s.reps, 1) for s in details)
    return score_exercise(exercise.weight, bodyweight, exercise.reps, exercise.sets)


# ============================================================================
# Streaks
# ============================================================================

def streak_multiplier(streak: int) -> float:
    streak = max(streak, 1)
    return round(min(1.0 + (streak - 1) * STREAK_STEP, STREAK_MULTIPLIER_CAP), 2)


def as_day(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def compute_streak(last_workout_date, session_date, current_streak: int) -> dict:
    """
    Streak after training on `session_date`.

    1 day since last workout → streak + 1
    same day               → unchanged, same_day=True
    longer gap / first     → reset to 1
    """
    last_day = as_day(last_workout_date)
    session_day = as_day(session_date)
    current_streak = current_streak or 0
    same_day = False

    if last_day is None:
        new_streak = 1
    else:
        gap = (session_day - last_day).days
        if gap == 1:
            new_streak = current_streak + 1
        elif gap == 0:
            new_streak = max(current_streak, 1)
            same_day = True
        else:
            # gaps > 1 and out-of-order dates both break the streak
            new_streak = 1

    return {
        "new_streak": new_streak,
        "multiplier": streak_multiplier(new_streak),
        "same_day": same_day,
    }
