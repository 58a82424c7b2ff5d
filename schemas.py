"""
Pydantic request/response models for the Lift-Off XP API
"""

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from config import STREAK_MULTIPLIER_CAP


# ============================================================================
# Stats
# ============================================================================

class StatsCreate(BaseModel):
    user_id: str
    username: str = ""
    bodyweight: Optional[float] = Field(default=None, gt=0)


class BodyweightUpdate(BaseModel):
    bodyweight: float = Field(gt=0)


class LevelProgress(BaseModel):
    level: int
    current: int
    needed: int
    cumulative_xp: int


class UserStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    username: str
    level: int
    cumulative_xp: int
    current_month_xp: int
    current_month: Optional[str] = None
    current_streak: int
    longest_streak: int
    total_workouts: int
    total_prs: int
    challenges_won: int
    last_workout_date: Optional[date] = None
    bodyweight: Optional[float] = None
    level_progress: Optional[LevelProgress] = None


class MonthlyXPResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    month: str
    total_xp: int


class AttendanceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workout_date: date
    points_earned: int


# ============================================================================
# Workouts
# ============================================================================

class SetDetail(BaseModel):
    weight: float = Field(ge=0)
    reps: int = Field(ge=0)


class ExerciseSet(BaseModel):
    exercise_id: str
    exercise_name: str = ""
    weight: float = Field(ge=0)   # best set, used for PR detection
    reps: int = Field(ge=0)       # best set, used for PR detection
    sets: int = Field(default=1, ge=1)
    set_details: Optional[List[SetDetail]] = None


class SessionSubmit(BaseModel):
    user_id: str
    exercises: List[ExerciseSet]
    streak_multiplier: Optional[float] = Field(default=None, ge=1.0, le=STREAK_MULTIPLIER_CAP)
    session_date: Optional[date] = None


class SessionResult(BaseModel):
    session_id: int
    session_xp: int
    exercise_xp: int
    prs_achieved: int
    streak_multiplier: float
    new_streak: int
    new_level: int
    level_progress: LevelProgress


class WorkoutSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    session_date: date
    total_xp: int
    exercise_xp: int
    exercises_completed: list
    prs_achieved: int
    streak_multiplier: float


class PersonalRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    exercise_id: str
    weight: float
    reps: int
    sets: Optional[int] = None
    is_current_pr: bool
    points_earned: int
    pr_date: date


class PRCheckResponse(BaseModel):
    is_pr: bool
    is_baseline: bool
    previous_weight: Optional[float] = None
    previous_reps: Optional[int] = None


# ============================================================================
# Lift-Off challenges
# ============================================================================

class ChallengeCreate(BaseModel):
    challenger_id: str
    challenged_id: str
    exercise_id: str
    wager_xp: int = Field(gt=0)


class ChallengeAction(BaseModel):
    user_id: str


class WeightSubmit(BaseModel):
    user_id: str
    weight: float = Field(gt=0)


class ChallengeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    challenger_id: str
    challenged_id: str
    exercise_id: str
    wager_xp: int
    status: str
    created_at: datetime
    accepted_at: Optional[datetime] = None
    expires_at: datetime
    challenger_weight: Optional[float] = None
    challenged_weight: Optional[float] = None
    challenger_completed_at: Optional[datetime] = None
    challenged_completed_at: Optional[datetime] = None
    winner_id: Optional[str] = None
