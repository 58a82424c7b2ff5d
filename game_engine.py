"""
Lift-Off Game Engine - personal records and workout settlement
Turns a submitted workout into XP, level, streak and PR updates.

Every mutation here runs inside one transaction (database.atomic), so a
failed settlement leaves the user's stats exactly as they were.
"""

import logging
from datetime import datetime, date
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import STREAK_MULTIPLIER_CAP
from database import (
    atomic, UserStats, PersonalRecord, Attendance, WorkoutSession, MonthlyXP
)
from errors import DuplicateAttendance, InvalidInput, NotFound
from leveling import level_progress, read_cumulative_xp, round_half_up, write_cumulative_xp
from scoring import as_day, compute_streak, require_bodyweight, score_performance

logger = logging.getLogger(__name__)


# ============================================================================
# Stats Access
# ============================================================================

def get_stats(db: Session, user_id: str, for_update: bool = False) -> UserStats:
    query = db.query(UserStats).filter(UserStats.user_id == user_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    stats = query.first()
    if not stats:
        raise NotFound(f"No stats for user {user_id}", user_id=user_id)
    return stats


def get_or_create_stats(db: Session, user_id: str, username: str = "",
                        bodyweight: Optional[float] = None) -> UserStats:
    """Get existing UserStats or create a fresh level-1 row."""
    stats = db.query(UserStats).filter(UserStats.user_id == user_id).first()
    if stats:
        return stats
    if bodyweight is not None and bodyweight <= 0:
        raise InvalidInput("Bodyweight must be positive", bodyweight=bodyweight)
    with atomic(db):
        stats = UserStats(
            user_id=user_id,
            username=username,
            level=1,
            cumulative_xp=0,
            xp_is_cumulative=True,
            bodyweight=bodyweight,
            updated_at=datetime.utcnow(),
        )
        db.add(stats)
    db.refresh(stats)
    logger.info("Created stats for %s", user_id)
    return stats


def set_bodyweight(db: Session, user_id: str, bodyweight: float) -> UserStats:
    if bodyweight is None or bodyweight <= 0:
        raise InvalidInput("Bodyweight must be positive", bodyweight=bodyweight)
    with atomic(db):
        stats = get_stats(db, user_id, for_update=True)
        stats.bodyweight = bodyweight
        stats.updated_at = datetime.utcnow()
    db.refresh(stats)
    return stats


def add_monthly_xp(db: Session, user_id: str, month: str, delta: int) -> MonthlyXP:
    """Adjust the month's running total, floored at zero. Caller commits."""
    row = db.query(MonthlyXP).filter(
        MonthlyXP.user_id == user_id,
        MonthlyXP.month == month
    ).with_for_update().first()
    if not row:
        row = MonthlyXP(user_id=user_id, month=month, total_xp=0)
        db.add(row)
    row.total_xp = max(0, (row.total_xp or 0) + delta)
    return row


def month_key(day: date) -> str:
    return day.strftime("%Y-%m")


def add_current_month_xp(stats: UserStats, month: str, delta: int) -> int:
    """Adjust the stats row's current-month counter, starting over when the month changes."""
    if stats.current_month and stats.current_month != month:
        stats.current_month_xp = 0
    stats.current_month_xp = max(0, (stats.current_month_xp or 0) + delta)
    stats.current_month = month
    return stats.current_month_xp


# ============================================================================
# Personal Records
# ============================================================================

def get_current_pr(db: Session, user_id: str, exercise_id: str) -> Optional[PersonalRecord]:
    return db.query(PersonalRecord).filter(
        PersonalRecord.user_id == user_id,
        PersonalRecord.exercise_id == exercise_id,
        PersonalRecord.is_current_pr.is_(True)
    ).first()


def beats_record(weight: float, reps: int, record: PersonalRecord) -> bool:
    """Weight first, reps break ties."""
    return weight > record.weight or (weight == record.weight and reps > record.reps)


def detect_pr(db: Session, user_id: str, exercise_id: str, weight: float, reps: int,
              sets: Optional[int] = None, on: Optional[date] = None,
              record: bool = True) -> dict:
    """
    Compare a lift against the user's current record for the exercise.

    First lift ever → baseline (stored as current, no PR bonus).
    Better lift     → PR; old record keeps its row with the flag cleared.
    With record=False nothing is written. Writes are flushed, not committed.
    """
    current = get_current_pr(db, user_id, exercise_id)
    result = {"is_pr": False, "is_baseline": False, "previous": None, "record": None}

    if current is None:
        # Pre-existing history with no current flag still counts as history
        has_history = db.query(PersonalRecord.id).filter(
            PersonalRecord.user_id == user_id,
            PersonalRecord.exercise_id == exercise_id
        ).first() is not None
        if has_history:
            logger.warning("No current PR flagged for %s/%s; treating lift as baseline",
                           user_id, exercise_id)
        result["is_baseline"] = True
    else:
        result["previous"] = {"weight": current.weight, "reps": current.reps}
        result["is_pr"] = beats_record(weight, reps, current)

    if record and (result["is_baseline"] or result["is_pr"]):
        if current is not None:
            current.is_current_pr = False
        new_record = PersonalRecord(
            user_id=user_id,
            exercise_id=exercise_id,
            weight=weight,
            reps=reps,
            sets=sets,
            is_current_pr=True,
            points_earned=0,
            pr_date=on or datetime.utcnow().date(),
            timestamp=datetime.utcnow(),
        )
        db.add(new_record)
        db.flush()
        result["record"] = new_record

    if result["is_pr"]:
        logger.debug("PR for %s on %s: %s x %s (was %s)",
                     user_id, exercise_id, weight, reps, result["previous"])
    return result


def get_personal_records(db: Session, user_id: str, exercise_id: Optional[str] = None,
                         current_only: bool = False) -> List[PersonalRecord]:
    query = db.query(PersonalRecord).filter(PersonalRecord.user_id == user_id)
    if exercise_id:
        query = query.filter(PersonalRecord.exercise_id == exercise_id)
    if current_only:
        query = query.filter(PersonalRecord.is_current_pr.is_(True))
    return query.order_by(PersonalRecord.timestamp.desc(), PersonalRecord.id.desc()).all()


# ============================================================================
# Session Settlement
# ============================================================================

def _claim_attendance(db: Session, user_id: str, day: date) -> Attendance:
    existing = db.query(Attendance.id).filter(
        Attendance.user_id == user_id,
        Attendance.workout_date == day
    ).first()
    if existing:
        raise DuplicateAttendance(f"Workout already logged for {day.isoformat()}",
                                  user_id=user_id, workout_date=day.isoformat())
    attendance = Attendance(user_id=user_id, workout_date=day, points_earned=0)
    db.add(attendance)
    try:
        # Unique (user_id, workout_date) catches a concurrent submission
        db.flush()
    except IntegrityError:
        raise DuplicateAttendance(f"Workout already logged for {day.isoformat()}",
                                  user_id=user_id, workout_date=day.isoformat())
    return attendance


def settle_session(db: Session, user_id: str, exercises: list,
                   streak_multiplier: Optional[float] = None,
                   session_date: Optional[date] = None) -> dict:
    """
    Score a workout and apply it to the user's stats in one transaction.

    The streak multiplier applies to the whole session total, PR XP included.
    When the caller doesn't pass one, the multiplier of the new streak is used.
    """
    if not exercises:
        raise InvalidInput("Please add at least one exercise")
    exercise_ids = [ex.exercise_id for ex in exercises]
    if len(set(exercise_ids)) != len(exercise_ids):
        raise InvalidInput("Each exercise may only be logged once per session",
                           exercise_ids=exercise_ids)
    if streak_multiplier is not None and not 1.0 <= streak_multiplier <= STREAK_MULTIPLIER_CAP:
        raise InvalidInput(f"Streak multiplier must be between 1.0 and {STREAK_MULTIPLIER_CAP}",
                           streak_multiplier=streak_multiplier)

    day = as_day(session_date) or datetime.utcnow().date()
    if day > datetime.utcnow().date():
        raise InvalidInput("Cannot log future dates", session_date=day.isoformat())

    with atomic(db):
        stats = get_stats(db, user_id, for_update=True)
        bodyweight = require_bodyweight(stats.bodyweight)

        if stats.last_workout_date == day:
            raise DuplicateAttendance(f"Workout already logged for {day.isoformat()}",
                                      user_id=user_id, workout_date=day.isoformat())
        if stats.last_workout_date and day < stats.last_workout_date:
            raise InvalidInput("Cannot log a workout before your last logged workout",
                               session_date=day.isoformat(),
                               last_workout_date=stats.last_workout_date.isoformat())
        attendance = _claim_attendance(db, user_id, day)

        streak = compute_streak(stats.last_workout_date, day, stats.current_streak)
        multiplier = streak_multiplier if streak_multiplier is not None else streak["multiplier"]

        exercise_xp = 0
        prs_achieved = 0
        exercise_logs = []
        for ex in exercises:
            pr = detect_pr(db, user_id, ex.exercise_id, ex.weight, ex.reps, ex.sets, on=day)
            xp = score_performance(ex, bodyweight, pr["is_pr"])
            if pr["is_pr"]:
                prs_achieved += 1
                pr["record"].points_earned = xp
            exercise_xp += xp
            exercise_logs.append({
                "exercise_id": ex.exercise_id,
                "exercise_name": ex.exercise_name,
                "weight": ex.weight,
                "reps": ex.reps,
                "sets": ex.sets,
                "xp": xp,
                "is_pr": pr["is_pr"],
                "is_baseline": pr["is_baseline"],
            })

        session_xp = round_half_up(exercise_xp * multiplier)

        new_cumulative = read_cumulative_xp(stats) + session_xp
        new_level = write_cumulative_xp(stats, new_cumulative)
        month = month_key(day)
        add_current_month_xp(stats, month, session_xp)
        stats.total_workouts = (stats.total_workouts or 0) + 1
        stats.total_prs = (stats.total_prs or 0) + prs_achieved
        stats.current_streak = streak["new_streak"]
        stats.longest_streak = max(stats.longest_streak or 0, streak["new_streak"])
        stats.last_workout_date = day
        stats.updated_at = datetime.utcnow()
        add_monthly_xp(db, user_id, month, session_xp)
        attendance.points_earned = session_xp

        session = WorkoutSession(
            user_id=user_id,
            session_date=day,
            total_xp=session_xp,
            exercise_xp=exercise_xp,
            exercises_completed=exercise_logs,
            prs_achieved=prs_achieved,
            streak_multiplier=multiplier,
            timestamp=datetime.utcnow(),
        )
        db.add(session)
        db.flush()
        session_id = session.id

    logger.info("Settled session %s for %s: %s XP (%s x %.2f), %s PRs, level %s",
                session_id, user_id, session_xp, exercise_xp, multiplier, prs_achieved, new_level)

    return {
        "session_id": session_id,
        "session_xp": session_xp,
        "exercise_xp": exercise_xp,
        "prs_achieved": prs_achieved,
        "streak_multiplier": multiplier,
        "new_streak": streak["new_streak"],
        "new_level": new_level,
        "level_progress": level_progress(new_cumulative),
    }


# ============================================================================
# History
# ============================================================================

def get_workout_sessions(db: Session, user_id: str, limit: int = 50) -> List[WorkoutSession]:
    return db.query(WorkoutSession).filter(
        WorkoutSession.user_id == user_id
    ).order_by(WorkoutSession.session_date.desc(), WorkoutSession.id.desc()).limit(limit).all()


def get_monthly_xp_history(db: Session, user_id: str, sort: str = "high") -> List[MonthlyXP]:
    """Monthly totals, highest first ("high") or lowest first ("low")."""
    if sort not in ("high", "low"):
        raise InvalidInput("sort must be 'high' or 'low'", sort=sort)
    query = db.query(MonthlyXP).filter(MonthlyXP.user_id == user_id)
    if sort == "high":
        query = query.order_by(MonthlyXP.total_xp.desc(), MonthlyXP.month.desc())
    else:
        query = query.order_by(MonthlyXP.total_xp.asc(), MonthlyXP.month.asc())
    return query.all()


def get_attendance_history(db: Session, user_id: str, limit: int = 30) -> List[Attendance]:
    """Days trained, most recent first."""
    return db.query(Attendance).filter(
        Attendance.user_id == user_id
    ).order_by(Attendance.workout_date.desc()).limit(limit).all()
