"""
Lift-Off XP API - FastAPI application
Handles workout settlement, personal records, levels and Lift-Off XP wagers
"""

from fastapi import FastAPI, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
import os

from database import get_db, init_db
from schemas import (
    StatsCreate, BodyweightUpdate, UserStatsResponse, LevelProgress, MonthlyXPResponse,
    SessionSubmit, AttendanceResponse, SessionResult, WorkoutSessionResponse,
    PersonalRecordResponse, PRCheckResponse,
    ChallengeCreate, ChallengeAction, WeightSubmit, ChallengeResponse
)
from config import LOG_LEVEL, MAX_LEVEL
from errors import LiftOffError, HTTP_STATUS
from leveling import decompose_level, level_progress, read_cumulative_xp, xp_for_level
import game_engine
import liftoff

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Lift-Off XP API",
    description="Workout XP, levels, streaks and Lift-Off XP wagers",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup_event():
    init_db()


@app.exception_handler(LiftOffError)
def liftoff_error_handler(request: Request, exc: LiftOffError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=HTTP_STATUS[exc.kind], content=exc.to_dict())


@app.get("/")
def root():
    return {"status": "healthy", "service": "Lift-Off XP API", "version": "1.0.0"}


def _stats_response(stats) -> UserStatsResponse:
    cumulative = read_cumulative_xp(stats)
    response = UserStatsResponse.model_validate(stats)
    response.cumulative_xp = cumulative
    response.level = decompose_level(cumulative)[0]
    response.level_progress = LevelProgress(**level_progress(cumulative))
    return response


# ============================================================================
# Level Endpoints
# ============================================================================

@app.get("/api/levels/{level}", tags=["Levels"])
def get_level_cost(level: int):
    return {"level": level, "xp_required": xp_for_level(level), "max_level": MAX_LEVEL}


@app.get("/api/levels/progress/{cumulative_xp}", response_model=LevelProgress, tags=["Levels"])
def get_level_progress(cumulative_xp: int):
    return LevelProgress(**level_progress(cumulative_xp))


# ============================================================================
# Stats Endpoints
# ============================================================================

@app.post("/api/stats", response_model=UserStatsResponse, tags=["Stats"])
def create_stats(body: StatsCreate, db: Session = Depends(get_db)):
    stats = game_engine.get_or_create_stats(db, body.user_id, body.username, body.bodyweight)
    return _stats_response(stats)


@app.get("/api/stats/{user_id}", response_model=UserStatsResponse, tags=["Stats"])
def get_stats(user_id: str, db: Session = Depends(get_db)):
    return _stats_response(game_engine.get_stats(db, user_id))


@app.patch("/api/stats/{user_id}/bodyweight", response_model=UserStatsResponse, tags=["Stats"])
def update_bodyweight(user_id: str, body: BodyweightUpdate, db: Session = Depends(get_db)):
    return _stats_response(game_engine.set_bodyweight(db, user_id, body.bodyweight))


@app.get("/api/stats/{user_id}/monthly-xp", response_model=List[MonthlyXPResponse], tags=["Stats"])
def get_monthly_xp(user_id: str, sort: str = "high", db: Session = Depends(get_db)):
    rows = game_engine.get_monthly_xp_history(db, user_id, sort)
    return [MonthlyXPResponse.model_validate(row) for row in rows]


# ============================================================================
# Workout Endpoints
# ============================================================================

@app.post("/api/sessions", response_model=SessionResult, tags=["Workouts"])
def submit_session(body: SessionSubmit, db: Session = Depends(get_db)):
    result = game_engine.settle_session(
        db, body.user_id, body.exercises,
        streak_multiplier=body.streak_multiplier,
        session_date=body.session_date,
    )
    return SessionResult(**result)


@app.get("/api/sessions/{user_id}", response_model=List[WorkoutSessionResponse], tags=["Workouts"])
def get_sessions(user_id: str, limit: int = 50, db: Session = Depends(get_db)):
    sessions = game_engine.get_workout_sessions(db, user_id, limit)
    return [WorkoutSessionResponse.model_validate(s) for s in sessions]


@app.get("/api/attendance/{user_id}", response_model=List[AttendanceResponse], tags=["Workouts"])
def get_attendance(user_id: str, limit: int = 30, db: Session = Depends(get_db)):
    rows = game_engine.get_attendance_history(db, user_id, limit)
    return [AttendanceResponse.model_validate(r) for r in rows]


# ============================================================================
# PR Endpoints
# ============================================================================

@app.get("/api/prs/{user_id}", response_model=List[PersonalRecordResponse], tags=["PRs"])
def get_user_prs(user_id: str, exercise_id: Optional[str] = None, current_only: bool = False,
                 db: Session = Depends(get_db)):
    records = game_engine.get_personal_records(db, user_id, exercise_id, current_only)
    return [PersonalRecordResponse.model_validate(r) for r in records]


@app.get("/api/prs/{user_id}/{exercise_id}/check", response_model=PRCheckResponse, tags=["PRs"])
def check_pr(user_id: str, exercise_id: str, weight: float, reps: int, db: Session = Depends(get_db)):
    """Preview whether a lift would be a PR. Nothing is recorded."""
    result = game_engine.detect_pr(db, user_id, exercise_id, weight, reps, record=False)
    previous = result["previous"] or {}
    return PRCheckResponse(
        is_pr=result["is_pr"],
        is_baseline=result["is_baseline"],
        previous_weight=previous.get("weight"),
        previous_reps=previous.get("reps"),
    )


# ============================================================================
# Lift-Off Endpoints
# ============================================================================

@app.post("/api/challenges", response_model=ChallengeResponse, tags=["Lift-Off"])
def create_challenge(body: ChallengeCreate, db: Session = Depends(get_db)):
    challenge = liftoff.create_challenge(
        db, body.challenger_id, body.challenged_id, body.exercise_id, body.wager_xp
    )
    return ChallengeResponse.model_validate(challenge)


@app.post("/api/challenges/{challenge_id}/accept", response_model=ChallengeResponse, tags=["Lift-Off"])
def accept_challenge(challenge_id: int, body: ChallengeAction, db: Session = Depends(get_db)):
    return ChallengeResponse.model_validate(liftoff.accept_challenge(db, challenge_id, body.user_id))


@app.post("/api/challenges/{challenge_id}/decline", response_model=ChallengeResponse, tags=["Lift-Off"])
def decline_challenge(challenge_id: int, body: ChallengeAction, db: Session = Depends(get_db)):
    return ChallengeResponse.model_validate(liftoff.decline_challenge(db, challenge_id, body.user_id))


@app.post("/api/challenges/{challenge_id}/submit", response_model=ChallengeResponse, tags=["Lift-Off"])
def submit_challenge_weight(challenge_id: int, body: WeightSubmit, db: Session = Depends(get_db)):
    challenge = liftoff.submit_weight(db, challenge_id, body.user_id, body.weight)
    return ChallengeResponse.model_validate(challenge)


@app.get("/api/challenges/{challenge_id}", response_model=ChallengeResponse, tags=["Lift-Off"])
def get_challenge(challenge_id: int, user_id: str, db: Session = Depends(get_db)):
    return ChallengeResponse.model_validate(liftoff.get_challenge(db, challenge_id, user_id))


@app.get("/api/users/{user_id}/challenges", response_model=List[ChallengeResponse], tags=["Lift-Off"])
def list_challenges(user_id: str, view: str = "all", db: Session = Depends(get_db)):
    """view: all | pending | active"""
    if view == "pending":
        challenges = liftoff.get_pending_challenges(db, user_id)
    elif view == "active":
        challenges = liftoff.get_active_challenges(db, user_id)
    else:
        challenges = liftoff.get_user_challenges(db, user_id)
    return [ChallengeResponse.model_validate(c) for c in challenges]


@app.post("/api/admin/challenges/expire", tags=["Admin"])
def expire_challenges(db: Session = Depends(get_db)):
    return {"expired_count": liftoff.expire_stale_challenges(db)}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
