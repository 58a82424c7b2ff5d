"""
Lift-Off challenges - XP wagers between two users

Lifecycle:
    pending  → accepted | declined | expired
    accepted → completed | expired

Both participants submit a lift; the second submission settles the wager in
the same transaction. Settlement moves XP between two stats rows, so it is
keyed by the challenge: the challenge row is locked, its status flips from
accepted to completed with a compare-and-set, and only the caller that wins
that flip transfers XP.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from config import CHALLENGE_EXPIRY_DAYS, TIE_POLICY
from database import atomic, LiftOffChallenge
from errors import InsufficientXp, InvalidInput, InvalidParticipant, InvalidStateTransition, NotFound
from game_engine import add_current_month_xp, add_monthly_xp, get_stats, month_key
from leveling import read_cumulative_xp, write_cumulative_xp

logger = logging.getLogger(__name__)

PENDING = "pending"
ACCEPTED = "accepted"
COMPLETED = "completed"
DECLINED = "declined"
EXPIRED = "expired"

OPEN_STATUSES = (PENDING, ACCEPTED)
TERMINAL_STATUSES = (COMPLETED, DECLINED, EXPIRED)


# ============================================================================
# Helpers
# ============================================================================

def _load(db: Session, challenge_id: int, for_update: bool = False) -> LiftOffChallenge:
    query = db.query(LiftOffChallenge).filter(LiftOffChallenge.id == challenge_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    challenge = query.first()
    if not challenge:
        raise NotFound("Challenge not found", challenge_id=challenge_id)
    return challenge


def _transition(db: Session, challenge: LiftOffChallenge, expected: str, values: dict) -> None:
    """Compare-and-set on status. Raises if another caller moved it first."""
    updated = db.query(LiftOffChallenge).filter(
        LiftOffChallenge.id == challenge.id,
        LiftOffChallenge.status == expected
    ).update(values, synchronize_session=False)
    if updated != 1:
        db.refresh(challenge)
        raise InvalidStateTransition(
            f"Challenge is {challenge.status}, expected {expected}",
            challenge_id=challenge.id, status=challenge.status, expected=expected,
        )
    db.refresh(challenge)


def is_expired(challenge: LiftOffChallenge, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return challenge.status in OPEN_STATUSES and challenge.expires_at <= now


def _expire_if_stale(db: Session, challenge: LiftOffChallenge, now: datetime) -> bool:
    """Persist the expired status on a stale open challenge. Caller commits."""
    if not is_expired(challenge, now):
        return False
    previous = challenge.status
    _transition(db, challenge, previous, {"status": EXPIRED, "updated_at": now})
    logger.info("Challenge %s expired (was %s)", challenge.id, previous)
    return True


def _expired_error(challenge: LiftOffChallenge) -> InvalidStateTransition:
    return InvalidStateTransition("Challenge has expired", challenge_id=challenge.id,
                                  status=EXPIRED, expires_at=challenge.expires_at.isoformat())


def available_xp(db: Session, user_id: str) -> int:
    """XP a user can stake: their whole cumulative total."""
    return read_cumulative_xp(get_stats(db, user_id))


def expire_stale_challenges(db: Session, now: Optional[datetime] = None) -> int:
    """Mark every open challenge past its deadline as expired. Returns count."""
    now = now or datetime.utcnow()
    with atomic(db):
        count = db.query(LiftOffChallenge).filter(
            LiftOffChallenge.status.in_(OPEN_STATUSES),
            LiftOffChallenge.expires_at <= now
        ).update({"status": EXPIRED, "updated_at": now}, synchronize_session=False)
    if count:
        logger.info("Expired %s stale challenges", count)
    return count


# ============================================================================
# Lifecycle
# ============================================================================

def create_challenge(db: Session, challenger_id: str, challenged_id: str,
                     exercise_id: str, wager_xp: int,
                     now: Optional[datetime] = None) -> LiftOffChallenge:
    if challenger_id == challenged_id:
        raise InvalidParticipant("Cannot challenge yourself", user_id=challenger_id)
    if not isinstance(wager_xp, int) or wager_xp <= 0:
        raise InvalidInput("Wager must be a positive whole number of XP", wager_xp=wager_xp)

    now = now or datetime.utcnow()
    with atomic(db):
        balance = available_xp(db, challenger_id)
        # Challenged user must exist; their balance is checked at accept time
        get_stats(db, challenged_id)
        if balance < wager_xp:
            raise InsufficientXp(
                f"Insufficient XP to create challenge. You have {balance} XP but need {wager_xp} XP.",
                user_id=challenger_id, available_xp=balance, wager_xp=wager_xp,
            )
        challenge = LiftOffChallenge(
            challenger_id=challenger_id,
            challenged_id=challenged_id,
            exercise_id=exercise_id,
            wager_xp=wager_xp,
            status=PENDING,
            created_at=now,
            expires_at=now + timedelta(days=CHALLENGE_EXPIRY_DAYS),
            updated_at=now,
        )
        db.add(challenge)
    db.refresh(challenge)
    logger.info("Challenge %s created: %s vs %s on %s for %s XP",
                challenge.id, challenger_id, challenged_id, exercise_id, wager_xp)
    return challenge


def accept_challenge(db: Session, challenge_id: int, user_id: str,
                     now: Optional[datetime] = None) -> LiftOffChallenge:
    now = now or datetime.utcnow()
    with atomic(db):
        challenge = _load(db, challenge_id, for_update=True)
        if challenge.challenged_id != user_id:
            raise InvalidParticipant("You are not the challenged user",
                                     challenge_id=challenge_id, user_id=user_id)
        expired = _expire_if_stale(db, challenge, now)
        if not expired:
            if challenge.status != PENDING:
                raise InvalidStateTransition(
                    f"Challenge is {challenge.status}, only pending challenges can be accepted",
                    challenge_id=challenge_id, status=challenge.status,
                )
            # Balance may have changed since the challenge was created
            balance = available_xp(db, user_id)
            if balance < challenge.wager_xp:
                raise InsufficientXp(
                    f"Insufficient XP to accept challenge. You have {balance} XP "
                    f"but need {challenge.wager_xp} XP.",
                    user_id=user_id, available_xp=balance, wager_xp=challenge.wager_xp,
                )
            _transition(db, challenge, PENDING,
                        {"status": ACCEPTED, "accepted_at": now, "updated_at": now})
    if expired:
        raise _expired_error(challenge)
    logger.info("Challenge %s accepted by %s", challenge_id, user_id)
    return challenge


def decline_challenge(db: Session, challenge_id: int, user_id: str,
                      now: Optional[datetime] = None) -> LiftOffChallenge:
    now = now or datetime.utcnow()
    with atomic(db):
        challenge = _load(db, challenge_id, for_update=True)
        if challenge.challenged_id != user_id:
            raise InvalidParticipant("Only the challenged user can decline",
                                     challenge_id=challenge_id, user_id=user_id)
        expired = _expire_if_stale(db, challenge, now)
        if not expired:
            if challenge.status != PENDING:
                raise InvalidStateTransition(
                    f"Challenge is {challenge.status}, only pending challenges can be declined",
                    challenge_id=challenge_id, status=challenge.status,
                )
            _transition(db, challenge, PENDING, {"status": DECLINED, "updated_at": now})
    if expired:
        raise _expired_error(challenge)
    logger.info("Challenge %s declined by %s", challenge_id, user_id)
    return challenge


def submit_weight(db: Session, challenge_id: int, user_id: str, weight: float,
                  now: Optional[datetime] = None) -> LiftOffChallenge:
    """
    Record a participant's lift. The submission that fills the second slot
    settles the challenge before the transaction commits.
    """
    if weight is None or weight <= 0:
        raise InvalidInput("Weight must be positive", weight=weight)

    now = now or datetime.utcnow()
    with atomic(db):
        challenge = _load(db, challenge_id, for_update=True)
        if user_id == challenge.challenger_id:
            slot = "challenger"
        elif user_id == challenge.challenged_id:
            slot = "challenged"
        else:
            raise InvalidParticipant("You are not part of this challenge",
                                     challenge_id=challenge_id, user_id=user_id)
        expired = _expire_if_stale(db, challenge, now)
        if not expired:
            if challenge.status != ACCEPTED:
                raise InvalidStateTransition(
                    f"Challenge is {challenge.status}, lifts can only be submitted once accepted",
                    challenge_id=challenge_id, status=challenge.status,
                )
            weight_column = getattr(LiftOffChallenge, f"{slot}_weight")
            updated = db.query(LiftOffChallenge).filter(
                LiftOffChallenge.id == challenge_id,
                LiftOffChallenge.status == ACCEPTED,
                weight_column.is_(None)
            ).update({
                f"{slot}_weight": weight,
                f"{slot}_completed_at": now,
                "updated_at": now,
            }, synchronize_session=False)
            if updated != 1:
                raise InvalidStateTransition("Lift already submitted for this challenge",
                                             challenge_id=challenge_id, user_id=user_id)
            db.refresh(challenge)
            logger.info("Challenge %s: %s submitted %s", challenge_id, slot, weight)

            if challenge.challenger_weight is not None and challenge.challenged_weight is not None:
                _settle(db, challenge, now)
    if expired:
        raise _expired_error(challenge)
    return challenge


def settle_challenge(db: Session, challenge_id: int,
                     now: Optional[datetime] = None) -> LiftOffChallenge:
    """
    Settle a challenge whose both lifts are in. Normally triggered by
    submit_weight; a second call on a completed challenge is rejected.
    """
    now = now or datetime.utcnow()
    with atomic(db):
        challenge = _load(db, challenge_id, for_update=True)
        if challenge.status != ACCEPTED:
            raise InvalidStateTransition(
                f"Challenge is {challenge.status}, only accepted challenges can be settled",
                challenge_id=challenge_id, status=challenge.status,
            )
        if challenge.challenger_weight is None or challenge.challenged_weight is None:
            raise InvalidStateTransition("Both lifts must be submitted before settlement",
                                         challenge_id=challenge_id)
        _settle(db, challenge, now)
    return challenge


# ============================================================================
# Settlement
# ============================================================================

def determine_winner(challenge: LiftOffChallenge) -> Optional[str]:
    """Strictly heavier lift wins. A tie has no winner."""
    if challenge.challenger_weight > challenge.challenged_weight:
        return challenge.challenger_id
    if challenge.challenged_weight > challenge.challenger_weight:
        return challenge.challenged_id
    return None


def _lock_pair(db: Session, user_a: str, user_b: str) -> dict:
    """Lock both stats rows in a fixed order so concurrent settlements can't deadlock."""
    rows = {}
    for user_id in sorted((user_a, user_b)):
        rows[user_id] = get_stats(db, user_id, for_update=True)
    return rows


def _settle(db: Session, challenge: LiftOffChallenge, now: datetime) -> None:
    """Flip to completed and move the wager. Runs inside the caller's transaction."""
    winner_id = determine_winner(challenge)
    if winner_id is None and TIE_POLICY != "draw":
        raise InvalidStateTransition(f"Unsupported tie policy {TIE_POLICY}",
                                     challenge_id=challenge.id)

    try:
        _transition(db, challenge, ACCEPTED,
                    {"status": COMPLETED, "winner_id": winner_id, "updated_at": now})
    except InvalidStateTransition:
        logger.warning("Challenge %s already settled, skipping XP transfer", challenge.id)
        raise

    if winner_id is None:
        logger.info("Challenge %s ended in a draw at %s, no XP moved",
                    challenge.id, challenge.challenger_weight)
        return

    loser_id = challenge.challenged_id if winner_id == challenge.challenger_id else challenge.challenger_id
    stats = _lock_pair(db, winner_id, loser_id)
    winner, loser = stats[winner_id], stats[loser_id]
    wager = challenge.wager_xp
    month = month_key(now.date())

    winner_before = read_cumulative_xp(winner)
    winner_level = write_cumulative_xp(winner, winner_before + wager)
    winner.challenges_won = (winner.challenges_won or 0) + 1
    add_current_month_xp(winner, month, wager)
    winner.updated_at = now
    add_monthly_xp(db, winner_id, month, wager)

    loser_before = read_cumulative_xp(loser)
    loser_level = write_cumulative_xp(loser, max(0, loser_before - wager))
    add_current_month_xp(loser, month, -wager)
    loser.updated_at = now
    add_monthly_xp(db, loser_id, month, -wager)

    db.flush()
    logger.info("Challenge %s settled: %s +%s XP (%s -> %s, level %s), %s -%s XP (%s -> %s, level %s)",
                challenge.id, winner_id, wager, winner_before, winner.cumulative_xp, winner_level,
                loser_id, wager, loser_before, loser.cumulative_xp, loser_level)


# ============================================================================
# Queries
# ============================================================================

def get_challenge(db: Session, challenge_id: int, user_id: str,
                  now: Optional[datetime] = None) -> LiftOffChallenge:
    now = now or datetime.utcnow()
    with atomic(db):
        challenge = _load(db, challenge_id, for_update=True)
        if user_id not in (challenge.challenger_id, challenge.challenged_id):
            raise InvalidParticipant("You are not part of this challenge",
                                     challenge_id=challenge_id, user_id=user_id)
        _expire_if_stale(db, challenge, now)
    return challenge


def get_user_challenges(db: Session, user_id: str,
                        now: Optional[datetime] = None) -> List[LiftOffChallenge]:
    expire_stale_challenges(db, now)
    return db.query(LiftOffChallenge).filter(
        or_(LiftOffChallenge.challenger_id == user_id,
            LiftOffChallenge.challenged_id == user_id)
    ).order_by(LiftOffChallenge.created_at.desc(), LiftOffChallenge.id.desc()).all()


def get_pending_challenges(db: Session, user_id: str,
                           now: Optional[datetime] = None) -> List[LiftOffChallenge]:
    """Challenges this user has received and not yet answered."""
    expire_stale_challenges(db, now)
    return db.query(LiftOffChallenge).filter(
        LiftOffChallenge.challenged_id == user_id,
        LiftOffChallenge.status == PENDING
    ).order_by(LiftOffChallenge.created_at.desc(), LiftOffChallenge.id.desc()).all()


def get_active_challenges(db: Session, user_id: str,
                          now: Optional[datetime] = None) -> List[LiftOffChallenge]:
    """Accepted challenges still waiting on at least one lift."""
    return [
        c for c in get_user_challenges(db, user_id, now)
        if c.status == ACCEPTED and (c.challenger_weight is None or c.challenged_weight is None)
    ]
