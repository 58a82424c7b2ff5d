"""
Error taxonomy for Lift-Off XP
Every failure the core can surface to a caller is one of these kinds.
"""

from enum import Enum


class ErrorKind(str, Enum):
    MISSING_BODYWEIGHT = "missing_bodyweight"
    DUPLICATE_ATTENDANCE = "duplicate_attendance"
    INSUFFICIENT_XP = "insufficient_xp"
    INVALID_PARTICIPANT = "invalid_participant"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"


class LiftOffError(Exception):
    """Base error. `details` holds structured context for the caller."""
    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "detail": self.message, **self.details}


class MissingBodyweight(LiftOffError):
    kind = ErrorKind.MISSING_BODYWEIGHT


class DuplicateAttendance(LiftOffError):
    kind = ErrorKind.DUPLICATE_ATTENDANCE


class InsufficientXp(LiftOffError):
    kind = ErrorKind.INSUFFICIENT_XP


class InvalidParticipant(LiftOffError):
    kind = ErrorKind.INVALID_PARTICIPANT


class InvalidStateTransition(LiftOffError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class NotFound(LiftOffError):
    kind = ErrorKind.NOT_FOUND


class InvalidInput(LiftOffError):
    kind = ErrorKind.INVALID_INPUT


# HTTP status used by the API layer for each kind
HTTP_STATUS = {
    ErrorKind.MISSING_BODYWEIGHT: 400,
    ErrorKind.DUPLICATE_ATTENDANCE: 409,
    ErrorKind.INSUFFICIENT_XP: 400,
    ErrorKind.INVALID_PARTICIPANT: 403,
    ErrorKind.INVALID_STATE_TRANSITION: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
}
