# app/core/errors.py

"""
Error taxonomy for the submission engine.

The HTTP layer maps failures to status codes by inspecting the message text
(see ``status_code_for_message``). Messages raised here are therefore part of
the public contract: keep the classifying substrings intact when rewording.
"""

from typing import Tuple


class AssessmentError(Exception):
    """Base class for every caller-facing failure of the engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return status_code_for_message(self.message)


class NotFoundError(AssessmentError):
    pass


class UnauthorizedError(AssessmentError):
    pass


class InvalidStateError(AssessmentError):
    pass


class ValidationError(AssessmentError):
    pass


class TimeWindowViolation(AssessmentError):
    pass


class SchedulingViolation(TimeWindowViolation):
    pass


class MaxAttemptsReached(AssessmentError):
    pass


class ConcurrencyConflict(AssessmentError):
    pass


class StoreError(AssessmentError):
    pass


# -------------------------------------------------------------------
# Message classification
# -------------------------------------------------------------------

# Order matters: the first matching rule wins.
_MESSAGE_RULES: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("unauthorized", "permission", "access denied"), 403),
    (("not found",), 404),
    (("already submitted",), 400),
    (
        (
            "expired",
            "exceeded",
            "not yet started",
            "has ended",
            "maximum attempts",
            "not available",
            "must wait",
        ),
        403,
    ),
    (("status",), 400),
    (("size exceeds", "empty", "invalid", "required"), 400),
    (("conflict",), 409),
)


def status_code_for_message(message: str) -> int:
    """Classify an engine failure message into a transport status code."""
    text = (message or "").lower()
    for needles, code in _MESSAGE_RULES:
        if any(needle in text for needle in needles):
            return code
    return 500
