# app/services/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Union

from app.core.errors import InvalidStateError


class SubmissionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"
    LATE = "late"
    DISQUALIFIED = "disqualified"


# Forward-only. late/disqualified are set administratively, never by this engine.
TRANSITIONS: Dict[SubmissionStatus, FrozenSet[SubmissionStatus]] = {
    SubmissionStatus.IN_PROGRESS: frozenset({SubmissionStatus.SUBMITTED, SubmissionStatus.DISQUALIFIED}),
    SubmissionStatus.SUBMITTED: frozenset({SubmissionStatus.GRADED}),
    SubmissionStatus.GRADED: frozenset(),
    SubmissionStatus.LATE: frozenset({SubmissionStatus.GRADED}),
    SubmissionStatus.DISQUALIFIED: frozenset(),
}

COMPLETED_STATUSES = frozenset({SubmissionStatus.SUBMITTED, SubmissionStatus.GRADED})


def _status(value: Union[str, SubmissionStatus]) -> SubmissionStatus:
    try:
        return SubmissionStatus(value)
    except ValueError:
        raise InvalidStateError(f"Unknown submission status: {value}")


def can_transition(current: Union[str, SubmissionStatus], target: Union[str, SubmissionStatus]) -> bool:
    return _status(target) in TRANSITIONS[_status(current)]


def ensure_transition(current: Union[str, SubmissionStatus], target: Union[str, SubmissionStatus]) -> SubmissionStatus:
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move submission from status: {_status(current).value} to {_status(target).value}"
        )
    return _status(target)


def ensure_in_progress(current: Union[str, SubmissionStatus], action: str = "modify answers for") -> None:
    if _status(current) is not SubmissionStatus.IN_PROGRESS:
        raise InvalidStateError(f"Cannot {action} a submission that is not in progress (status: {current})")


def ensure_can_submit(current: Union[str, SubmissionStatus]) -> None:
    status = _status(current)
    if status in COMPLETED_STATUSES:
        raise InvalidStateError(f"Assessment already submitted. Current status: {status.value}")
    if status is not SubmissionStatus.IN_PROGRESS:
        raise InvalidStateError(f"Cannot submit assessment with status: {status.value}")
