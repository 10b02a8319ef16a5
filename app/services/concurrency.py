# app/services/concurrency.py

"""
Store-level concurrency primitives.

Nothing here uses in-process locks: every guarantee comes from the database
(row locks, unique constraints, conditional updates), so several API
instances can share one store safely.
"""

import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import ConcurrencyConflict
from app.db.schema import SchemaCapabilities
from app.models.submission import StudentResponse, Submission
from app.services.state_machine import SubmissionStatus

logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Row locks
# -------------------------------------------------------------------

def lock_submission(db: Session, submission_id: uuid.UUID) -> Optional[Submission]:
    """SELECT ... FOR UPDATE, always re-reading the row from the store."""
    stmt = (
        select(Submission)
        .where(Submission.id == submission_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


SERIALIZATION_FAILURE = "40001"


def is_serialization_failure(error: Optional[BaseException]) -> bool:
    """
    True for a DBAPI error carrying SQLSTATE 40001: under REPEATABLE READ,
    a transaction that waited on a row lock sees the row changed by the
    holder's commit.
    """
    if not isinstance(error, DBAPIError):
        return False
    orig = error.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == SERIALIZATION_FAILURE


def find_in_progress(db: Session, assessment_id: uuid.UUID, student_id: str) -> Optional[Submission]:
    stmt = (
        select(Submission)
        .where(
            Submission.assessment_id == assessment_id,
            Submission.student_id == student_id,
            Submission.status == SubmissionStatus.IN_PROGRESS.value,
        )
        .order_by(Submission.started_at.desc())
        .execution_options(populate_existing=True)
    )
    return db.scalars(stmt).first()


def next_attempt_number(db: Session, assessment_id: uuid.UUID, student_id: str) -> int:
    """
    MAX(attempt_number) + 1 over the student's attempts, read under row
    locks. Aggregates cannot carry FOR UPDATE, so the rows are locked and
    the maximum is taken here.
    """
    stmt = (
        select(Submission.attempt_number)
        .where(
            Submission.assessment_id == assessment_id,
            Submission.student_id == student_id,
        )
        .with_for_update()
    )
    numbers = [n for n in db.scalars(stmt).all() if n is not None]
    return max(numbers, default=0) + 1


# -------------------------------------------------------------------
# Get-or-create
# -------------------------------------------------------------------

def get_or_create_attempt(
    db: Session,
    caps: SchemaCapabilities,
    assessment_id: uuid.UUID,
    student_id: str,
    build_values: Callable[[int], Dict[str, Any]],
    retry_delay_seconds: float = 0.1,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[Submission, bool]:
    """
    Return the student's in_progress attempt, creating it when none exists.

    The insert runs inside a SAVEPOINT. When it hits a unique constraint the
    savepoint is rolled back and the winner's row is returned; an attempt
    number collision without a live winner is retried once.

    Returns:
        (submission, created)
    """
    existing = find_in_progress(db, assessment_id, student_id)
    if existing is not None:
        return existing, False

    for retry in range(2):
        number = next_attempt_number(db, assessment_id, student_id)
        values = build_values(number)
        values.setdefault("id", uuid.uuid4())
        try:
            with db.begin_nested():
                db.execute(insert(Submission).values(**caps.submission_values(values)))
        except IntegrityError:
            winner = find_in_progress(db, assessment_id, student_id)
            if winner is not None:
                logger.info(
                    f"Concurrent start for assessment={assessment_id} student={student_id}; "
                    f"reusing attempt {winner.id}"
                )
                return winner, False
            if retry == 0:
                logger.warning(f"Attempt number {number} conflict; retrying once")
                sleep(retry_delay_seconds)
                continue
            raise ConcurrencyConflict("Attempt number conflict while starting assessment; please retry")

        created = db.get(Submission, values["id"], populate_existing=True)
        return created, True

    raise ConcurrencyConflict("Attempt number conflict while starting assessment; please retry")


# -------------------------------------------------------------------
# Compare-and-swap
# -------------------------------------------------------------------

def compare_and_swap_status(
    db: Session,
    caps: SchemaCapabilities,
    submission_id: uuid.UUID,
    expected: SubmissionStatus,
    target: SubmissionStatus,
    values: Optional[Dict[str, Any]] = None,
) -> bool:
    """
    Move ``expected`` -> ``target`` and write ``values`` in one conditional
    UPDATE. False when another writer changed the status first.
    """
    payload = caps.submission_values(values or {})
    payload["status"] = target.value
    result = db.execute(
        update(Submission)
        .where(Submission.id == submission_id, Submission.status == expected.value)
        .values(**payload)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# -------------------------------------------------------------------
# Response upsert
# -------------------------------------------------------------------

def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    else:
        return None
    return dialect_insert


def upsert_response(
    db: Session,
    caps: SchemaCapabilities,
    values: Dict[str, Any],
    update_columns: Optional[Tuple[str, ...]] = None,
) -> None:
    """
    INSERT ... ON CONFLICT (submission_id, question_id) DO UPDATE.

    A stored row is only replaced by a write whose server-stamped
    ``updated_at`` is not older, so a delayed request cannot clobber a newer
    answer.
    """
    values = caps.response_values(values)
    if update_columns is None:
        update_columns = tuple(k for k in values if k not in ("submission_id", "question_id"))
    else:
        update_columns = tuple(k for k in update_columns if k in values)

    dialect_insert = _insert_for(db)
    if dialect_insert is None:
        _upsert_portable(db, values, update_columns)
        return

    stmt = dialect_insert(StudentResponse).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[StudentResponse.submission_id, StudentResponse.question_id],
        set_={col: stmt.excluded[col] for col in update_columns},
        where=StudentResponse.updated_at <= stmt.excluded.updated_at,
    )
    db.execute(stmt)


def _upsert_portable(db: Session, values: Dict[str, Any], update_columns: Tuple[str, ...]) -> None:
    try:
        with db.begin_nested():
            db.execute(insert(StudentResponse).values(**values))
        return
    except IntegrityError:
        pass

    db.execute(
        update(StudentResponse)
        .where(
            StudentResponse.submission_id == values["submission_id"],
            StudentResponse.question_id == values["question_id"],
            StudentResponse.updated_at <= values["updated_at"],
        )
        .values(**{col: values[col] for col in update_columns})
        .execution_options(synchronize_session=False)
    )
