# app/services/submission.py

"""
Submission orchestrator: start -> save answer -> submit, plus the read paths.

Each public method is one unit of work against the store. Nothing kept on the
service instance affects correctness; the result cache only saves reads.
"""

import logging
import math
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, undefer

from app.core.cache import ResultCache
from app.core.config import settings
from app.core.errors import (
    AssessmentError,
    ConcurrencyConflict,
    InvalidStateError,
    MaxAttemptsReached,
    NotFoundError,
    SchedulingViolation,
    StoreError,
    UnauthorizedError,
    ValidationError,
)
from app.db.schema import SchemaCapabilities
from app.engine.normalizer import AnswerNormalizer
from app.engine.scorer import AggregateScore, ScoringEngine, resolve_points
from app.engine.types import MANUAL_GRADING_TYPES, QuestionType
from app.models.assessment import Assessment
from app.models.assessment_questions import AssessmentQuestion, Question
from app.models.submission import StudentResponse, Submission
from app.services import concurrency
from app.services.access_log import AccessLogWriter
from app.services.proctoring import LoggingProctoringReporter, ProctoringContext, ProctoringReporter
from app.services.state_machine import (
    COMPLETED_STATUSES,
    SubmissionStatus,
    ensure_can_submit,
    ensure_in_progress,
    ensure_transition,
)
from app.services.time_authority import TimeAuthority, as_utc

logger = logging.getLogger(__name__)


def _parse_id(value: Any, label: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} ID")


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


# Option fields that would reveal the answer key
_ANSWER_KEY_FIELDS = ("is_correct", "correct")


def _public_options(options: Any) -> Any:
    if not isinstance(options, list):
        return options
    return [
        {k: v for k, v in option.items() if k not in _ANSWER_KEY_FIELDS} if isinstance(option, dict) else option
        for option in options
    ]


class SubmissionService:
    def __init__(
        self,
        caps: SchemaCapabilities,
        scorer: Optional[ScoringEngine] = None,
        normalizer: Optional[AnswerNormalizer] = None,
        time_authority: Optional[TimeAuthority] = None,
        cache: Optional[ResultCache] = None,
        access_log: Optional[AccessLogWriter] = None,
        proctoring: Optional[ProctoringReporter] = None,
        exclude_ungraded_from_total: bool = settings.EXCLUDE_UNGRADED_FROM_TOTAL,
        attempt_retry_delay_seconds: float = settings.ATTEMPT_RETRY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.caps = caps
        self.scorer = scorer or ScoringEngine(default_total_points=settings.DEFAULT_TOTAL_POINTS)
        self.normalizer = normalizer or AnswerNormalizer()
        self.time = time_authority or TimeAuthority()
        self.cache = cache or ResultCache(
            ttl_seconds=settings.RESULT_CACHE_TTL_SECONDS,
            max_entries=settings.RESULT_CACHE_MAX_ENTRIES,
        )
        self.access_log = access_log or AccessLogWriter.for_capabilities(caps)
        self.proctoring = proctoring or LoggingProctoringReporter()
        self.exclude_ungraded_from_total = exclude_ungraded_from_total
        self.attempt_retry_delay_seconds = attempt_retry_delay_seconds
        self._sleep = sleep

    # =================================================================
    # Unit of work
    # =================================================================

    @contextmanager
    def _transaction(self, db: Session, isolation_level: Optional[str] = None) -> Iterator[None]:
        """
        Commit on success; roll back everything on failure. Store failures
        surface as StoreError, engine errors propagate unchanged.
        """
        if db.in_transaction():
            db.commit()
        try:
            if isolation_level:
                db.connection(execution_options={"isolation_level": isolation_level})
            yield
            db.commit()
        except AssessmentError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Store failure, transaction rolled back: {e}")
            raise StoreError(f"Store operation failed: {e.__class__.__name__}") from e
        except Exception:
            db.rollback()
            raise

    # =================================================================
    # Lookups
    # =================================================================

    def _get_assessment(self, db: Session, assessment_id: uuid.UUID) -> Assessment:
        assessment = db.get(Assessment, assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")
        return assessment

    def _load_owned_submission(
        self,
        db: Session,
        submission_id: uuid.UUID,
        student_id: Optional[str],
        action: str,
    ) -> Submission:
        submission = db.get(Submission, submission_id, populate_existing=True)
        if submission is None:
            raise NotFoundError("Submission not found")
        if student_id is not None and str(submission.student_id) != str(student_id):
            raise UnauthorizedError(f"Unauthorized: You do not have permission to {action} this submission")
        return submission

    def _question_link(
        self,
        db: Session,
        assessment_id: uuid.UUID,
        question_id: uuid.UUID,
    ) -> Optional[AssessmentQuestion]:
        return db.scalars(
            select(AssessmentQuestion).where(
                AssessmentQuestion.assessment_id == assessment_id,
                AssessmentQuestion.question_id == question_id,
            )
        ).first()

    def _has_response(self, db: Session, submission_id: uuid.UUID, question_id: uuid.UUID) -> bool:
        return db.scalar(
            select(StudentResponse.id).where(
                StudentResponse.submission_id == submission_id,
                StudentResponse.question_id == question_id,
            ).limit(1)
        ) is not None

    def _answerable_question(
        self,
        db: Session,
        submission: Submission,
        question_id: uuid.UUID,
    ) -> Tuple[Question, Optional[AssessmentQuestion]]:
        """
        The question must be attached to the submission's assessment, or
        already answered on this submission before it was detached.
        """
        question = db.get(Question, question_id)
        if question is None:
            raise NotFoundError("Question not found")

        link = self._question_link(db, submission.assessment_id, question_id)
        if link is None:
            if not self._has_response(db, submission.id, question_id):
                raise NotFoundError("Question not found in this assessment")
            logger.warning(
                f"Question {question_id} no longer attached to assessment {submission.assessment_id}; "
                f"updating earlier answer on submission {submission.id}"
            )
        return question, link

    def _ensure_open_for_answers(self, db: Session, submission: Submission) -> Assessment:
        assessment = self._get_assessment(db, submission.assessment_id)
        if not assessment.is_published:
            raise InvalidStateError("Assessment is no longer available")
        self.time.ensure_can_save(
            submission.started_at,
            assessment.time_limit_minutes,
            assessment.ends_at,
        )
        return assessment

    def _attached_question_points(self, db: Session, assessment_id: uuid.UUID) -> List[Tuple[Optional[str], float]]:
        rows = db.execute(
            select(Question.question_type, Question.points, AssessmentQuestion.points)
            .join(AssessmentQuestion, AssessmentQuestion.question_id == Question.id)
            .where(AssessmentQuestion.assessment_id == assessment_id)
        ).all()
        return [(qtype, resolve_points(base, override)) for qtype, base, override in rows]

    def _submission_options(self):
        if self.caps.supports_flags:
            return [undefer(Submission.grade), undefer(Submission.time_taken_minutes)]
        return []

    # =================================================================
    # Start
    # =================================================================

    def start_assessment(
        self,
        db: Session,
        assessment_id: Any,
        student_id: str,
        meta: Optional[Dict[str, Any]] = None,
        access_type: str = "start",
    ) -> Dict[str, Any]:
        """
        Open (or resume) the student's attempt.

        An existing in_progress attempt is returned as-is. A concurrent start
        that loses the insert race returns the winner's attempt.
        """
        aid = _parse_id(assessment_id, "assessment")
        meta = meta or {}

        with self._transaction(db):
            assessment = self._get_assessment(db, aid)
            if not assessment.is_published:
                raise NotFoundError("Assessment not found")

            self.time.ensure_within_schedule(assessment.starts_at, assessment.ends_at)

            existing = concurrency.find_in_progress(db, aid, student_id)
            if existing is None:
                attempts = db.scalar(
                    select(func.count(Submission.id)).where(
                        Submission.assessment_id == aid,
                        Submission.student_id == student_id,
                    )
                ) or 0
                if attempts >= (assessment.max_attempts or 1):
                    raise MaxAttemptsReached("Maximum attempts reached")

            now = self.time.now()

            def build_values(attempt_number: int) -> Dict[str, Any]:
                return {
                    "assessment_id": aid,
                    "student_id": student_id,
                    "attempt_number": attempt_number,
                    "status": SubmissionStatus.IN_PROGRESS.value,
                    "started_at": now,
                    "ip_address": meta.get("ip_address"),
                    "user_agent": meta.get("user_agent"),
                }

            submission, created = concurrency.get_or_create_attempt(
                db,
                self.caps,
                aid,
                student_id,
                build_values,
                retry_delay_seconds=self.attempt_retry_delay_seconds,
                sleep=self._sleep,
            )

            if created:
                self.access_log.write(db, aid, student_id, access_type, meta)
                logger.info(
                    f"Attempt {submission.attempt_number} started: submission={submission.id} "
                    f"assessment={aid} student={student_id}"
                )
            else:
                logger.info(f"Resuming in-progress submission {submission.id} for student={student_id}")

            result = {
                "submission_id": submission.id,
                "assessment_id": aid,
                "attempt_number": submission.attempt_number,
                "started_at": _iso(submission.started_at),
                "resumed": not created,
                "assessment": {
                    "id": assessment.id,
                    "title": assessment.title,
                    "instructions": assessment.instructions,
                    "duration_minutes": assessment.time_limit_minutes,
                    "total_points": assessment.total_points,
                    "proctoring_enabled": assessment.require_proctoring,
                },
            }

        self.cache.invalidate(ResultCache.key("history", student_id) + ":")
        self.cache.invalidate(ResultCache.key("available", student_id) + ":")
        return result

    def retake_assessment(
        self,
        db: Session,
        assessment_id: Any,
        student_id: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Start a further attempt after a completed one, honouring the cooldown."""
        aid = _parse_id(assessment_id, "assessment")

        with self._transaction(db):
            assessment = self._get_assessment(db, aid)
            completed, last_submitted = db.execute(
                select(func.count(Submission.id), func.max(Submission.submitted_at)).where(
                    Submission.assessment_id == aid,
                    Submission.student_id == student_id,
                    Submission.status.in_([s.value for s in COMPLETED_STATUSES]),
                )
            ).one()

            if completed >= (assessment.max_attempts or 1):
                raise MaxAttemptsReached("Maximum attempts reached")

            cooldown_hours = assessment.time_between_attempts_hours or 0
            if cooldown_hours > 0 and last_submitted is not None:
                waited = self.time.elapsed_seconds(last_submitted) / 3600
                if waited < cooldown_hours:
                    remaining = math.ceil(cooldown_hours - waited)
                    raise SchedulingViolation(f"Must wait {remaining} hours before retaking")

        return self.start_assessment(db, aid, student_id, meta, access_type="retake")

    # =================================================================
    # Save answer
    # =================================================================

    def save_answer(
        self,
        db: Session,
        submission_id: Any,
        question_id: Any,
        answer: Any,
        time_spent: Any = 0,
        student_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Validate, score (objective types) and upsert one response.

        ``time_spent`` is the client's claim in seconds; it is clamped to the
        wall-clock time since the attempt started and to 24 hours.
        """
        sid = _parse_id(submission_id, "submission")
        qid = _parse_id(question_id, "question")

        with self._transaction(db):
            submission = self._load_owned_submission(db, sid, student_id, "modify")
            ensure_in_progress(submission.status)
            self._ensure_open_for_answers(db, submission)
            question, link = self._answerable_question(db, submission, qid)

            qtype = QuestionType.parse(question.question_type)
            normalized = self.normalizer.normalize(answer, qtype, required=question.is_required)

            points = resolve_points(question.points, link.points if link else None)
            score = self.scorer.score(
                qtype or question.question_type,
                question.correct_answer,
                points,
                normalized,
            )

            validated_time = self.time.validate_time_spent(time_spent, submission.started_at)
            saved_at = self.time.now()

            concurrency.upsert_response(
                db,
                self.caps,
                {
                    "submission_id": sid,
                    "question_id": qid,
                    "question_type": question.question_type,
                    "student_answer": normalized.text,
                    "selected_options": normalized.selected_options,
                    "time_spent": validated_time,
                    "is_correct": score.is_correct,
                    "points_earned": score.points_earned,
                    "updated_at": saved_at,
                },
            )

        return {
            "submission_id": sid,
            "question_id": qid,
            "is_correct": score.is_correct,
            "points_earned": score.points_earned,
            "requires_manual_grading": score.requires_manual_grading,
            "time_spent": validated_time,
            "saved_at": _iso(saved_at),
        }

    def toggle_flag(
        self,
        db: Session,
        submission_id: Any,
        question_id: Any,
        is_flagged: bool,
        student_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        sid = _parse_id(submission_id, "submission")
        qid = _parse_id(question_id, "question")

        if not self.caps.supports_flags:
            raise InvalidStateError("Flagging feature is not available. Please run database migration.")

        with self._transaction(db):
            submission = self._load_owned_submission(db, sid, student_id, "modify")
            ensure_in_progress(submission.status, action="modify flags for")
            self._ensure_open_for_answers(db, submission)
            # A flag creates a response row, which would later count as an earlier answer
            self._answerable_question(db, submission, qid)

            concurrency.upsert_response(
                db,
                self.caps,
                {
                    "submission_id": sid,
                    "question_id": qid,
                    "is_flagged": bool(is_flagged),
                    "updated_at": self.time.now(),
                },
                update_columns=("is_flagged",),
            )

        return {"submission_id": sid, "question_id": qid, "is_flagged": bool(is_flagged)}

    # =================================================================
    # Submit
    # =================================================================

    def submit_assessment(
        self,
        db: Session,
        submission_id: Any,
        payload: Optional[Dict[str, Any]] = None,
        student_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Finalize an attempt exactly once.

        1. ownership / status / time window checks
        2. replay answers sent inline with the submit (each its own save)
        3. under a row lock: re-check status, aggregate, write the result and
           flip the status with a conditional update
        4. drop cached reads for (student, assessment)

        Answers replayed in step 2 stay saved even if step 3 fails.
        """
        sid = _parse_id(submission_id, "submission")
        payload = payload or {}

        # -- 1. pre-checks ------------------------------------------------
        with self._transaction(db):
            submission = self._load_owned_submission(db, sid, student_id, "submit")
            ensure_can_submit(submission.status)
            assessment = self._get_assessment(db, submission.assessment_id)
            timing = self.time.check_submit(
                submission.started_at,
                assessment.time_limit_minutes,
                assessment.starts_at,
                assessment.ends_at,
            )
            owner_id = submission.student_id
            assessment_id = assessment.id
            declared_total = assessment.total_points

        # -- 2. last-chance answer replay ---------------------------------
        replayed, unsaved = self._replay_answers(db, sid, payload, owner_id)

        # -- 3. protected finalization ------------------------------------
        try:
            with self._transaction(db, isolation_level=self.caps.submit_isolation_level):
                locked = concurrency.lock_submission(db, sid)
                if locked is None:
                    raise NotFoundError("Submission not found")
                if locked.status in {s.value for s in COMPLETED_STATUSES}:
                    raise InvalidStateError(f"Assessment already submitted. Current status: {locked.status}")
                target = ensure_transition(locked.status, SubmissionStatus.SUBMITTED)

                aggregate = self._aggregate(db, sid, assessment_id, declared_total)

                submitted_at = self.time.now()
                elapsed = self.time.elapsed_seconds(locked.started_at, submitted_at)
                time_taken_minutes = math.ceil(elapsed / 60)

                swapped = concurrency.compare_and_swap_status(
                    db,
                    self.caps,
                    sid,
                    SubmissionStatus(locked.status),
                    target,
                    {
                        "submitted_at": submitted_at,
                        "total_score": aggregate.total_score,
                        "percentage": aggregate.percentage,
                        "grade": aggregate.grade,
                        "time_taken_minutes": time_taken_minutes,
                    },
                )
                if not swapped:
                    raise InvalidStateError("Assessment already submitted")

                self.access_log.write(db, assessment_id, owner_id, "submit", payload)
        except StoreError as e:
            if not concurrency.is_serialization_failure(e.__cause__):
                raise
            raise self._lost_submit_race(db, sid) from e

        # -- 4. after commit ----------------------------------------------
        self._invalidate_reads(owner_id, assessment_id)
        self._report_to_proctoring(sid, owner_id, assessment_id, payload)

        logger.info(
            f"Submission {sid} finalized: score={aggregate.total_score}/{aggregate.total_points} "
            f"({aggregate.percentage}%) grade={aggregate.grade}"
        )

        return {
            "submission_id": sid,
            "status": SubmissionStatus.SUBMITTED.value,
            "total_score": aggregate.total_score,
            "total_points": aggregate.total_points,
            "percentage": aggregate.percentage,
            "grade": aggregate.grade,
            "time_taken_minutes": time_taken_minutes,
            "submitted_at": _iso(submitted_at),
            "answers_count": aggregate.answers_count,
            "replayed_answers": replayed,
            "unsaved_answers": unsaved,
            "time_limit_exceeded": not timing.within_limit,
            "warning": timing.warning,
        }

    def _lost_submit_race(self, db: Session, submission_id: uuid.UUID) -> AssessmentError:
        """Re-read the attempt after a serialization failure and report its real outcome."""
        with self._transaction(db):
            current = db.get(Submission, submission_id, populate_existing=True)
            status = current.status if current is not None else None

        logger.warning(f"Submit of {submission_id} lost the row lock to a concurrent writer; status now {status}")
        if status is None:
            return NotFoundError("Submission not found")
        if status == SubmissionStatus.IN_PROGRESS.value:
            return ConcurrencyConflict("Submit conflict with a concurrent update; please retry")
        return InvalidStateError(f"Assessment already submitted. Current status: {status}")

    def _replay_answers(
        self,
        db: Session,
        submission_id: uuid.UUID,
        payload: Dict[str, Any],
        student_id: str,
    ) -> Tuple[int, List[Dict[str, str]]]:
        answers = payload.get("answers")
        if not isinstance(answers, dict):
            return 0, []

        times = payload.get("time_spent") or {}
        replayed = 0
        unsaved: List[Dict[str, str]] = []
        for question_id, answer in answers.items():
            if answer is None:
                continue
            # client sends milliseconds per question
            millis = times.get(question_id) if isinstance(times, dict) else None
            seconds = (millis or 0) / 1000 if isinstance(millis, (int, float)) else 0
            try:
                self.save_answer(db, submission_id, question_id, answer, seconds, student_id)
                replayed += 1
            except AssessmentError as e:
                logger.warning(f"Answer for question {question_id} not saved during submit of {submission_id}: {e}")
                unsaved.append({"question_id": str(question_id), "reason": e.message})
        return replayed, unsaved

    def _aggregate(
        self,
        db: Session,
        submission_id: uuid.UUID,
        assessment_id: uuid.UUID,
        declared_total: Any,
    ) -> AggregateScore:
        earned = db.scalars(
            select(StudentResponse.points_earned).where(StudentResponse.submission_id == submission_id)
        ).all()

        attached = self._attached_question_points(db, assessment_id)
        excluded = 0.0
        if self.exclude_ungraded_from_total:
            excluded = sum(
                points for qtype, points in attached
                if QuestionType.parse(qtype) is None or QuestionType.parse(qtype) in MANUAL_GRADING_TYPES
            )

        aggregate = self.scorer.aggregate(
            earned,
            [points for _, points in attached],
            declared_total=declared_total,
            excluded_points=excluded,
        )
        if aggregate.used_fallback_total:
            logger.warning(
                f"No resolvable question points for assessment {assessment_id}; "
                f"denominator fell back to {aggregate.total_points}"
            )
        return aggregate

    def _invalidate_reads(self, student_id: str, assessment_id: uuid.UUID) -> None:
        self.cache.invalidate(ResultCache.key("results", student_id, assessment_id) + ":")
        self.cache.invalidate(ResultCache.key("history", student_id) + ":")
        self.cache.invalidate(ResultCache.key("available", student_id) + ":")

    def _report_to_proctoring(
        self,
        submission_id: uuid.UUID,
        student_id: str,
        assessment_id: uuid.UUID,
        payload: Dict[str, Any],
    ) -> None:
        context = ProctoringContext(
            submission_id=str(submission_id),
            student_id=str(student_id),
            assessment_id=str(assessment_id),
            ip_address=payload.get("ip_address"),
            user_agent=payload.get("user_agent"),
        )
        try:
            self.proctoring.submission_finalized(context)
        except Exception as e:
            logger.warning(f"Proctoring reporter failed for submission {submission_id}: {e}")

    # =================================================================
    # Read paths
    # =================================================================

    def get_results(self, db: Session, submission_id: Any, student_id: Optional[str] = None) -> Dict[str, Any]:
        sid = _parse_id(submission_id, "submission")

        with self._transaction(db):
            submission = self._load_owned_submission(db, sid, student_id, "view")
            key = ResultCache.key("results", submission.student_id, submission.assessment_id, sid)
            finished = submission.status != SubmissionStatus.IN_PROGRESS.value
            if finished:
                cached = self.cache.get(key)
                if cached is not None:
                    return cached

            assessment = db.get(Assessment, submission.assessment_id)
            rows = db.execute(
                select(StudentResponse, Question, AssessmentQuestion.points)
                .join(Question, Question.id == StudentResponse.question_id)
                .outerjoin(
                    AssessmentQuestion,
                    (AssessmentQuestion.question_id == StudentResponse.question_id)
                    & (AssessmentQuestion.assessment_id == submission.assessment_id),
                )
                .where(StudentResponse.submission_id == sid)
                .order_by(AssessmentQuestion.order_index, StudentResponse.updated_at)
            ).all()

            answers = []
            for response, question, override in rows:
                item = {
                    "question_id": question.id,
                    "question_text": question.question_text,
                    "question_type": question.question_type,
                    "points": resolve_points(question.points, override),
                    "student_answer": response.student_answer,
                    "selected_options": response.selected_options,
                    "is_correct": response.is_correct,
                    "points_earned": response.points_earned,
                    "time_spent": response.time_spent,
                }
                if finished:
                    item["correct_answer"] = question.correct_answer
                    item["explanation"] = question.explanation
                answers.append(item)

            results = self._submission_summary(submission, assessment)
            results.update({
                "total_questions": len(answers),
                "correct_answers": sum(1 for a in answers if a["is_correct"] is True),
                "pending_manual_grading": sum(1 for a in answers if a["is_correct"] is None),
                "total_points_earned": round(sum(a["points_earned"] or 0 for a in answers), 2),
                "total_time_spent_seconds": sum(a["time_spent"] or 0 for a in answers),
                "answers": answers,
            })

        if finished:
            self.cache.set(key, results)
        return results

    def get_history(
        self,
        db: Session,
        student_id: str,
        status: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        limit = limit or settings.HISTORY_PAGE_LIMIT
        key = ResultCache.key("history", student_id, status, _iso(date_from), _iso(date_to), limit, offset)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self._transaction(db):
            stmt = (
                select(Submission, Assessment)
                .outerjoin(Assessment, Assessment.id == Submission.assessment_id)
                .where(Submission.student_id == student_id)
                .options(*self._submission_options())
            )
            if status:
                stmt = stmt.where(Submission.status == status)
            if date_from:
                stmt = stmt.where(Submission.started_at >= date_from)
            if date_to:
                stmt = stmt.where(Submission.started_at <= date_to)
            stmt = stmt.order_by(Submission.started_at.desc()).limit(limit).offset(offset)

            history = [self._submission_summary(s, a) for s, a in db.execute(stmt).all()]

        self.cache.set(key, history)
        return history

    def get_submission_answers(
        self,
        db: Session,
        submission_id: Any,
        student_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        sid = _parse_id(submission_id, "submission")
        with self._transaction(db):
            self._load_owned_submission(db, sid, student_id, "view")
            stmt = (
                select(StudentResponse)
                .where(StudentResponse.submission_id == sid)
                .order_by(StudentResponse.updated_at.asc())
            )
            if self.caps.supports_flags:
                stmt = stmt.options(undefer(StudentResponse.is_flagged))
            responses = db.scalars(stmt).all()
            return [
                {
                    "question_id": r.question_id,
                    "question_type": r.question_type,
                    "student_answer": r.student_answer,
                    "selected_options": r.selected_options,
                    "time_spent": r.time_spent,
                    "is_correct": r.is_correct,
                    "points_earned": r.points_earned,
                    "is_flagged": r.is_flagged if self.caps.supports_flags else False,
                    "updated_at": _iso(r.updated_at),
                }
                for r in responses
            ]

    def get_time_remaining(
        self,
        db: Session,
        submission_id: Any,
        student_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        sid = _parse_id(submission_id, "submission")
        with self._transaction(db):
            submission = self._load_owned_submission(db, sid, student_id, "view")
            assessment = self._get_assessment(db, submission.assessment_id)
            now = self.time.now()
            elapsed = self.time.elapsed_seconds(submission.started_at, now)
            return {
                "submission_id": sid,
                "status": submission.status,
                "time_limit_minutes": assessment.time_limit_minutes,
                "elapsed_seconds": int(elapsed),
                "remaining_seconds": self.time.remaining_seconds(
                    submission.started_at, assessment.time_limit_minutes
                ),
                "server_time": _iso(now),
                "started_at": _iso(submission.started_at),
            }

    # =================================================================
    # Catalogue
    # =================================================================

    def get_assessment_questions(self, db: Session, assessment_id: Any) -> List[Dict[str, Any]]:
        """Attached questions of a published assessment, without the answer key."""
        aid = _parse_id(assessment_id, "assessment")
        key = ResultCache.key("questions", aid)

        with self._transaction(db):
            assessment = db.get(Assessment, aid)
            if assessment is None or not assessment.is_published:
                raise NotFoundError("Assessment not found")

            cached = self.cache.get(key)
            if cached is not None:
                return cached

            rows = db.execute(
                select(Question, AssessmentQuestion)
                .join(AssessmentQuestion, AssessmentQuestion.question_id == Question.id)
                .where(AssessmentQuestion.assessment_id == aid)
                .order_by(AssessmentQuestion.order_index, Question.id)
            ).all()
            questions = [
                {
                    "question_id": question.id,
                    "question_type": question.question_type,
                    "question_text": question.question_text,
                    "options": _public_options(question.options),
                    "points": resolve_points(question.points, link.points),
                    "is_required": question.is_required,
                    "order_index": link.order_index,
                }
                for question, link in rows
            ]

        self.cache.set(key, questions)
        return questions

    def get_available_assessments(
        self,
        db: Session,
        student_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        limit = limit or settings.AVAILABLE_PAGE_LIMIT
        key = ResultCache.key("available", student_id, limit, offset)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        with self._transaction(db):
            assessments = db.scalars(
                select(Assessment)
                .where(Assessment.is_published.is_(True))
                .order_by(Assessment.created_at.desc(), Assessment.id)
                .limit(limit)
                .offset(offset)
            ).all()

            attempts: Dict[uuid.UUID, List[Submission]] = {a.id: [] for a in assessments}
            if attempts:
                rows = db.scalars(
                    select(Submission).where(
                        Submission.student_id == student_id,
                        Submission.assessment_id.in_(list(attempts)),
                    )
                ).all()
                for submission in rows:
                    attempts[submission.assessment_id].append(submission)

            now = self.time.now()
            available = [self._availability(a, attempts[a.id], now) for a in assessments]

        self.cache.set(key, available)
        return available

    def _availability(self, assessment: Assessment, attempts: List[Submission], now: datetime) -> Dict[str, Any]:
        completed_values = {s.value for s in COMPLETED_STATUSES}
        completed = [s for s in attempts if s.status in completed_values]
        in_progress = next((s for s in attempts if s.status == SubmissionStatus.IN_PROGRESS.value), None)
        max_attempts = assessment.max_attempts or 1
        starts_at = as_utc(assessment.starts_at)
        ends_at = as_utc(assessment.ends_at)
        window_ended = ends_at is not None and now > ends_at

        if starts_at is not None and now < starts_at:
            status = "upcoming"
        elif window_ended:
            status = "ended"
        elif len(completed) >= max_attempts:
            status = "attempted"
        else:
            status = "active"

        can_resume = False
        if in_progress is not None:
            submission_status = "in_progress"
            limit_seconds = (assessment.time_limit_minutes or 0) * 60
            within_limit = not limit_seconds or self.time.elapsed_seconds(in_progress.started_at, now) < limit_seconds
            can_resume = within_limit and not window_ended
        elif attempts:
            submission_status = "completed"
        else:
            submission_status = "not_started"

        last_submitted = max((as_utc(s.submitted_at) for s in completed if s.submitted_at), default=None)
        cooldown_hours = assessment.time_between_attempts_hours or 0
        cooled_down = (
            cooldown_hours <= 0
            or last_submitted is None
            or self.time.elapsed_seconds(last_submitted, now) >= cooldown_hours * 3600
        )

        can_attempt = status == "active" and in_progress is None and len(attempts) < max_attempts
        percentages = [s.percentage for s in completed if s.percentage is not None]
        last_completed = max(completed, key=lambda s: s.attempt_number, default=None)

        return {
            "assessment_id": assessment.id,
            "title": assessment.title,
            "instructions": assessment.instructions,
            "time_limit_minutes": assessment.time_limit_minutes,
            "max_attempts": max_attempts,
            "total_points": assessment.total_points,
            "require_proctoring": assessment.require_proctoring,
            "starts_at": _iso(starts_at),
            "ends_at": _iso(ends_at),
            "status": status,
            "submission_status": submission_status,
            "attempts_made": len(attempts),
            "completed_attempts": len(completed),
            "best_percentage": max(percentages, default=None),
            "last_attempt_date": _iso(last_submitted),
            "in_progress_submission_id": in_progress.id if in_progress is not None else None,
            "last_completed_submission_id": last_completed.id if last_completed is not None else None,
            "can_attempt": can_attempt,
            "can_resume": can_resume,
            "can_retake": can_attempt and bool(completed) and cooled_down,
        }

    def get_assessment_attempts(self, db: Session, assessment_id: Any, student_id: str) -> Dict[str, Any]:
        aid = _parse_id(assessment_id, "assessment")
        with self._transaction(db):
            assessment = self._get_assessment(db, aid)
            stmt = (
                select(Submission)
                .where(Submission.assessment_id == aid, Submission.student_id == student_id)
                .order_by(Submission.attempt_number.desc())
                .options(*self._submission_options())
            )
            attempts = [self._submission_summary(s, assessment) for s in db.scalars(stmt).all()]
            return {
                "assessment": {
                    "id": assessment.id,
                    "title": assessment.title,
                    "total_points": assessment.total_points,
                    "max_attempts": assessment.max_attempts,
                },
                "attempts": attempts,
                "total_attempts": len(attempts),
            }

    def _submission_summary(self, submission: Submission, assessment: Optional[Assessment]) -> Dict[str, Any]:
        summary = {
            "submission_id": submission.id,
            "assessment_id": submission.assessment_id,
            "assessment_title": assessment.title if assessment else None,
            "student_id": submission.student_id,
            "attempt_number": submission.attempt_number,
            "status": submission.status,
            "started_at": _iso(submission.started_at),
            "submitted_at": _iso(submission.submitted_at),
            "total_score": submission.total_score,
            "percentage": submission.percentage,
            "grade": None,
            "time_taken_minutes": None,
        }
        if self.caps.supports_flags:
            summary["grade"] = submission.grade
            summary["time_taken_minutes"] = submission.time_taken_minutes
        if summary["time_taken_minutes"] is None and submission.submitted_at and submission.started_at:
            elapsed = (as_utc(submission.submitted_at) - as_utc(submission.started_at)).total_seconds()
            summary["time_taken_minutes"] = math.ceil(max(0.0, elapsed) / 60)
        return summary
