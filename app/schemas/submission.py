# app/schemas/submission.py

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# -------------------------------------------------------------------
# Requests
# -------------------------------------------------------------------

class DeviceMeta(BaseModel):
    """Client context recorded with start/submit events"""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: Optional[Dict[str, Any]] = None


class StartAssessmentRequest(DeviceMeta):
    pass


class SaveAnswerRequest(BaseModel):
    question_id: UUID
    answer: Any = None
    # Seconds as reported by the client; clamped server-side
    time_spent: float = 0


class SubmitAssessmentRequest(DeviceMeta):
    """Answers not yet saved may ride along with the submit"""
    answers: Optional[Dict[str, Any]] = None
    # question_id -> milliseconds
    time_spent: Optional[Dict[str, float]] = None

    model_config = ConfigDict(extra="allow")


class ToggleFlagRequest(BaseModel):
    is_flagged: bool = True


# -------------------------------------------------------------------
# Responses
# -------------------------------------------------------------------

class AssessmentSummary(BaseModel):
    id: UUID
    title: str
    instructions: Optional[str] = None
    duration_minutes: Optional[int] = None
    total_points: Optional[float] = None
    proctoring_enabled: bool = False


class StartAssessmentResponse(BaseModel):
    submission_id: UUID
    assessment_id: UUID
    attempt_number: int
    started_at: Optional[datetime] = None
    resumed: bool
    assessment: AssessmentSummary


class SaveAnswerResponse(BaseModel):
    submission_id: UUID
    question_id: UUID
    is_correct: Optional[bool] = None
    points_earned: float
    requires_manual_grading: bool
    time_spent: int
    saved_at: datetime


class UnsavedAnswer(BaseModel):
    question_id: str
    reason: str


class SubmitAssessmentResponse(BaseModel):
    submission_id: UUID
    status: str
    total_score: float
    total_points: float
    percentage: float
    grade: str
    time_taken_minutes: int
    submitted_at: datetime
    answers_count: int
    replayed_answers: int = 0
    unsaved_answers: List[UnsavedAnswer] = Field(default_factory=list)
    time_limit_exceeded: bool = False
    warning: Optional[str] = None


class ToggleFlagResponse(BaseModel):
    submission_id: UUID
    question_id: UUID
    is_flagged: bool


class SubmissionSummary(BaseModel):
    submission_id: UUID
    assessment_id: UUID
    assessment_title: Optional[str] = None
    student_id: str
    attempt_number: int
    status: str
    started_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    total_score: Optional[float] = None
    percentage: Optional[float] = None
    grade: Optional[str] = None
    time_taken_minutes: Optional[int] = None


class AnswerResult(BaseModel):
    question_id: UUID
    question_text: str
    question_type: str
    points: float
    student_answer: Optional[str] = None
    selected_options: Optional[List[Any]] = None
    is_correct: Optional[bool] = None
    points_earned: float
    time_spent: int
    # Only once the attempt is no longer in progress
    correct_answer: Optional[Any] = None
    explanation: Optional[str] = None


class SubmissionResults(SubmissionSummary):
    total_questions: int
    correct_answers: int
    pending_manual_grading: int
    total_points_earned: float
    total_time_spent_seconds: int
    answers: List[AnswerResult]


class SavedAnswer(BaseModel):
    question_id: UUID
    question_type: Optional[str] = None
    student_answer: Optional[str] = None
    selected_options: Optional[List[Any]] = None
    time_spent: int
    is_correct: Optional[bool] = None
    points_earned: float
    is_flagged: bool = False
    updated_at: Optional[datetime] = None


class TimeRemainingResponse(BaseModel):
    submission_id: UUID
    status: str
    time_limit_minutes: Optional[int] = None
    elapsed_seconds: int
    remaining_seconds: Optional[int] = None
    server_time: datetime
    started_at: Optional[datetime] = None


class StudentQuestion(BaseModel):
    """A question as delivered to the student: no answer key, no explanation"""
    question_id: UUID
    question_type: str
    question_text: str
    options: Optional[Any] = None
    points: float
    is_required: bool = True
    order_index: int = 0


class AvailableAssessment(BaseModel):
    assessment_id: UUID
    title: str
    instructions: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    max_attempts: int
    total_points: Optional[float] = None
    require_proctoring: bool = False
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None

    # upcoming | ended | attempted | active
    status: str
    # not_started | in_progress | completed
    submission_status: str

    attempts_made: int
    completed_attempts: int
    best_percentage: Optional[float] = None
    last_attempt_date: Optional[datetime] = None
    in_progress_submission_id: Optional[UUID] = None
    last_completed_submission_id: Optional[UUID] = None

    can_attempt: bool
    can_resume: bool
    can_retake: bool


class AttemptsAssessment(BaseModel):
    id: UUID
    title: str
    total_points: Optional[float] = None
    max_attempts: int


class AssessmentAttempts(BaseModel):
    assessment: AttemptsAssessment
    attempts: List[SubmissionSummary]
    total_attempts: int
