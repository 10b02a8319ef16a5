from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional
import logging
import os

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AssessmentError, StoreError
from app.db.schema import SchemaCapabilities
from app.db.session import engine, get_db
from app.reports.report_docx import generate_results_docx
from app.schemas.submission import (
    AssessmentAttempts,
    AvailableAssessment,
    SaveAnswerRequest,
    SaveAnswerResponse,
    SavedAnswer,
    StartAssessmentRequest,
    StartAssessmentResponse,
    StudentQuestion,
    SubmissionResults,
    SubmissionSummary,
    SubmitAssessmentRequest,
    SubmitAssessmentResponse,
    TimeRemainingResponse,
    ToggleFlagRequest,
    ToggleFlagResponse,
)
from app.services.submission import SubmissionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student-assessments", tags=["Student Assessments"])

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


# ---------------------------------
# Dependencies
# ---------------------------------
@lru_cache(maxsize=1)
def get_service() -> SubmissionService:
    # Schema is inspected once per process
    return SubmissionService(SchemaCapabilities.detect(engine))


def get_student_id(x_student_id: Optional[str] = Header(None)) -> str:
    if not x_student_id or not x_student_id.strip():
        raise HTTPException(status_code=401, detail="Student identity required")
    return x_student_id.strip()


def _http_error(e: AssessmentError) -> HTTPException:
    status_code = e.status_code
    if isinstance(e, StoreError) or status_code >= 500:
        logger.error(f"Request failed: {e.message}")
        return HTTPException(status_code=500, detail="Internal error while processing the request")
    return HTTPException(status_code=status_code, detail=e.message)


def _client_meta(request: Request, body: Any) -> Dict[str, Any]:
    meta = body.model_dump(exclude_none=True) if body is not None else {}
    if not meta.get("ip_address") and request.client:
        meta["ip_address"] = request.client.host
    if not meta.get("user_agent"):
        meta["user_agent"] = request.headers.get("user-agent")
    return meta


# ---------------------------------
# Attempt lifecycle
# ---------------------------------
@router.post("/{assessment_id}/start", response_model=StartAssessmentResponse)
def start_assessment(
    assessment_id: str,
    request: Request,
    payload: Optional[StartAssessmentRequest] = None,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.start_assessment(db, assessment_id, student_id, _client_meta(request, payload))
    except AssessmentError as e:
        raise _http_error(e)


@router.post("/{assessment_id}/retake", response_model=StartAssessmentResponse)
def retake_assessment(
    assessment_id: str,
    request: Request,
    payload: Optional[StartAssessmentRequest] = None,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.retake_assessment(db, assessment_id, student_id, _client_meta(request, payload))
    except AssessmentError as e:
        raise _http_error(e)


@router.post("/submissions/{submission_id}/answers", response_model=SaveAnswerResponse)
def save_answer(
    submission_id: str,
    payload: SaveAnswerRequest,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.save_answer(
            db,
            submission_id,
            payload.question_id,
            payload.answer,
            payload.time_spent,
            student_id,
        )
    except AssessmentError as e:
        raise _http_error(e)


@router.post("/submissions/{submission_id}/questions/{question_id}/flag", response_model=ToggleFlagResponse)
def toggle_flag(
    submission_id: str,
    question_id: str,
    payload: ToggleFlagRequest,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.toggle_flag(db, submission_id, question_id, payload.is_flagged, student_id)
    except AssessmentError as e:
        raise _http_error(e)


@router.post("/submissions/{submission_id}/submit", response_model=SubmitAssessmentResponse)
def submit_assessment(
    submission_id: str,
    request: Request,
    payload: Optional[SubmitAssessmentRequest] = None,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.submit_assessment(db, submission_id, _client_meta(request, payload), student_id)
    except AssessmentError as e:
        raise _http_error(e)


# ---------------------------------
# Read paths
# ---------------------------------
@router.get("/submissions/{submission_id}/results", response_model=SubmissionResults)
def get_results(
    submission_id: str,
    download: bool = Query(False, description="Set true to download results as .docx"),
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        results = service.get_results(db, submission_id, student_id)
    except AssessmentError as e:
        raise _http_error(e)

    if not download:
        return results

    os.makedirs(settings.REPORTS_DIR, exist_ok=True)
    file_path = os.path.join(settings.REPORTS_DIR, f"results_{results['submission_id']}.docx")
    generate_results_docx(results, file_path)
    return FileResponse(
        path=file_path,
        filename=os.path.basename(file_path),
        media_type=DOCX_MEDIA_TYPE,
    )


@router.get("/submissions/{submission_id}/answers", response_model=List[SavedAnswer])
def get_submission_answers(
    submission_id: str,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_submission_answers(db, submission_id, student_id)
    except AssessmentError as e:
        raise _http_error(e)


@router.get("/submissions/{submission_id}/time-remaining", response_model=TimeRemainingResponse)
def get_time_remaining(
    submission_id: str,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_time_remaining(db, submission_id, student_id)
    except AssessmentError as e:
        raise _http_error(e)


@router.get("/history", response_model=List[SubmissionSummary])
def get_history(
    status: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    limit: int = Query(settings.HISTORY_PAGE_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_history(db, student_id, status, date_from, date_to, limit, offset)
    except AssessmentError as e:
        raise _http_error(e)


# ---------------------------------
# Catalogue
# ---------------------------------
@router.get("/available", response_model=List[AvailableAssessment])
def get_available_assessments(
    limit: int = Query(settings.AVAILABLE_PAGE_LIMIT, ge=1, le=100),
    offset: int = Query(0, ge=0),
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_available_assessments(db, student_id, limit, offset)
    except AssessmentError as e:
        raise _http_error(e)


@router.get("/{assessment_id}/questions", response_model=List[StudentQuestion])
def get_assessment_questions(
    assessment_id: str,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_assessment_questions(db, assessment_id)
    except AssessmentError as e:
        raise _http_error(e)


@router.get("/{assessment_id}/attempts", response_model=AssessmentAttempts)
def get_assessment_attempts(
    assessment_id: str,
    student_id: str = Depends(get_student_id),
    db: Session = Depends(get_db),
    service: SubmissionService = Depends(get_service),
):
    try:
        return service.get_assessment_attempts(db, assessment_id, student_id)
    except AssessmentError as e:
        raise _http_error(e)
