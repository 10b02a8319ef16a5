import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import deferred

from app.db.base import Base


# =========================
# Submission (one attempt)
# =========================
class Submission(Base):
    __tablename__ = "assessment_submissions"
    __table_args__ = (
        UniqueConstraint(
            "assessment_id", "student_id", "attempt_number",
            name="uq_submission_attempt_number",
        ),
        # At most one in_progress attempt per (assessment, student)
        Index(
            "uq_submission_in_progress",
            "assessment_id",
            "student_id",
            unique=True,
            postgresql_where=text("status = 'in_progress'"),
            sqlite_where=text("status = 'in_progress'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    assessment_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("assessments.id"),
        nullable=False,
        index=True,
    )
    student_id = Column(String(64), nullable=False, index=True)

    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="in_progress")

    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    total_score = Column(Float, nullable=True)
    percentage = Column(Float, nullable=True)

    # Absent on V1 schemas, see app.db.schema
    grade = deferred(Column(String(2), nullable=True))
    time_taken_minutes = deferred(Column(Integer, nullable=True))

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


# =========================
# Response (one answer)
# =========================
class StudentResponse(Base):
    __tablename__ = "student_responses"
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_response_question"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    submission_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("assessment_submissions.id"),
        nullable=False,
        index=True,
    )
    question_id = Column(Uuid(as_uuid=True), ForeignKey("questions.id"), nullable=False)
    question_type = Column(String(30), nullable=True)

    student_answer = Column(Text, nullable=True)
    selected_options = Column(JSON, nullable=True)

    # Seconds, server-validated
    time_spent = Column(Integer, nullable=False, default=0)

    # NULL = requires manual grading
    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Float, nullable=False, default=0)

    is_flagged = deferred(Column(Boolean, nullable=False, server_default=text("false")))

    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


# =========================
# Access log (auxiliary)
# =========================
class AccessLog(Base):
    __tablename__ = "assessment_access_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    assessment_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    student_id = Column(String(64), nullable=False)
    access_type = Column(String(20), nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_info = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
