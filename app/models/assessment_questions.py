import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.db.base import Base


class Question(Base):
    __tablename__ = "questions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    question_type = Column(String(30), nullable=False)
    question_text = Column(Text, nullable=False)

    options = Column(JSON)
    # Shape depends on question_type (option id(s), text, pairs, sequence, region)
    correct_answer = Column(JSON)
    explanation = Column(Text)

    points = Column(Float, default=1, nullable=False)
    is_required = Column(Boolean, default=True, nullable=False)


class AssessmentQuestion(Base):
    __tablename__ = "assessment_questions"
    __table_args__ = (
        UniqueConstraint("assessment_id", "question_id", name="uq_assessment_question"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    assessment_id = Column(Uuid(as_uuid=True), ForeignKey("assessments.id"), nullable=False)
    question_id = Column(Uuid(as_uuid=True), ForeignKey("questions.id"), nullable=False)

    # Overrides Question.points when set
    points = Column(Float, nullable=True)
    order_index = Column(Integer, default=0, nullable=False)
