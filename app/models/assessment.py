import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
    Uuid,
)

from app.db.base import Base


class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    title = Column(String(255), nullable=False)
    instructions = Column(Text, nullable=True)

    is_published = Column(Boolean, default=False, nullable=False)

    time_limit_minutes = Column(Integer, nullable=True)
    max_attempts = Column(Integer, default=1, nullable=False)
    time_between_attempts_hours = Column(Float, default=0, nullable=False)

    # Declared total; may lag behind the live question set.
    total_points = Column(Float, nullable=True)

    # Optional scheduling window
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    require_proctoring = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
