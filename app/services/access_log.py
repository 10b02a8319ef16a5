# app/services/access_log.py

import logging
import uuid
from typing import Any, Dict, Optional

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.schema import AccessLogShape, SchemaCapabilities
from app.models.submission import AccessLog

logger = logging.getLogger(__name__)


class AccessLogWriter:
    """
    Auxiliary audit trail of start/submit/retake events.

    The row shape is fixed once from the schema capabilities. Failures are
    logged and swallowed; they never abort the surrounding use case.
    """

    def __init__(self, shape: AccessLogShape):
        self.shape = shape

    @classmethod
    def for_capabilities(cls, caps: SchemaCapabilities) -> "AccessLogWriter":
        return cls(caps.access_log_shape)

    @property
    def enabled(self) -> bool:
        return self.shape is not AccessLogShape.NONE

    def build_row(
        self,
        assessment_id: uuid.UUID,
        student_id: str,
        access_type: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        meta = meta or {}
        row: Dict[str, Any] = {
            "assessment_id": assessment_id,
            "student_id": student_id,
            "ip_address": meta.get("ip_address"),
            "user_agent": meta.get("user_agent"),
        }
        if self.shape is AccessLogShape.FULL:
            row["access_type"] = access_type
            row["device_info"] = meta.get("device_info") or {}
        return row

    def write(
        self,
        db: Session,
        assessment_id: uuid.UUID,
        student_id: str,
        access_type: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not self.enabled:
            return False
        row = self.build_row(assessment_id, student_id, access_type, meta)
        try:
            with db.begin_nested():
                db.execute(insert(AccessLog).values(**row))
        except SQLAlchemyError as e:
            logger.warning(f"Skipping access log insert ({access_type}): {e}")
            return False
        return True
