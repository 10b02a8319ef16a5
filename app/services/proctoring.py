# app/services/proctoring.py

import logging
from dataclasses import asdict, dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProctoringContext:
    """Correlation data handed to the proctoring service. No detection here."""
    submission_id: str
    student_id: str
    assessment_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class ProctoringReporter(Protocol):
    def submission_finalized(self, context: ProctoringContext) -> None:
        ...


class LoggingProctoringReporter:
    def submission_finalized(self, context: ProctoringContext) -> None:
        logger.info(f"Proctoring context forwarded: {asdict(context)}")
