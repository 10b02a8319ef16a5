# app/db/schema.py

"""
Schema capability descriptor.

Deployments can lag behind migrations. Instead of probing
``information_schema`` on every call, the live schema is inspected once when
the service is built and reduced to a small descriptor that writers branch on.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)


class SchemaVersion(str, Enum):
    V1 = "v1"  # legacy: no grade / time_taken_minutes / is_flagged
    V2 = "v2"


class AccessLogShape(str, Enum):
    FULL = "full"        # student_id + access_type + device_info
    MINIMAL = "minimal"  # student_id only
    NONE = "none"        # table missing: access logging disabled


SUBMISSION_V2_COLUMNS = frozenset({"grade", "time_taken_minutes"})
RESPONSE_V2_COLUMNS = frozenset({"is_flagged"})

# SQLite transactions are already serializable and REPEATABLE READ is not a
# level it accepts, so no override is requested there.
_SUBMIT_ISOLATION = {
    "sqlite": None,
}


@dataclass(frozen=True)
class SchemaCapabilities:
    version: SchemaVersion = SchemaVersion.V2
    access_log_shape: AccessLogShape = AccessLogShape.FULL
    dialect: str = "postgresql"
    submission_columns: FrozenSet[str] = field(default_factory=frozenset)
    response_columns: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def supports_flags(self) -> bool:
        return self.version is SchemaVersion.V2

    @property
    def submit_isolation_level(self) -> Optional[str]:
        return _SUBMIT_ISOLATION.get(self.dialect, "REPEATABLE READ")

    def submission_values(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Keep only the submission columns this schema version has."""
        return self._filter(values, SUBMISSION_V2_COLUMNS, self.submission_columns)

    def response_values(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        return self._filter(values, RESPONSE_V2_COLUMNS, self.response_columns)

    def _filter(
        self,
        values: Mapping[str, Any],
        v2_only: FrozenSet[str],
        available: FrozenSet[str],
    ) -> Dict[str, Any]:
        kept = dict(values)
        if self.version is not SchemaVersion.V2:
            kept = {k: v for k, v in kept.items() if k not in v2_only}
        # Empty when built by hand instead of inspected
        if available:
            missing = set(kept) - available
            if missing:
                logger.debug(f"Skipping columns absent from the live schema: {sorted(missing)}")
                kept = {k: v for k, v in kept.items() if k in available}
        return kept

    @classmethod
    def detect(cls, engine: Engine) -> "SchemaCapabilities":
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())

        def columns(table: str) -> FrozenSet[str]:
            if table not in tables:
                return frozenset()
            return frozenset(c["name"] for c in inspector.get_columns(table))

        submission_cols = columns("assessment_submissions")
        response_cols = columns("student_responses")
        log_cols = columns("assessment_access_logs")

        if SUBMISSION_V2_COLUMNS <= submission_cols and RESPONSE_V2_COLUMNS <= response_cols:
            version = SchemaVersion.V2
        else:
            version = SchemaVersion.V1

        if not log_cols or "student_id" not in log_cols:
            shape = AccessLogShape.NONE
        elif {"access_type", "device_info"} <= log_cols:
            shape = AccessLogShape.FULL
        else:
            shape = AccessLogShape.MINIMAL

        caps = cls(
            version=version,
            access_log_shape=shape,
            dialect=engine.dialect.name,
            submission_columns=submission_cols,
            response_columns=response_cols,
        )
        logger.info(
            f"Schema capabilities resolved: version={version.value}, "
            f"access_log={shape.value}, dialect={caps.dialect}"
        )
        return caps
