import pytest
from sqlalchemy import text

from app.db.base import Base
from app.db.schema import AccessLogShape, SchemaCapabilities, SchemaVersion
from app.db.session import build_engine


@pytest.fixture
def legacy_engine(tmp_path):
    """Schema as deployed before grade / time_taken_minutes / is_flagged existed."""
    eng = build_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    Base.metadata.create_all(eng)
    with eng.begin() as conn:
        conn.execute(text("ALTER TABLE assessment_submissions DROP COLUMN grade"))
        conn.execute(text("ALTER TABLE assessment_submissions DROP COLUMN time_taken_minutes"))
        conn.execute(text("ALTER TABLE student_responses DROP COLUMN is_flagged"))
        conn.execute(text("DROP TABLE assessment_access_logs"))
    yield eng
    eng.dispose()


def test_current_schema_detected_as_v2(engine):
    caps = SchemaCapabilities.detect(engine)
    assert caps.version is SchemaVersion.V2
    assert caps.access_log_shape is AccessLogShape.FULL
    assert caps.supports_flags
    assert caps.dialect == "sqlite"
    assert caps.submit_isolation_level is None


def test_legacy_schema_detected_as_v1(legacy_engine):
    caps = SchemaCapabilities.detect(legacy_engine)
    assert caps.version is SchemaVersion.V1
    assert caps.access_log_shape is AccessLogShape.NONE
    assert not caps.supports_flags


def test_minimal_access_log_shape(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'minimal.db'}")
    Base.metadata.create_all(eng)
    with eng.begin() as conn:
        conn.execute(text("ALTER TABLE assessment_access_logs DROP COLUMN device_info"))
    assert SchemaCapabilities.detect(eng).access_log_shape is AccessLogShape.MINIMAL
    eng.dispose()


def test_v1_filters_new_columns_from_writes():
    caps = SchemaCapabilities(version=SchemaVersion.V1)
    values = {"status": "submitted", "grade": "A", "time_taken_minutes": 12}
    assert caps.submission_values(values) == {"status": "submitted"}
    assert caps.response_values({"points_earned": 1, "is_flagged": True}) == {"points_earned": 1}


def test_postgres_submit_runs_repeatable_read():
    assert SchemaCapabilities(dialect="postgresql").submit_isolation_level == "REPEATABLE READ"


def test_writes_skip_columns_missing_from_live_schema(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'partial.db'}")
    Base.metadata.create_all(eng)
    with eng.begin() as conn:
        conn.execute(text("ALTER TABLE assessment_submissions DROP COLUMN user_agent"))
        conn.execute(text("ALTER TABLE student_responses DROP COLUMN question_type"))
    caps = SchemaCapabilities.detect(eng)
    eng.dispose()

    assert caps.version is SchemaVersion.V2
    assert "user_agent" not in caps.submission_columns
    assert caps.submission_values({"status": "in_progress", "user_agent": "curl/8", "grade": None}) == {
        "status": "in_progress",
        "grade": None,
    }
    assert caps.response_values({"question_type": "essay", "points_earned": 0, "is_flagged": True}) == {
        "points_earned": 0,
        "is_flagged": True,
    }
