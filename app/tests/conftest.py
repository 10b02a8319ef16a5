import pytest
from sqlalchemy import event

from app.db.base import Base
from app.db.schema import SchemaCapabilities
from app.db.session import build_engine, build_sessionmaker
from app.models import assessment, assessment_questions, submission  # noqa: F401  (registers tables)
from app.services.time_authority import TimeAuthority
from app.services.submission import SubmissionService
from app.tests.factories import FrozenClock, RecordingReporter, Seeder


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'assessments.db'}")

    # Readers must not block writers when several sessions interleave
    @event.listens_for(eng, "connect")
    def _wal(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA journal_mode=WAL")

    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def caps(engine):
    return SchemaCapabilities.detect(engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def reporter():
    return RecordingReporter()


@pytest.fixture
def service(caps, clock, reporter):
    return SubmissionService(
        caps,
        time_authority=TimeAuthority(clock=clock, grace_period_seconds=60),
        proctoring=reporter,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def seed(db):
    return Seeder(db)
