import uuid

import pytest
from fastapi.testclient import TestClient

from app.api.student_assessments import get_service
from app.core.config import settings
from app.db.session import get_db
from app.main import app
from app.services import concurrency
from app.services.state_machine import SubmissionStatus
from app.tests.factories import serialization_failure

STUDENT = {"X-Student-Id": "student-7"}
BASE = "/api/v1/student-assessments"


@pytest.fixture
def client(session_factory, service):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_full_attempt_over_http(client, seed, clock):
    assessment = seed.assessment()
    choice = seed.question(assessment, "single_choice", "A", points=5)
    essay = seed.question(assessment, "essay", None, points=5)

    started = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT)
    assert started.status_code == 200
    submission_id = started.json()["submission_id"]

    saved = client.post(
        f"{BASE}/submissions/{submission_id}/answers",
        json={"question_id": str(choice.id), "answer": "A", "time_spent": 12},
        headers=STUDENT,
    )
    assert saved.status_code == 200
    assert saved.json()["points_earned"] == 5

    clock.advance(minutes=4)
    submitted = client.post(
        f"{BASE}/submissions/{submission_id}/submit",
        json={"answers": {str(essay.id): "An essay"}},
        headers=STUDENT,
    )
    assert submitted.status_code == 200
    body = submitted.json()
    assert body["percentage"] == 50.0
    assert body["grade"] == "F"
    assert body["replayed_answers"] == 1

    results = client.get(f"{BASE}/submissions/{submission_id}/results", headers=STUDENT)
    assert results.status_code == 200
    assert results.json()["pending_manual_grading"] == 1

    history = client.get(f"{BASE}/history", headers=STUDENT)
    assert [h["status"] for h in history.json()] == ["submitted"]


def test_missing_student_header(client, seed):
    assessment = seed.assessment()
    response = client.post(f"{BASE}/{assessment.id}/start")
    assert response.status_code == 401


def test_error_statuses(client, seed, clock):
    missing = client.post(f"{BASE}/{uuid.uuid4()}/start", headers=STUDENT)
    assert missing.status_code == 404

    bad_id = client.get(f"{BASE}/submissions/nope/results", headers=STUDENT)
    assert bad_id.status_code == 400

    assessment = seed.assessment(time_limit_minutes=10)
    question = seed.question(assessment, "single_choice", "A")
    submission_id = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT).json()["submission_id"]

    foreign = client.post(
        f"{BASE}/submissions/{submission_id}/answers",
        json={"question_id": str(question.id), "answer": "A"},
        headers={"X-Student-Id": "someone-else"},
    )
    assert foreign.status_code == 403

    clock.advance(minutes=11)
    late = client.post(
        f"{BASE}/submissions/{submission_id}/answers",
        json={"question_id": str(question.id), "answer": "A"},
        headers=STUDENT,
    )
    assert late.status_code == 403
    assert "exceeded" in late.json()["detail"]

    assert client.post(f"{BASE}/submissions/{submission_id}/submit", headers=STUDENT).status_code == 200
    again = client.post(f"{BASE}/submissions/{submission_id}/submit", headers=STUDENT)
    assert again.status_code == 400
    assert "already submitted" in again.json()["detail"]


def test_flags_and_time_remaining(client, seed):
    assessment = seed.assessment(time_limit_minutes=20)
    question = seed.question(assessment, "single_choice", "A")
    submission_id = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT).json()["submission_id"]

    flagged = client.post(
        f"{BASE}/submissions/{submission_id}/questions/{question.id}/flag",
        json={"is_flagged": True},
        headers=STUDENT,
    )
    assert flagged.status_code == 200

    answers = client.get(f"{BASE}/submissions/{submission_id}/answers", headers=STUDENT).json()
    assert answers[0]["is_flagged"] is True

    remaining = client.get(f"{BASE}/submissions/{submission_id}/time-remaining", headers=STUDENT).json()
    assert remaining["remaining_seconds"] == 1200


def test_results_download_as_docx(client, seed, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "REPORTS_DIR", str(tmp_path / "reports"))
    assessment = seed.assessment()
    submission_id = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT).json()["submission_id"]
    client.post(f"{BASE}/submissions/{submission_id}/submit", headers=STUDENT)

    response = client.get(
        f"{BASE}/submissions/{submission_id}/results",
        params={"download": True},
        headers=STUDENT,
    )
    assert response.status_code == 200
    assert response.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
    )
    assert (tmp_path / "reports" / f"results_{submission_id}.docx").exists()


def test_submit_losing_row_lock_reports_already_submitted(client, seed, session_factory, caps, monkeypatch):
    assessment = seed.assessment()
    submission_id = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT).json()["submission_id"]

    def contended_lock(session, sid):
        other = session_factory()
        try:
            concurrency.compare_and_swap_status(
                other, caps, sid, SubmissionStatus.IN_PROGRESS, SubmissionStatus.SUBMITTED, {"total_score": 0.0},
            )
            other.commit()
        finally:
            other.close()
        raise serialization_failure()

    monkeypatch.setattr(concurrency, "lock_submission", contended_lock)

    response = client.post(f"{BASE}/submissions/{submission_id}/submit", headers=STUDENT)
    assert response.status_code == 400
    assert response.json()["detail"] == "Assessment already submitted. Current status: submitted"


def test_catalogue_routes(client, seed):
    assessment = seed.assessment(max_attempts=2)
    question = seed.question(assessment, "single_choice", "A", points=2)

    available = client.get(f"{BASE}/available", headers=STUDENT)
    assert available.status_code == 200
    assert available.json()[0]["can_attempt"] is True

    questions = client.get(f"{BASE}/{assessment.id}/questions", headers=STUDENT)
    assert questions.status_code == 200
    assert questions.json()[0]["question_id"] == str(question.id)
    assert "correct_answer" not in questions.json()[0]

    submission_id = client.post(f"{BASE}/{assessment.id}/start", headers=STUDENT).json()["submission_id"]
    attempts = client.get(f"{BASE}/{assessment.id}/attempts", headers=STUDENT).json()
    assert attempts["total_attempts"] == 1
    assert attempts["attempts"][0]["submission_id"] == submission_id

    assert client.get(f"{BASE}/{uuid.uuid4()}/questions", headers=STUDENT).status_code == 404
    assert client.get(f"{BASE}/available").status_code == 401
