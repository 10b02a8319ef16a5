from docx import Document

from app.reports.report_docx import generate_results_docx


def sample_results():
    return {
        "submission_id": "9b1deb4d-3b7d-4bad-9bdd-2b0d7b3dcb6d",
        "assessment_title": "Incident Response Basics",
        "student_id": "student-7",
        "attempt_number": 1,
        "status": "submitted",
        "started_at": "2026-01-05T09:00:00+00:00",
        "submitted_at": "2026-01-05T09:12:10+00:00",
        "time_taken_minutes": 13,
        "total_score": 5.0,
        "percentage": 50.0,
        "grade": "F",
        "total_questions": 2,
        "correct_answers": 1,
        "pending_manual_grading": 1,
        "answers": [
            {
                "question_text": "Which phase comes first?",
                "student_answer": "Preparation",
                "is_correct": True,
                "points_earned": 5.0,
                "points": 5.0,
                "explanation": "Preparation precedes detection.",
            },
            {
                "question_text": "Describe containment.",
                "student_answer": "Isolate affected hosts",
                "is_correct": None,
                "points_earned": 0.0,
                "points": 5.0,
            },
        ],
    }


def test_results_document_contents(tmp_path):
    path = tmp_path / "results.docx"
    generate_results_docx(sample_results(), str(path))

    doc = Document(str(path))
    paragraphs = [p.text for p in doc.paragraphs]

    assert paragraphs[0] == "Incident Response Basics"
    assert "Score: 5.0 (50.0%)" in paragraphs
    assert "Grade: F" in paragraphs
    assert "Awaiting manual grading: 1" in paragraphs
    assert "Which phase comes first?: Preparation precedes detection." in paragraphs

    table = doc.tables[0]
    assert len(table.rows) == 3
    assert [c.text for c in table.rows[2].cells] == [
        "Describe containment.", "Isolate affected hosts", "Pending review", "0.0 / 5.0",
    ]


def test_in_progress_results_have_no_explanations(tmp_path):
    results = sample_results()
    results.update(status="in_progress", submitted_at=None, grade=None)
    for answer in results["answers"]:
        answer.pop("explanation", None)
    path = tmp_path / "draft.docx"
    generate_results_docx(results, str(path))

    paragraphs = [p.text for p in Document(str(path)).paragraphs]
    assert "Explanations" not in paragraphs
    assert "Submitted: -" in paragraphs
    assert "Grade: -" in paragraphs
