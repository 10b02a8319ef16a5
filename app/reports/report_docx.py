from docx import Document


def _fmt(value, suffix=""):
    return "-" if value is None else f"{value}{suffix}"


def generate_results_docx(results: dict, file_path: str):
    doc = Document()

    # Title
    doc.add_heading(results.get("assessment_title") or "Assessment Results", level=1)

    # Summary
    doc.add_heading("Summary", level=2)
    doc.add_paragraph(f"Student: {results['student_id']}")
    doc.add_paragraph(f"Attempt: {results['attempt_number']}")
    doc.add_paragraph(f"Status: {results['status']}")
    doc.add_paragraph(f"Started: {_fmt(results.get('started_at'))}")
    doc.add_paragraph(f"Submitted: {_fmt(results.get('submitted_at'))}")
    doc.add_paragraph(f"Time taken: {_fmt(results.get('time_taken_minutes'), ' min')}")

    # Scores
    doc.add_heading("Overall Score", level=2)
    doc.add_paragraph(
        f"Score: {_fmt(results.get('total_score'))} "
        f"({_fmt(results.get('percentage'), '%')})"
    )
    doc.add_paragraph(f"Grade: {_fmt(results.get('grade'))}")
    doc.add_paragraph(
        f"Correct answers: {results.get('correct_answers', 0)} / {results.get('total_questions', 0)}"
    )
    pending = results.get("pending_manual_grading", 0)
    if pending:
        doc.add_paragraph(f"Awaiting manual grading: {pending}")

    # Per-question breakdown
    doc.add_heading("Answers", level=2)
    table = doc.add_table(rows=1, cols=4)
    header = table.rows[0].cells
    header[0].text = "Question"
    header[1].text = "Your answer"
    header[2].text = "Result"
    header[3].text = "Points"

    for answer in results.get("answers", []):
        if answer["is_correct"] is None:
            verdict = "Pending review"
        else:
            verdict = "Correct" if answer["is_correct"] else "Incorrect"
        row = table.add_row().cells
        row[0].text = answer.get("question_text") or ""
        row[1].text = answer.get("student_answer") or ""
        row[2].text = verdict
        row[3].text = f"{answer['points_earned']} / {answer['points']}"

    # Explanations are only present once the attempt is finished
    explanations = [a for a in results.get("answers", []) if a.get("explanation")]
    if explanations:
        doc.add_heading("Explanations", level=2)
        for a in explanations:
            doc.add_paragraph(f"{a['question_text']}: {a['explanation']}", style="List Bullet")

    doc.save(file_path)
