import math

import pytest

from app.engine.scorer import ScoringEngine, grade_for, resolve_points
from app.engine.types import NormalizedAnswer, QuestionType


@pytest.fixture
def scorer():
    return ScoringEngine()


def text(value):
    return NormalizedAnswer(text=value)


def options(*values):
    return NormalizedAnswer(selected_options=list(values))


def structured(**payload):
    return NormalizedAnswer(structured=payload)


# -------------------------------------------------------------------
# Choice / exact
# -------------------------------------------------------------------

def test_multiple_choice_requires_exact_option_set(scorer):
    key = ["A", "C"]
    assert scorer.score("multiple_choice", key, 2, options("c", "a")).points_earned == 2
    partial = scorer.score("multiple_choice", key, 2, options("a"))
    assert partial.is_correct is False
    assert partial.points_earned == 0


def test_single_choice_accepts_plain_text(scorer):
    result = scorer.score("single_choice", "B", 3, text(" b "))
    assert result.is_correct is True
    assert result.points_earned == 3


def test_true_false_is_case_insensitive(scorer):
    assert scorer.score("true_false", "true", 1, text("TRUE")).is_correct is True
    assert scorer.score("true_false", "true", 1, text("false")).is_correct is False


def test_fill_blank_alias_and_list_key(scorer):
    answer = NormalizedAnswer(selected_options=["Paris", "berlin"])
    result = scorer.score("fill_blank", ["paris", "Berlin"], 2, answer)
    assert result.is_correct is True
    assert result.points_earned == 2


def test_empty_text_never_matches(scorer):
    assert scorer.score("fill_blanks", "answer", 1, text("")).is_correct is False


@pytest.mark.parametrize("qtype,key,answer", [
    ("multiple_choice", None, text("A")),
    ("multiple_choice", [], options("A")),
    ("single_choice", "  ", text("A")),
    ("true_false", None, text("true")),
    ("true_false", "", text("true")),
    ("fill_blanks", None, text("Paris")),
    ("fill_blanks", "   ", text("Paris")),
])
def test_missing_answer_key_scores_false_not_pending(scorer, qtype, key, answer):
    result = scorer.score(qtype, key, 5, answer)
    assert result.is_correct is False
    assert result.points_earned == 0
    assert not result.requires_manual_grading


# -------------------------------------------------------------------
# Partial credit
# -------------------------------------------------------------------

def test_coding_partial_credit_from_verdicts(scorer):
    results = [
        {"status": "Accepted"},
        {"result": {"verdict": {"status": "accepted"}}},
        {"status": "wrong_answer"},
        {"status": "time_limit_exceeded"},
    ]
    result = scorer.score("coding", None, 10, structured(testResults=results))
    assert result.is_correct is False
    assert result.points_earned == 5


def test_coding_without_test_results_scores_zero(scorer):
    result = scorer.score("coding", None, 10, structured(testResults=[]))
    assert result.is_correct is False
    assert result.points_earned == 0


def test_matching_dict_key_and_pair_list_answer(scorer):
    key = {"TCP": "reliable", "UDP": "connectionless", "ICMP": "diagnostics"}
    answer = structured(matches=[
        {"left": "tcp", "right": "Reliable"},
        {"left": "udp", "right": "diagnostics"},
        {"left": "icmp", "right": "diagnostics"},
    ])
    result = scorer.score("matching", key, 3, answer)
    assert result.is_correct is False
    assert result.points_earned == 2


def test_ordering_counts_items_in_place(scorer):
    key = ["prepare", "detect", "contain", "recover"]
    answer = structured(sequence=["prepare", "contain", "detect", "recover"])
    assert scorer.score("ordering", key, 4, answer).points_earned == 2


def test_ordering_length_mismatch_scores_zero(scorer):
    result = scorer.score("ordering", ["a", "b", "c"], 3, structured(sequence=["a", "b"]))
    assert result.is_correct is False
    assert result.points_earned == 0


def test_hotspot_inside_and_outside_region(scorer):
    region = {"x": 10, "y": 10, "width": 20, "height": 20}
    assert scorer.score("hotspot", region, 2, structured(coordinates={"x": 15, "y": 29})).points_earned == 2
    assert scorer.score("hotspot", region, 2, structured(coordinates={"x": 31, "y": 15})).is_correct is False


def test_hotspot_degenerate_region_is_ungradable(scorer):
    region = {"x": 0, "y": 0, "width": 0, "height": 10}
    result = scorer.score("hotspot", region, 2, structured(coordinates={"x": 0, "y": 0}))
    assert result.is_correct is None


# -------------------------------------------------------------------
# Manual / unknown / clamping
# -------------------------------------------------------------------

@pytest.mark.parametrize("qtype", ["essay", "short_answer", "file_upload", "diagram"])
def test_subjective_and_unknown_types_wait_for_grader(scorer, qtype):
    result = scorer.score(qtype, "anything", 5, text("a long answer"))
    assert result.is_correct is None
    assert result.points_earned == 0
    assert result.requires_manual_grading


@pytest.mark.parametrize("points", [-3, float("nan"), float("inf"), "abc", None])
def test_invalid_points_never_produce_negative_or_nan(scorer, points):
    result = scorer.score(QuestionType.SINGLE_CHOICE, "A", points, text("a"))
    assert result.points_earned == 0
    assert not math.isnan(result.points_earned)


def test_resolve_points_prefers_positive_override():
    assert resolve_points(2, 5) == 5
    assert resolve_points(2, 0) == 2
    assert resolve_points(2, None) == 2
    assert resolve_points(float("nan"), None) == 0


# -------------------------------------------------------------------
# Aggregation
# -------------------------------------------------------------------

def test_aggregate_half_points_is_fifty_percent_f(scorer):
    aggregate = scorer.aggregate([5, 0], [5, 5])
    assert aggregate.total_score == 5
    assert aggregate.total_points == 10
    assert aggregate.percentage == 50.0
    assert aggregate.grade == "F"


def test_aggregate_falls_back_to_declared_total(scorer):
    aggregate = scorer.aggregate([8], [0, float("nan")], declared_total=40)
    assert aggregate.used_fallback_total
    assert aggregate.total_points == 40
    assert aggregate.percentage == 20.0


def test_aggregate_falls_back_to_default_total(scorer):
    aggregate = scorer.aggregate([10], [], declared_total=float("nan"))
    assert aggregate.total_points == 100
    assert aggregate.percentage == 10.0


def test_aggregate_percentage_clamped_to_hundred(scorer):
    aggregate = scorer.aggregate([12], [10])
    assert aggregate.percentage == 100.0
    assert aggregate.grade == "A"


def test_aggregate_excluded_points_shrink_denominator(scorer):
    aggregate = scorer.aggregate([5], [5, 5], excluded_points=5)
    assert aggregate.total_points == 5
    assert aggregate.percentage == 100.0


@pytest.mark.parametrize("percentage,grade", [(95, "A"), (80, "B"), (79.99, "C"), (60, "D"), (0, "F")])
def test_grade_thresholds(percentage, grade):
    assert grade_for(percentage) == grade


def test_default_total_must_be_positive():
    with pytest.raises(ValueError):
        ScoringEngine(default_total_points=0)
