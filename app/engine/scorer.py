# app/engine/scorer.py

from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass
import json
import logging
import math

from app.engine.types import (
    MANUAL_GRADING_TYPES,
    NormalizedAnswer,
    QuestionType,
    ScoreResult,
)

logger = logging.getLogger(__name__)

GRADE_THRESHOLDS: Tuple[Tuple[float, str], ...] = (
    (90.0, "A"),
    (80.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)

ACCEPTED_VERDICT = "accepted"


def _finite(value: Any) -> float:
    """Coerce to a finite, non-negative float; anything else becomes 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def resolve_points(base_points: Any, override_points: Any = None) -> float:
    """Assessment-level override beats the bank question's own points."""
    override = _finite(override_points)
    if override > 0:
        return override
    return _finite(base_points)


def grade_for(percentage: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if percentage >= threshold:
            return grade
    return "F"


def _canon(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass
class AggregateScore:
    total_score: float
    total_points: float
    percentage: float
    grade: str
    answers_count: int = 0
    used_fallback_total: bool = False


class ScoringEngine:
    """
    DETERMINISTIC SCORING ENGINE.

    Pure functions only: no database, no clock. Each question type maps a
    (question, normalized answer) pair to a ``ScoreResult``:

    - multiple/single choice, true/false, fill blanks: full or zero credit
    - coding: passed test cases / total test cases
    - matching: correctly matched pairs / total correct pairs
    - ordering: items in their correct position / sequence length
    - hotspot: full credit when the click lands inside the region
    - essay, short answer, file upload, unknown types: ``is_correct=None``,
      zero points until a grader overrides them

    Every branch is clamped to ``0 <= points_earned <= points``.
    """

    def __init__(self, default_total_points: float = 100.0, precision: int = 2):
        if default_total_points <= 0:
            raise ValueError("default_total_points must be positive")
        self.default_total_points = float(default_total_points)
        self.precision = precision

    # -------------------------------------------------------------------
    # Per-question scoring
    # -------------------------------------------------------------------

    def score(
        self,
        question_type: Any,
        correct_answer: Any,
        points: Any,
        answer: NormalizedAnswer,
    ) -> ScoreResult:
        """
        Score one answer.

        Args:
            question_type: Stored question type string (or QuestionType)
            correct_answer: Answer key, shape depends on the type
            points: Resolved points for the question
            answer: Output of AnswerNormalizer.normalize

        Returns:
            ScoreResult with is_correct (None = manual grading) and points
        """
        max_points = _finite(points)
        qtype = question_type if isinstance(question_type, QuestionType) else QuestionType.parse(question_type)

        if qtype is None:
            logger.warning(f"Unrecognized question type {question_type!r}; leaving for manual grading")
            return ScoreResult(is_correct=None, points_earned=0.0)

        if qtype in MANUAL_GRADING_TYPES:
            return ScoreResult(is_correct=None, points_earned=0.0)

        handler = {
            QuestionType.MULTIPLE_CHOICE: self._score_choice,
            QuestionType.SINGLE_CHOICE: self._score_choice,
            QuestionType.TRUE_FALSE: self._score_exact,
            QuestionType.FILL_BLANKS: self._score_exact,
            QuestionType.CODING: self._score_coding,
            QuestionType.MATCHING: self._score_matching,
            QuestionType.ORDERING: self._score_ordering,
            QuestionType.HOTSPOT: self._score_hotspot,
        }[qtype]

        is_correct, fraction = handler(correct_answer, answer)
        return self._clamped(is_correct, fraction, max_points)

    def _clamped(self, is_correct: Optional[bool], fraction: float, max_points: float) -> ScoreResult:
        if is_correct is None:
            return ScoreResult(is_correct=None, points_earned=0.0)
        fraction = min(max(_finite(fraction), 0.0), 1.0)
        earned = round(fraction * max_points, self.precision)
        earned = min(max(earned, 0.0), max_points)
        return ScoreResult(is_correct=bool(is_correct), points_earned=earned)

    def _score_choice(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        """Selection must equal the canonical option set exactly."""
        expected = self._as_option_set(correct_answer)
        if not expected:
            return False, 0.0

        if answer.selected_options:
            chosen = self._as_option_set(answer.selected_options)
        elif answer.text:
            chosen = {_canon(answer.text)}
        else:
            chosen = set()

        is_correct = chosen == expected
        return is_correct, 1.0 if is_correct else 0.0

    def _score_exact(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        """Case-insensitive trimmed equality (true/false, fill blanks)."""
        if correct_answer is None:
            return False, 0.0

        if isinstance(correct_answer, list):
            given = answer.selected_options
            if given is None:
                given = self._as_list(answer.structured.get("value") or answer.structured.get("student_answer"))
            if given is None:
                given = self._as_list(answer.text)
            is_correct = (
                given is not None
                and len(given) == len(correct_answer)
                and all(_canon(g) == _canon(c) for g, c in zip(given, correct_answer))
            )
            return is_correct, 1.0 if is_correct else 0.0

        if _canon(correct_answer) == "":
            return False, 0.0

        if answer.text is not None:
            given_text = answer.text
        elif answer.selected_options:
            given_text = answer.selected_options[0]
        else:
            given_text = ""
        is_correct = _canon(given_text) != "" and _canon(given_text) == _canon(correct_answer)
        return is_correct, 1.0 if is_correct else 0.0

    def _score_coding(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        """
        Partial credit from the judge verdicts shipped with the answer.

        A case passes when its ``status`` (or ``result.verdict.status``) is
        "accepted". No cases means no credit.
        """
        results = answer.structured.get("testResults")
        if not isinstance(results, list) or not results:
            return False, 0.0

        passed = sum(1 for r in results if self._verdict_accepted(r))
        total = len(results)
        return passed == total, passed / total

    @staticmethod
    def _verdict_accepted(result: Any) -> bool:
        if not isinstance(result, dict):
            return False
        if _canon(result.get("status")) == ACCEPTED_VERDICT:
            return True
        inner = result.get("result")
        verdict = inner.get("verdict") if isinstance(inner, dict) else None
        return isinstance(verdict, dict) and _canon(verdict.get("status")) == ACCEPTED_VERDICT

    def _score_matching(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        expected = self._as_pairs(correct_answer)
        given = self._as_pairs(answer.structured.get("matches"))
        if expected is None or given is None:
            return None, 0.0
        if not expected:
            return False, 0.0

        matched = sum(1 for left, right in expected.items() if left in given and given[left] == right)
        return matched == len(expected), matched / len(expected)

    def _score_ordering(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        sequence = answer.structured.get("sequence")
        if not isinstance(sequence, list):
            return None, 0.0
        expected = correct_answer if isinstance(correct_answer, list) else None
        if not expected or len(sequence) != len(expected):
            return False, 0.0

        in_place = sum(1 for given, key in zip(sequence, expected) if _canon(given) == _canon(key))
        return in_place == len(expected), in_place / len(expected)

    def _score_hotspot(self, correct_answer: Any, answer: NormalizedAnswer) -> Tuple[Optional[bool], float]:
        region = self._as_region(correct_answer)
        click = answer.structured.get("coordinates")
        if region is None or not isinstance(click, dict):
            return None, 0.0
        try:
            x, y = float(click["x"]), float(click["y"])
        except (KeyError, TypeError, ValueError):
            return False, 0.0

        rx, ry, width, height = region
        inside = rx <= x <= rx + width and ry <= y <= ry + height
        return inside, 1.0 if inside else 0.0

    # -------------------------------------------------------------------
    # Answer-key coercion
    # -------------------------------------------------------------------

    @staticmethod
    def _as_list(value: Any) -> Optional[List[Any]]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except ValueError:
                return None
            return parsed if isinstance(parsed, list) else None
        return None

    @staticmethod
    def _as_option_set(value: Any) -> set:
        if value is None:
            return set()
        if isinstance(value, (list, tuple, set)):
            return {_canon(v) for v in value if _canon(v) != ""}
        canon = _canon(value)
        return {canon} if canon else set()

    @staticmethod
    def _as_pairs(value: Any) -> Optional[Dict[str, str]]:
        """Accept [{"left": a, "right": b}, ...] or {a: b}."""
        if isinstance(value, dict):
            return {_canon(k): _canon(v) for k, v in value.items()}
        if isinstance(value, list):
            pairs: Dict[str, str] = {}
            for item in value:
                if not isinstance(item, dict) or "left" not in item:
                    return None
                pairs[_canon(item["left"])] = _canon(item.get("right"))
            return pairs
        return None

    @staticmethod
    def _as_region(value: Any) -> Optional[Tuple[float, float, float, float]]:
        if not isinstance(value, dict):
            return None
        try:
            region = tuple(float(value[k]) for k in ("x", "y", "width", "height"))
        except (KeyError, TypeError, ValueError):
            return None
        if not all(math.isfinite(v) for v in region) or region[2] <= 0 or region[3] <= 0:
            return None
        return region

    # -------------------------------------------------------------------
    # Submission aggregation
    # -------------------------------------------------------------------

    def aggregate(
        self,
        points_earned: Iterable[Any],
        question_points: Iterable[Any],
        declared_total: Any = None,
        excluded_points: float = 0.0,
    ) -> AggregateScore:
        """
        Aggregate a submission.

        Args:
            points_earned: Stored points of every response
            question_points: Resolved points of every question attached
                to the assessment right now
            declared_total: Assessment.total_points, used only when no
                question points resolve
            excluded_points: Points removed from the denominator
                (ungraded subjective questions, when configured)

        Returns:
            AggregateScore; percentage is always finite and within [0, 100]
        """
        earned = [_finite(p) for p in points_earned]
        total_score = round(sum(earned), self.precision)

        total_points = sum(_finite(p) for p in question_points) - _finite(excluded_points)
        used_fallback = False

        if not math.isfinite(total_points) or total_points <= 0:
            used_fallback = True
            total_points = _finite(declared_total)
            if total_points <= 0:
                logger.warning(
                    f"Invalid total points ({declared_total!r}); "
                    f"using default {self.default_total_points}"
                )
                total_points = self.default_total_points

        percentage = (total_score / total_points) * 100 if total_points > 0 else 0.0
        if not math.isfinite(percentage):
            percentage = 0.0
        percentage = round(min(100.0, max(0.0, percentage)), 2)

        return AggregateScore(
            total_score=total_score,
            total_points=round(total_points, self.precision),
            percentage=percentage,
            grade=grade_for(percentage),
            answers_count=len(earned),
            used_fallback_total=used_fallback,
        )
