# app/engine/types.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class QuestionType(str, Enum):
    """Supported question types."""
    MULTIPLE_CHOICE = "multiple_choice"
    SINGLE_CHOICE = "single_choice"
    TRUE_FALSE = "true_false"
    SHORT_ANSWER = "short_answer"
    ESSAY = "essay"
    FILL_BLANKS = "fill_blanks"
    CODING = "coding"
    MATCHING = "matching"
    ORDERING = "ordering"
    HOTSPOT = "hotspot"
    FILE_UPLOAD = "file_upload"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["QuestionType"]:
        """Map a stored type string to a member; None when unrecognized."""
        if value is None:
            return None
        key = str(value).strip().lower()
        if key == "fill_blank":
            key = "fill_blanks"
        try:
            return cls(key)
        except ValueError:
            return None


# Scored on save; everything else waits for a human grader.
MANUAL_GRADING_TYPES = frozenset({
    QuestionType.SHORT_ANSWER,
    QuestionType.ESSAY,
    QuestionType.FILE_UPLOAD,
})


@dataclass
class NormalizedAnswer:
    """
    Canonical form of a raw answer payload.

    ``text`` and ``selected_options`` are what gets persisted; ``structured``
    keeps the parsed object (test results, pairs, sequence, coordinates) for
    the scoring engine.
    """
    text: Optional[str] = None
    selected_options: Optional[List[Any]] = None
    structured: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoreResult:
    is_correct: Optional[bool]
    points_earned: float = 0.0

    @property
    def requires_manual_grading(self) -> bool:
        return self.is_correct is None
