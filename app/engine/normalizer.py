# app/engine/normalizer.py

"""
Answer normalizer and validator.

Turns whatever the client sent for a question into a ``NormalizedAnswer``:
  - plain string                      -> text
  - list                              -> selected options
  - {"student_answer": ...}           -> text (+ selected_options)
  - {"value": ...}                    -> text (+ selected_options)
  - {"code", "language", "testResults"} -> JSON text, test results kept
  - {"matches": [...]}                -> JSON text, pairs kept
  - {"sequence": [...]}               -> JSON text, sequence kept
  - {"coordinates": {...}}            -> JSON text, click kept

Empty payloads are rejected for required questions and every payload is
bounded by a per-type size limit.
"""

import json
import re
from typing import Any, Dict, List, Optional

from app.core.config import settings
from app.core.errors import ValidationError
from app.engine.types import NormalizedAnswer, QuestionType

# Control characters except \t, \n and \r
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# Content where leading/trailing whitespace is meaningful
_WHITESPACE_SENSITIVE = frozenset({QuestionType.CODING, QuestionType.ESSAY})

_EMPTY_MARKERS = ("", "null", "undefined")


def is_empty_answer(answer: Any) -> bool:
    """
    True for None, blank strings (including the literals "null"/"undefined"),
    empty lists, empty dicts and dicts whose values are all empty.
    """
    if answer is None:
        return True
    if isinstance(answer, str):
        return answer.strip() in _EMPTY_MARKERS
    if isinstance(answer, (list, tuple)):
        return len(answer) == 0
    if isinstance(answer, dict):
        if not answer:
            return True
        return all(_is_empty_value(v) for v in answer.values())
    return False


def _is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (dict, list, tuple)):
        return len(value) == 0
    return False


class AnswerNormalizer:
    def __init__(
        self,
        max_coding_bytes: int = settings.MAX_CODING_ANSWER_BYTES,
        max_essay_bytes: int = settings.MAX_ESSAY_ANSWER_BYTES,
        max_other_bytes: int = settings.MAX_OTHER_ANSWER_BYTES,
    ):
        self.max_coding_bytes = max_coding_bytes
        self.max_essay_bytes = max_essay_bytes
        self.max_other_bytes = max_other_bytes

    def max_size_for(self, qtype: Optional[QuestionType]) -> int:
        if qtype is QuestionType.CODING:
            return self.max_coding_bytes
        if qtype is QuestionType.ESSAY:
            return self.max_essay_bytes
        return self.max_other_bytes

    def validate(
        self,
        raw: Any,
        qtype: Optional[QuestionType],
        required: bool = True,
    ) -> None:
        if required and is_empty_answer(raw):
            raise ValidationError("Answer cannot be empty for required questions")

        size = _payload_size(raw)
        limit = self.max_size_for(qtype)
        if size > limit:
            raise ValidationError(
                f"Answer size exceeds maximum allowed ({round(limit / 1024)}KB)"
            )

    def normalize(
        self,
        raw: Any,
        qtype: Optional[QuestionType],
        required: bool = True,
    ) -> NormalizedAnswer:
        """Validate and classify ``raw``. Raises ValidationError."""
        self.validate(raw, qtype, required=required)

        if raw is None:
            return NormalizedAnswer()

        if isinstance(raw, str):
            return NormalizedAnswer(text=self._sanitize(raw, qtype))

        if isinstance(raw, (list, tuple)):
            options = [self._sanitize_option(o) for o in raw]
            return NormalizedAnswer(
                text=_dumps(options),
                selected_options=options,
            )

        if isinstance(raw, dict):
            return self._normalize_object(raw, qtype)

        # numbers, booleans
        text = str(raw).lower() if isinstance(raw, bool) else str(raw)
        return NormalizedAnswer(text=self._sanitize(text, qtype))

    # -------------------------------------------------------------------
    # Object payloads
    # -------------------------------------------------------------------

    def _normalize_object(self, raw: Dict[str, Any], qtype: Optional[QuestionType]) -> NormalizedAnswer:
        for key in ("student_answer", "value"):
            if key in raw and raw[key] is not None:
                value = raw[key]
                text = value if isinstance(value, str) else _dumps(value)
                return NormalizedAnswer(
                    text=self._sanitize(text, qtype),
                    selected_options=self._options(raw.get("selected_options")),
                    structured=dict(raw),
                )

        if "code" in raw:
            test_results = raw.get("testResults")
            if test_results is None:
                test_results = []
            if not isinstance(test_results, list):
                raise ValidationError("Invalid testResults format")
            payload = {
                "code": self._sanitize(raw.get("code") or "", QuestionType.CODING),
                "language": raw.get("language"),
                "testResults": test_results,
                "executionTime": raw.get("executionTime") or 0,
                "memoryUsage": raw.get("memoryUsage") or 0,
            }
            return NormalizedAnswer(text=_dumps(payload), structured=payload)

        if "matches" in raw:
            if not isinstance(raw["matches"], (list, dict)):
                raise ValidationError("Invalid matches format")
            return NormalizedAnswer(text=_dumps(raw), structured=dict(raw))

        if "sequence" in raw:
            if not isinstance(raw["sequence"], list):
                raise ValidationError("Invalid sequence format")
            return NormalizedAnswer(text=_dumps(raw), structured=dict(raw))

        if "coordinates" in raw:
            if not isinstance(raw["coordinates"], dict):
                raise ValidationError("Invalid coordinates format")
            return NormalizedAnswer(text=_dumps(raw), structured=dict(raw))

        if "selected_options" in raw:
            options = self._options(raw["selected_options"])
            return NormalizedAnswer(
                text=_dumps(options),
                selected_options=options,
                structured=dict(raw),
            )

        return NormalizedAnswer(text=_dumps(raw), structured=dict(raw))

    def _options(self, value: Any) -> Optional[List[Any]]:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            value = [value]
        return [self._sanitize_option(o) for o in value]

    def _sanitize_option(self, option: Any) -> Any:
        if isinstance(option, str):
            return _CONTROL_CHARS.sub("", option).strip()
        return option

    @staticmethod
    def _sanitize(text: str, qtype: Optional[QuestionType]) -> str:
        cleaned = _CONTROL_CHARS.sub("", text)
        if qtype in _WHITESPACE_SENSITIVE:
            return cleaned
        return cleaned.strip()


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid answer payload: {exc}")


def _payload_size(raw: Any) -> int:
    if raw is None:
        return 0
    if isinstance(raw, str):
        return len(raw.encode("utf-8"))
    try:
        return len(json.dumps(raw, ensure_ascii=False).encode("utf-8"))
    except (TypeError, ValueError):
        raise ValidationError("Invalid answer payload")
