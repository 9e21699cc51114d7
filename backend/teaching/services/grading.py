"""Grade validation and automatic quiz scoring."""

from __future__ import annotations

import math
from typing import Any, Dict, Iterable, Mapping

QUESTION_TYPES = frozenset({"multiple_choice", "short_answer"})


def _as_number(value: object, code: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(code)
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(code) from exc
    if math.isnan(number) or math.isinf(number):
        raise ValueError(code)
    return number


def validate_grade(grade: object, total_marks: object, *, code: str = "invalid_grade") -> float:
    """Return `grade` as a number within `[0, total_marks]`.

    Raises `ValueError(code)` for non-numeric, negative or too-large values.
    """
    value = _as_number(grade, code)
    limit = _as_number(total_marks, "invalid_total_marks")
    if value < 0 or value > limit:
        raise ValueError(code)
    return value


def _answer_matches(question: Mapping[str, Any], answer: object) -> bool:
    expected = question.get("correct_answer")
    if expected is None or answer is None:
        return False
    if question.get("question_type") == "short_answer":
        return str(answer).strip().lower() == str(expected).strip().lower()
    return str(answer) == str(expected)


def score_quiz(questions: Iterable[Mapping[str, Any]], answers: Mapping[str, Any] | None) -> float:
    """Sum the points of correctly answered questions.

    `answers` maps question id to the submitted answer. Multiple-choice
    answers must match the stored option exactly; short answers are compared
    trimmed and case-insensitively.
    """
    given: Dict[str, Any] = dict(answers or {})
    total = 0.0
    for question in questions:
        if _answer_matches(question, given.get(str(question.get("id")))):
            total += float(question.get("points") or 0)
    return total


__all__ = ["validate_grade", "score_quiz", "QUESTION_TYPES"]
