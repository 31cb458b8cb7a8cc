"""Parsing and validation of generated quiz questions.

The generator answers with camelCase JSON (``correctAnswer``,
``acceptableAnswers``); questions are normalized to snake_case dicts. One bad
question rejects the whole batch so the caller can retry the attempt.
"""

from __future__ import annotations

import json
import re
from typing import Any

QUESTION_TYPES = ("multiple-choice", "true-false", "short-answer")
DIFFICULTIES = ("easy", "medium", "hard")

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


class QuestionValidationError(ValueError):
    """A generated batch could not be parsed or contained an invalid question."""


def _pick(raw: dict[str, Any], *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value not in (None, "", []):
            return value
    return None


def validate_and_normalize_question(raw: Any, index: int) -> dict[str, Any]:
    label = f"Question {index + 1}"
    if not isinstance(raw, dict):
        raise QuestionValidationError(f"{label}: expected an object")

    qtype = raw.get("type")
    if qtype not in QUESTION_TYPES:
        raise QuestionValidationError(f"{label}: unknown question type {qtype!r}")

    text = _pick(raw, "question")
    if not text:
        raise QuestionValidationError(f"{label}: Missing question text")

    correct = _pick(raw, "correct_answer", "correctAnswer")
    if correct is None:
        raise QuestionValidationError(f"{label}: Missing correct answer")

    difficulty = raw.get("difficulty") or "medium"
    if difficulty not in DIFFICULTIES:
        difficulty = "medium"

    try:
        points = int(raw.get("points") or 1)
    except (TypeError, ValueError) as e:
        raise QuestionValidationError(f"{label}: points must be an integer") from e

    normalized: dict[str, Any] = {
        "type": qtype,
        "question": str(text).strip(),
        "correct_answer": correct if isinstance(correct, str) else str(correct).lower(),
        "explanation": raw.get("explanation") or "",
        "difficulty": difficulty,
        "points": points,
    }

    if qtype == "multiple-choice":
        options = raw.get("options")
        if not isinstance(options, list) or len(options) < 2:
            raise QuestionValidationError(f"{label}: Multiple choice must have options")
        normalized["options"] = [str(o) for o in options]
    elif qtype == "short-answer":
        acceptable = _pick(raw, "acceptable_answers", "acceptableAnswers")
        normalized["acceptable_answers"] = (
            [str(a) for a in acceptable] if isinstance(acceptable, list) else [normalized["correct_answer"]]
        )

    return normalized


def parse_quiz_response(text: str) -> list[dict[str, Any]]:
    cleaned = _FENCE.sub("", text or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise QuestionValidationError(f"Failed to parse AI response: {e}") from e

    questions = parsed.get("questions") if isinstance(parsed, dict) else None
    if not isinstance(questions, list):
        raise QuestionValidationError("Invalid response format: missing questions array")

    return [validate_and_normalize_question(q, i) for i, q in enumerate(questions)]


def strip_answers(question: dict[str, Any]) -> dict[str, Any]:
    """Copy of a question safe to show a student taking the quiz."""
    hidden = {"correct_answer", "acceptable_answers", "explanation"}
    return {k: v for k, v in question.items() if k not in hidden}
