from typing import Any

from models import Question


def _unwrap(value: Any, key: str) -> Any:
    if isinstance(value, dict):
        return value.get(key)
    return value


def check_answer(question: Question, user_answer: Any) -> bool:
    """Grade ``user_answer`` against the question's answer key.

    ``user_answer`` may be the bare value or an object shaped like the key
    (``{"answer": ...}`` or ``{"order": [...]}``). Unknown types never pass.
    """

    key = question.correct_answer or {}
    kind = question.question_type

    if kind in ("multiple_choice", "true_false"):
        expected = key.get("answer")
        return expected is not None and _unwrap(user_answer, "answer") == expected

    if kind == "fill_blank":
        expected = key.get("answer")
        given = _unwrap(user_answer, "answer")
        if expected is None or given is None:
            return False
        return str(given).strip().lower() == str(expected).strip().lower()

    if kind == "drag_drop":
        expected = key.get("order")
        given = _unwrap(user_answer, "order")
        if not isinstance(expected, list) or not isinstance(given, list):
            return False
        return list(given) == list(expected)

    return False
