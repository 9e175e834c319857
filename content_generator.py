"""AI-generated questions, hints, feedback and learning paths.

Talks to an OpenAI-compatible ``/chat/completions`` endpoint with
``requests``. Question generation raises ``UpstreamError`` so callers can
skip the item; every other call degrades to canned text.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

import requests

from engines.errors import UpstreamError
from env_validation import get_env_int
from models import Question

_LOGGER = logging.getLogger("finquest.content")

DEFAULT_MODEL = "gpt-4o-mini"

DIFFICULTY_LABELS = {0.2: "very easy", 0.4: "easy", 0.6: "medium", 0.8: "hard", 1.0: "very hard"}

QUESTION_SYSTEM_PROMPT = (
    "You are an expert educational content creator specializing in personal finance education "
    "for children ages 8-13. Create engaging, age-appropriate questions that teach financial "
    "literacy concepts."
)
HINT_SYSTEM_PROMPT = "You are a helpful tutor providing hints to students learning personal finance."
FEEDBACK_SYSTEM_PROMPT = (
    "You are an encouraging teacher providing personalized feedback to young students learning personal finance."
)
PATH_SYSTEM_PROMPT = (
    "You are an AI learning advisor specializing in personalized education paths for financial literacy."
)

PATH_FALLBACK = {
    "recommended_topics": ["Continue current studies"],
    "focus_areas": ["Regular practice"],
    "suggested_activities": ["Daily practice sessions"],
}
PATH_UNPARSEABLE = {
    "recommended_topics": ["Review basic concepts", "Practice with easier questions"],
    "focus_areas": ["Foundation building"],
    "suggested_activities": ["Take practice quizzes", "Review lesson materials"],
}


def _json_log(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        message = json.dumps(
            {"event": event, "error": "serialization_failed", "payload_repr": repr(payload)},
            ensure_ascii=False,
            sort_keys=True,
        )
    _LOGGER.info(message)


def difficulty_label(difficulty: float) -> str:
    return DIFFICULTY_LABELS.get(round(round(difficulty * 5) / 5, 1), "medium")


def _strip_fences(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


class ContentGenerator:
    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url if url is not None else os.getenv("CONTENT_API_URL", "")
        self.api_key = api_key if api_key is not None else os.getenv("CONTENT_API_KEY", "")
        self.model = model or os.getenv("CONTENT_MODEL") or DEFAULT_MODEL
        self.timeout = timeout or get_env_int("CONTENT_TIMEOUT", 30)
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _complete(self, kind: str, system: str, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """POST one chat completion and return the message text.

        Raises UpstreamError on transport errors, non-2xx replies and empty
        content.
        """
        if not self.enabled:
            raise UpstreamError("content generator is not configured")

        payload = {
            "model": self.model,
            "messages": [{"role": "system", "content": system}, {"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        request_id = str(uuid.uuid4())
        start = time.perf_counter()
        ok = False
        try:
            try:
                response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.HTTPError as exc:
                raise UpstreamError(
                    f"content HTTP {exc.response.status_code}: {exc.response.text[:300]}"
                ) from exc
            except (requests.RequestException, ValueError) as exc:
                raise UpstreamError(f"content request failed: {exc}") from exc

            try:
                content = data["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError) as exc:
                raise UpstreamError(f"unexpected content response: {str(data)[:300]}") from exc
            if not content:
                raise UpstreamError("no content generated")
            ok = True
            return content
        finally:
            _json_log(
                "content_call",
                {
                    "request_id": request_id,
                    "kind": kind,
                    "model": self.model,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                    "ok": ok,
                },
            )

    # -- questions ---------------------------------------------------------

    def build_question_prompt(
        self,
        topic: str,
        grade_level: int,
        difficulty: float,
        question_type: str,
        learning_objectives: Sequence[str],
        mastery_label: Optional[str] = None,
    ) -> str:
        lines = [
            f'Create a {difficulty_label(difficulty)} {question_type} question about "{topic}" '
            f"for Grade {grade_level} students.",
            "",
            f"Learning Objectives: {', '.join(learning_objectives)}",
            f"Difficulty Level: {difficulty} (0.0-1.0 scale)",
        ]
        if mastery_label:
            lines.append(f"Student Mastery Level: {mastery_label}")
        lines += [
            "",
            "Requirements:",
            f"- Age-appropriate language for {grade_level} graders",
            "- Engaging, real-world scenarios",
            "- Clear, unambiguous correct answer",
            "- Educational explanation",
            "- 2-3 helpful hints",
            "- Estimated completion time",
            "",
            "Format as JSON with keys question_text, question_type, "
            + ("options (an object keyed A-D), " if question_type == "multiple_choice" else "")
            + 'correct_answer ({"answer": ...}), explanation, difficulty_level, hints (list), estimated_time (seconds).',
        ]
        return "\n".join(lines)

    def generate_question(
        self,
        topic_id: str,
        topic: str,
        grade_level: int,
        difficulty: float,
        question_type: str = "multiple_choice",
        learning_objectives: Sequence[str] = (),
        mastery_label: Optional[str] = None,
    ) -> Question:
        prompt = self.build_question_prompt(
            topic, grade_level, difficulty, question_type, learning_objectives, mastery_label
        )
        content = self._complete("question", QUESTION_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=1000)
        try:
            parsed = json.loads(_strip_fences(content))
            correct = parsed["correct_answer"]
            text = parsed["question_text"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamError("Invalid question format generated") from exc
        if not isinstance(correct, dict):
            correct = {"answer": correct}
        return Question(
            id=f"ai-{uuid.uuid4()}",
            topic_id=topic_id,
            question_text=str(text),
            question_type=question_type,
            correct_answer=correct,
            difficulty_level=float(difficulty),
            options=parsed.get("options") or None,
            explanation=parsed.get("explanation") or "",
            hints=list(parsed.get("hints") or []),
            estimated_time=float(parsed.get("estimated_time") or 30),
            ai_generated=True,
        )

    # -- canned-fallback calls ----------------------------------------------

    def generate_hint(self, question_text: str, correct_answer: str, mastery_label: str) -> str:
        prompt = (
            "Generate a helpful hint for this personal finance question without giving away the answer:\n\n"
            f"Question: {question_text}\n"
            f"Correct Answer: {correct_answer}\n"
            f"Student Level: {mastery_label}\n\n"
            "Provide a hint that guides the student toward the correct thinking without revealing the "
            "answer directly. Make it encouraging and age-appropriate for grades 3-7."
        )
        try:
            return self._complete("hint", HINT_SYSTEM_PROMPT, prompt, temperature=0.5, max_tokens=150)
        except UpstreamError as exc:
            _LOGGER.warning("Hint generation failed: %s", exc)
            return "Think carefully about what you've learned about this topic!"

    def generate_feedback(
        self,
        is_correct: bool,
        topic: str,
        accuracy: float,
        streak: int,
        time_spent: float,
    ) -> str:
        prompt = (
            f"Generate personalized feedback for a student who {'correctly' if is_correct else 'incorrectly'} "
            f"answered a question about {topic}.\n\n"
            "Student Performance:\n"
            f"- Overall accuracy: {round(accuracy * 100)}%\n"
            f"- Current streak: {streak}\n"
            f"- Time spent: {time_spent} seconds\n\n"
            "Make the feedback encouraging, age-appropriate for grades 3-7, specific to personal finance "
            "learning and brief (1-2 sentences)."
        )
        try:
            return self._complete("feedback", FEEDBACK_SYSTEM_PROMPT, prompt, temperature=0.7, max_tokens=100)
        except UpstreamError as exc:
            _LOGGER.warning("Feedback generation failed: %s", exc)
            return "Excellent work!" if is_correct else "Good effort! Keep practicing!"

    def generate_learning_path(
        self,
        current_mastery: List[Dict[str, Any]],
        weak_areas: Sequence[str],
        grade_level: int,
    ) -> Dict[str, List[str]]:
        prompt = (
            "Analyze this student's learning progress and recommend a personalized learning path:\n\n"
            f"Grade Level: {grade_level}\n"
            f"Current Mastery: {json.dumps(current_mastery[:5], default=str)}\n"
            f"Weak Areas: {', '.join(weak_areas)}\n\n"
            "Provide recommendations for:\n"
            "1. Next 3 topics to focus on\n"
            "2. 2-3 specific areas that need attention\n"
            "3. 3 engaging activities to improve understanding\n\n"
            "Format as JSON with keys: recommended_topics, focus_areas, suggested_activities"
        )
        try:
            content = self._complete("learning_path", PATH_SYSTEM_PROMPT, prompt, temperature=0.6, max_tokens=300)
        except UpstreamError as exc:
            _LOGGER.warning("Learning path generation failed: %s", exc)
            return {key: list(value) for key, value in PATH_FALLBACK.items()}
        try:
            parsed = json.loads(_strip_fences(content))
        except ValueError:
            return {key: list(value) for key, value in PATH_UNPARSEABLE.items()}
        if not isinstance(parsed, dict):
            return {key: list(value) for key, value in PATH_UNPARSEABLE.items()}
        return {
            key: [str(item) for item in parsed.get(key) or []]
            for key in ("recommended_topics", "focus_areas", "suggested_activities")
        }
