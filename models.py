"""Entity dataclasses returned by the repositories.

Rows are decoded once at the repository boundary so the engines never
deal with raw ``sqlite3.Row`` objects or JSON text columns.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional


def _decode_json(value: Any, default: Any = None) -> Any:
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _row_get(row: Mapping[str, Any], key: str, default: Any = None) -> Any:
    try:
        value = row[key]
    except (KeyError, IndexError):
        return default
    return default if value is None else value


@dataclass
class BanditArm:
    user_id: str
    topic_id: str
    difficulty_level: float
    reward_sum: float = 0.0
    play_count: int = 0
    confidence_bound: float = 1.0

    @property
    def average_reward(self) -> Optional[float]:
        if self.play_count <= 0:
            return None
        return self.reward_sum / self.play_count

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "BanditArm":
        return cls(
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            difficulty_level=float(row["difficulty_level"]),
            reward_sum=float(_row_get(row, "reward_sum", 0.0)),
            play_count=int(_row_get(row, "play_count", 0)),
            confidence_bound=float(_row_get(row, "confidence_bound", 1.0)),
        )


@dataclass
class UserContext:
    """Per-request snapshot fed to the difficulty selector. Never persisted."""

    user_id: str
    grade_level: int = 5
    current_mastery: float = 0.5
    recent_accuracy: float = 0.5
    engagement_level: float = 0.5
    time_of_day: str = "afternoon"
    session_length: float = 15
    streak_count: int = 0


@dataclass
class TopicMastery:
    user_id: str
    topic_id: str
    mastery_score: float
    attempts: int = 0
    correct_answers: int = 0
    total_time_spent: float = 0.0
    mastery_level: str = "novice"
    is_completed: bool = False
    last_attempted: Optional[str] = None
    updated_at: Optional[str] = None
    topic_name: Optional[str] = None
    grade_level: Optional[int] = None
    subject_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TopicMastery":
        return cls(
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            mastery_score=float(row["mastery_score"]),
            attempts=int(_row_get(row, "attempts", 0)),
            correct_answers=int(_row_get(row, "correct_answers", 0)),
            total_time_spent=float(_row_get(row, "total_time_spent", 0.0)),
            mastery_level=_row_get(row, "mastery_level", "novice"),
            is_completed=bool(_row_get(row, "is_completed", 0)),
            last_attempted=_row_get(row, "last_attempted"),
            updated_at=_row_get(row, "updated_at"),
            topic_name=_row_get(row, "topic_name"),
            grade_level=_row_get(row, "grade_level"),
            subject_id=_row_get(row, "subject_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserStats:
    user_id: str
    total_xp: int = 0
    level: int = 1
    daily_activity_streak: int = 0
    longest_daily_streak: int = 0
    perfect_session_streak: int = 0
    longest_perfect_session_streak: int = 0
    total_questions_answered: int = 0
    total_correct_answers: int = 0
    total_time_spent: float = 0.0
    badges_earned: int = 0
    last_activity: Optional[str] = None

    @property
    def current_streak(self) -> int:
        return self.daily_activity_streak

    @property
    def longest_streak(self) -> int:
        return self.longest_daily_streak

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserStats":
        return cls(
            user_id=row["user_id"],
            total_xp=int(_row_get(row, "total_xp", 0)),
            level=int(_row_get(row, "level", 1)),
            daily_activity_streak=int(_row_get(row, "daily_activity_streak", 0)),
            longest_daily_streak=int(_row_get(row, "longest_daily_streak", 0)),
            perfect_session_streak=int(_row_get(row, "perfect_session_streak", 0)),
            longest_perfect_session_streak=int(_row_get(row, "longest_perfect_session_streak", 0)),
            total_questions_answered=int(_row_get(row, "total_questions_answered", 0)),
            total_correct_answers=int(_row_get(row, "total_correct_answers", 0)),
            total_time_spent=float(_row_get(row, "total_time_spent", 0.0)),
            badges_earned=int(_row_get(row, "badges_earned", 0)),
            last_activity=_row_get(row, "last_activity"),
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["current_streak"] = self.current_streak
        payload["longest_streak"] = self.longest_streak
        return payload


@dataclass
class UserRecord:
    id: str
    full_name: Optional[str] = None
    grade: Optional[int] = None
    role: str = "student"
    avatar_url: Optional[str] = None
    learning_style: Optional[str] = None
    preferred_difficulty: Optional[str] = None
    session_length_preference: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "UserRecord":
        return cls(
            id=row["id"],
            full_name=_row_get(row, "full_name"),
            grade=_row_get(row, "grade"),
            role=_row_get(row, "role", "student"),
            avatar_url=_row_get(row, "avatar_url"),
            learning_style=_row_get(row, "learning_style"),
            preferred_difficulty=_row_get(row, "preferred_difficulty"),
            session_length_preference=_row_get(row, "session_length_preference"),
        )


@dataclass
class Badge:
    id: str
    name: str
    criteria: Dict[str, Any]
    description: str = ""
    icon: Optional[str] = None
    category: Optional[str] = None
    rarity: str = "common"
    xp_reward: int = 0
    is_active: bool = True

    @property
    def criteria_type(self) -> str:
        return str(self.criteria.get("type", ""))

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Badge":
        return cls(
            id=row["id"],
            name=row["name"],
            criteria=_decode_json(row["criteria"], {}) or {},
            description=_row_get(row, "description", ""),
            icon=_row_get(row, "icon"),
            category=_row_get(row, "category"),
            rarity=_row_get(row, "rarity", "common"),
            xp_reward=int(_row_get(row, "xp_reward", 0)),
            is_active=bool(_row_get(row, "is_active", 1)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class UserBadge:
    user_id: str
    badge: Badge
    earned_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "badge_id": self.badge.id, "earned_at": self.earned_at, "badge": self.badge.to_dict()}


@dataclass
class Topic:
    id: str
    name: str
    subject_id: Optional[str] = None
    description: str = ""
    grade_level: Optional[int] = None
    learning_objectives: List[str] = field(default_factory=list)
    sort_order: int = 0
    is_active: bool = True
    subject_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Topic":
        return cls(
            id=row["id"],
            name=row["name"],
            subject_id=_row_get(row, "subject_id"),
            description=_row_get(row, "description", ""),
            grade_level=_row_get(row, "grade_level"),
            learning_objectives=_decode_json(_row_get(row, "learning_objectives"), []) or [],
            sort_order=int(_row_get(row, "sort_order", 0)),
            is_active=bool(_row_get(row, "is_active", 1)),
            subject_name=_row_get(row, "subject_name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Question:
    id: str
    topic_id: str
    question_text: str
    question_type: str
    correct_answer: Dict[str, Any]
    difficulty_level: float
    options: Optional[Any] = None
    explanation: str = ""
    hints: List[str] = field(default_factory=list)
    estimated_time: float = 30
    is_active: bool = True
    ai_generated: bool = False

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Question":
        return cls(
            id=row["id"],
            topic_id=row["topic_id"],
            question_text=row["question_text"],
            question_type=row["question_type"],
            correct_answer=_decode_json(row["correct_answer"], {}) or {},
            difficulty_level=float(row["difficulty_level"]),
            options=_decode_json(_row_get(row, "options")),
            explanation=_row_get(row, "explanation", ""),
            hints=_decode_json(_row_get(row, "hints"), []) or [],
            estimated_time=float(_row_get(row, "estimated_time", 30)),
            is_active=bool(_row_get(row, "is_active", 1)),
            ai_generated=bool(_row_get(row, "ai_generated", 0)),
        )

    def public_dict(self) -> Dict[str, Any]:
        """Shape served to the client: no answer key, no explanation."""
        return {
            "id": self.id,
            "question_text": self.question_text,
            "question_type": self.question_type,
            "options": self.options,
            "hints": list(self.hints),
            "estimated_time": self.estimated_time,
            "difficulty_level": self.difficulty_level,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QuizSession:
    id: str
    user_id: str
    topic_id: str
    session_type: str = "practice"
    total_questions: int = 0
    correct_answers: int = 0
    total_time: float = 0.0
    completion_rate: float = 0.0
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    is_completed: bool = False
    topic_name: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuizSession":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            topic_id=row["topic_id"],
            session_type=_row_get(row, "session_type", "practice"),
            total_questions=int(_row_get(row, "total_questions", 0)),
            correct_answers=int(_row_get(row, "correct_answers", 0)),
            total_time=float(_row_get(row, "total_time", 0.0)),
            completion_rate=float(_row_get(row, "completion_rate", 0.0)),
            started_at=_row_get(row, "started_at"),
            completed_at=_row_get(row, "completed_at"),
            is_completed=bool(_row_get(row, "is_completed", 0)),
            topic_name=_row_get(row, "topic_name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QuestionResponse:
    id: int
    session_id: str
    question_id: str
    user_id: str
    user_answer: Any
    is_correct: bool
    time_spent: float
    hints_used: int = 0
    confidence_level: Optional[int] = None
    difficulty_at_attempt: float = 0.5
    answered_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "QuestionResponse":
        return cls(
            id=int(row["id"]),
            session_id=row["session_id"],
            question_id=row["question_id"],
            user_id=row["user_id"],
            user_answer=_decode_json(_row_get(row, "user_answer")),
            is_correct=bool(row["is_correct"]),
            time_spent=float(_row_get(row, "time_spent", 0.0)),
            hints_used=int(_row_get(row, "hints_used", 0)),
            confidence_level=_row_get(row, "confidence_level"),
            difficulty_at_attempt=float(_row_get(row, "difficulty_at_attempt", 0.5)),
            answered_at=_row_get(row, "answered_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
