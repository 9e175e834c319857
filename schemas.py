"""Pydantic request and response models for the HTTP surface."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

__all__ = [
    "RegisterBody",
    "StartQuizBody",
    "SubmitAnswerBody",
    "SessionContext",
    "AdaptiveQuizBody",
    "UpdateModelBody",
    "FeedbackBody",
    "HintBody",
    "PerformanceInsights",
    "UpdateModelResponse",
]


class RegisterBody(BaseModel):
    full_name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    grade: int | None = Field(default=None, ge=0, le=12)
    role: Literal["student", "teacher", "parent", "admin"] = "student"
    avatar_url: str | None = None


class StartQuizBody(BaseModel):
    topic_id: str = Field(min_length=1)
    session_type: Literal["practice", "assessment", "review", "challenge"] = "practice"
    question_count: int = Field(default=5, ge=1, le=20)


class SubmitAnswerBody(BaseModel):
    session_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    user_answer: Any
    time_spent: float = Field(ge=0)
    hints_used: int = Field(default=0, ge=0)
    confidence_level: int | None = Field(default=None, ge=1, le=5)


class SessionContext(BaseModel):
    time_of_day: Literal["morning", "afternoon", "evening"] | None = None
    device_type: str | None = None
    session_length: float | None = Field(default=None, ge=0)


class AdaptiveQuizBody(BaseModel):
    topic_id: str = Field(min_length=1)
    session_context: SessionContext | None = None


class UpdateModelBody(BaseModel):
    topic_id: str = Field(min_length=1)
    question_id: str | None = None
    is_correct: bool
    time_spent: float = Field(ge=0)
    hints_used: int = Field(default=0, ge=0)
    difficulty_level: float = Field(ge=0, le=1)
    confidence_level: int | None = Field(default=None, ge=1, le=5)


class FeedbackBody(BaseModel):
    question_id: str = Field(min_length=1)
    is_correct: bool
    time_spent: float = Field(ge=0)


class HintBody(BaseModel):
    question_id: str = Field(min_length=1)


class PerformanceInsights(BaseModel):
    optimal_difficulty: float
    learning_velocity: float
    engagement_trend: str
    recommendations: List[str]


class UpdateModelResponse(BaseModel):
    reward: float = Field(ge=0, le=1)
    mastery_update: Dict[str, Any]
    next_difficulty_recommendation: float
    performance_insights: PerformanceInsights
