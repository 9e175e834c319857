"""Tuning constants for the adaptive and gamification engines.

Every threshold the engines use lives here so it can be audited in one
place and overridden through the environment without code changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from env_validation import get_env_float, get_env_int


@dataclass(frozen=True)
class BanditSettings:
    difficulty_levels: Tuple[float, ...] = (0.2, 0.4, 0.6, 0.8, 1.0)
    exploration_rate: float = 0.10
    confidence_constant: float = 2.0
    long_session_minutes: float = 20
    long_session_penalty: float = 0.9
    analysis_window: int = 20

    @classmethod
    def from_env(cls) -> "BanditSettings":
        return cls(
            exploration_rate=get_env_float("BANDIT_EXPLORATION_RATE", 0.10),
            confidence_constant=get_env_float("BANDIT_CONFIDENCE_CONSTANT", 2.0),
        )


@dataclass(frozen=True)
class MasterySettings:
    learning_rate: float = 0.1
    # Declared for a future BKT update; the current rule ignores them.
    guess_rate: float = 0.25
    slip_rate: float = 0.1
    initial_correct: float = 0.1
    initial_incorrect: float = 0.05
    developing: float = 0.4
    proficient: float = 0.6
    advanced: float = 0.8

    @classmethod
    def from_env(cls) -> "MasterySettings":
        return cls(
            learning_rate=get_env_float("MASTERY_LEARNING_RATE", 0.1),
            advanced=get_env_float("MASTERY_COMPLETE_THRESHOLD", 0.8),
        )


@dataclass(frozen=True)
class GamificationSettings:
    xp_per_level: int = 1000
    streak_milestone_every: int = 5
    weekly_xp_per_correct: int = 10
    topic_mastery_bonus: int = 25
    quiz_complete_bonus: int = 10
    streak_bonus_cap: int = 50
    close_to_badge_percent: float = 75.0

    @classmethod
    def from_env(cls) -> "GamificationSettings":
        return cls(
            xp_per_level=get_env_int("XP_PER_LEVEL", 1000),
            streak_milestone_every=get_env_int("STREAK_MILESTONE_EVERY", 5),
        )


@dataclass(frozen=True)
class QuizSettings:
    default_mastery: float = 0.3
    difficulty_window: float = 0.2
    default_question_count: int = 5
    max_question_count: int = 20
    base_xp: int = 10
    min_xp: int = 5


@dataclass(frozen=True)
class Settings:
    bandit: BanditSettings = field(default_factory=BanditSettings)
    mastery: MasterySettings = field(default_factory=MasterySettings)
    gamification: GamificationSettings = field(default_factory=GamificationSettings)
    quiz: QuizSettings = field(default_factory=QuizSettings)


def load_settings() -> Settings:
    return Settings(
        bandit=BanditSettings.from_env(),
        mastery=MasterySettings.from_env(),
        gamification=GamificationSettings.from_env(),
        quiz=QuizSettings(),
    )


DEFAULT_SETTINGS = Settings()
