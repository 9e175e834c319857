"""Upper-confidence-bound difficulty selection per (user, topic)."""

import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from engines.errors import UpstreamError
from models import BanditArm, QuestionResponse, UserContext
from repositories import BanditArmRepository, QuizRepository
from settings import BanditSettings

logger = logging.getLogger(__name__)


@dataclass
class DifficultySelection:
    difficulty: float
    confidence: float
    reasoning: str
    expected_reward: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_difficulty": self.difficulty,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "expected_reward": self.expected_reward,
        }


@dataclass
class PerformancePattern:
    optimal_difficulty: float = 0.5
    learning_velocity: float = 0.0
    engagement_trend: str = "unknown"
    recommendations: List[str] = field(
        default_factory=lambda: ["Complete more questions to analyze patterns"]
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "optimal_difficulty": self.optimal_difficulty,
            "learning_velocity": self.learning_velocity,
            "engagement_trend": self.engagement_trend,
            "recommendations": list(self.recommendations),
        }


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def linear_trend(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2.0
    mean_y = sum(values) / n
    numerator = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    denominator = sum((i - mean_x) ** 2 for i in range(n))
    return 0.0 if denominator == 0 else numerator / denominator


class ContextualBandit:
    def __init__(
        self,
        arms: Optional[BanditArmRepository] = None,
        responses: Optional[QuizRepository] = None,
        settings: Optional[BanditSettings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.arms = arms or BanditArmRepository()
        self.responses = responses or QuizRepository()
        self.settings = settings or BanditSettings()
        self.rng = rng or random.Random()

    # -- selection ---------------------------------------------------------

    def default_difficulty(self, context: UserContext) -> DifficultySelection:
        base = _clamp((context.grade_level - 2) * 0.15, 0.2, 0.8)
        adjustment = (context.current_mastery - 0.5) * 0.2
        return DifficultySelection(
            difficulty=_clamp(base + adjustment, 0.1, 0.9),
            confidence=0.5,
            reasoning="default_initialization",
            expected_reward=0.5,
        )

    def contextual_bonus(self, difficulty: float, context: UserContext) -> float:
        bonus = (1 - abs(difficulty - context.current_mastery)) * 0.1
        if context.engagement_level < 0.5 and difficulty < 0.6:
            bonus += 0.05
        if context.streak_count > 3 and difficulty > 0.6:
            bonus += 0.03
        if context.time_of_day == "morning" and difficulty > 0.7:
            bonus += 0.02
        return bonus

    def score_arms(self, arms: Sequence[BanditArm], context: UserContext) -> List[float]:
        total_plays = sum(arm.play_count for arm in arms)
        scores = []
        for arm in arms:
            if arm.play_count == 0:
                scores.append(math.inf)
                continue
            exploration = math.sqrt(
                self.settings.confidence_constant * math.log(total_plays) / arm.play_count
            )
            scores.append(arm.average_reward + exploration + self.contextual_bonus(arm.difficulty_level, context))
        return scores

    def _load_arms(self, user_id: str, topic_id: str) -> List[BanditArm]:
        try:
            return self.arms.list_arms(user_id, topic_id)
        except UpstreamError:
            logger.exception("Failed to load bandit arms for %s/%s", user_id, topic_id)
            return []

    def select_difficulty(self, user_id: str, topic_id: str, context: UserContext) -> DifficultySelection:
        arms = self._load_arms(user_id, topic_id)
        if not arms:
            try:
                self.arms.create_arms(user_id, topic_id, self.settings.difficulty_levels)
            except UpstreamError:
                logger.exception("Failed to initialise bandit arms for %s/%s", user_id, topic_id)
            return self.default_difficulty(context)

        scores = self.score_arms(arms, context)
        explore = self.rng.random() < self.settings.exploration_rate
        if explore:
            index = self.rng.randrange(len(arms))
        else:
            # max() returns the first index holding the maximum
            index = max(range(len(arms)), key=lambda i: scores[i])

        chosen = arms[index]
        score = scores[index]
        average = chosen.average_reward
        return DifficultySelection(
            difficulty=chosen.difficulty_level,
            confidence=average if average is not None else 0.5,
            reasoning="exploration" if explore else "exploitation",
            # unplayed arms carry an unbounded score; report the reward ceiling
            expected_reward=score if math.isfinite(score) else 1.0,
        )

    # -- learning ----------------------------------------------------------

    def nearest_level(self, difficulty: float) -> float:
        return min(self.settings.difficulty_levels, key=lambda level: abs(level - difficulty))

    def adjust_reward(self, reward: float, context: UserContext) -> float:
        adjusted = reward
        if context.session_length > self.settings.long_session_minutes:
            adjusted *= self.settings.long_session_penalty
        adjusted *= 0.5 + context.engagement_level * 0.5
        return _clamp(adjusted, 0.0, 1.0)

    def update_arm(
        self,
        user_id: str,
        topic_id: str,
        difficulty: float,
        reward: float,
        context: UserContext,
    ) -> float:
        """Record ``reward`` against the arm and refresh every arm's confidence bound.

        ``difficulty`` is snapped to the nearest arm level, and the full arm
        set is created first if this learner has none yet. Returns the
        context-adjusted reward actually stored.
        """
        adjusted = self.adjust_reward(reward, context)
        self.arms.create_arms(user_id, topic_id, self.settings.difficulty_levels)
        self.arms.apply_reward(user_id, topic_id, self.nearest_level(difficulty), adjusted)
        self.refresh_confidence_bounds(user_id, topic_id)
        return adjusted

    def refresh_confidence_bounds(self, user_id: str, topic_id: str) -> None:
        arms = self._load_arms(user_id, topic_id)
        total_plays = sum(arm.play_count for arm in arms)
        bounds = {}
        for arm in arms:
            if arm.play_count > 0:
                bounds[arm.difficulty_level] = math.sqrt(
                    self.settings.confidence_constant * math.log(total_plays) / arm.play_count
                )
            else:
                bounds[arm.difficulty_level] = 1.0
        if not bounds:
            return
        try:
            self.arms.set_confidence_bounds(user_id, topic_id, bounds)
        except UpstreamError:
            logger.exception("Failed to update confidence bounds for %s/%s", user_id, topic_id)

    def get_difficulty_range(
        self,
        user_id: str,
        topic_id: str,
        context: UserContext,
        selection: Optional[DifficultySelection] = None,
    ) -> Dict[str, float]:
        if selection is None:
            selection = self.select_difficulty(user_id, topic_id, context)
        target = selection.difficulty
        half_width = 0.15 + abs(context.current_mastery - 0.5) * 0.1
        return {
            "min": _clamp(target - half_width, 0.1, 0.9),
            "max": _clamp(target + half_width, 0.1, 0.9),
            "target": target,
        }

    # -- analysis ----------------------------------------------------------

    def analyze_performance_pattern(self, user_id: str, topic_id: str) -> PerformancePattern:
        try:
            responses = self.responses.recent_responses(
                user_id, limit=self.settings.analysis_window, topic_id=topic_id
            )
        except UpstreamError:
            logger.exception("Failed to load responses for %s/%s", user_id, topic_id)
            responses = []
        if not responses:
            return PerformancePattern()

        accuracy_trend = linear_trend([1.0 if r.is_correct else 0.0 for r in responses])
        optimal = self.optimal_difficulty(responses)
        velocity = self.learning_velocity(responses)
        engagement = self.engagement_trend(responses)
        return PerformancePattern(
            optimal_difficulty=optimal,
            learning_velocity=velocity,
            engagement_trend=engagement,
            recommendations=self.recommendations(accuracy_trend, velocity, engagement, optimal),
        )

    @staticmethod
    def optimal_difficulty(responses: Sequence[QuestionResponse]) -> float:
        buckets: Dict[float, List[int]] = {}
        for response in responses:
            bucket = round(response.difficulty_at_attempt * 10) / 10
            tally = buckets.setdefault(bucket, [0, 0])
            tally[0] += int(response.is_correct)
            tally[1] += 1

        optimal, best = 0.5, 0.0
        for bucket, (correct, total) in buckets.items():
            if total < 3:
                continue
            accuracy = correct / total
            score = (1 - abs(accuracy - 0.75)) * 0.7 + bucket * 0.3
            if score > best:
                best, optimal = score, bucket
        return optimal

    @staticmethod
    def learning_velocity(responses: Sequence[QuestionResponse]) -> float:
        """Accuracy of the newer half minus the older half; responses are newest first."""
        if len(responses) < 5:
            return 0.0
        mid = len(responses) // 2
        recent, older = responses[:mid], responses[mid:]
        recent_acc = sum(r.is_correct for r in recent) / len(recent)
        older_acc = sum(r.is_correct for r in older) / len(older)
        return recent_acc - older_acc

    @staticmethod
    def engagement_trend(responses: Sequence[QuestionResponse]) -> str:
        if len(responses) < 3:
            return "insufficient_data"
        average_time = sum(r.time_spent for r in responses) / len(responses)
        window = math.ceil(len(responses) / 3)
        recent_time = sum(r.time_spent for r in responses[:window]) / window
        hints = sum(r.hints_used for r in responses) / len(responses)
        if recent_time < average_time * 0.7 and hints < 0.5:
            return "declining"
        if recent_time > average_time * 1.2:
            return "increasing"
        return "stable"

    @staticmethod
    def recommendations(accuracy_trend: float, velocity: float, engagement: str, optimal: float) -> List[str]:
        tips = []
        if velocity > 0.1:
            tips.append("You're improving fast! Try slightly harder questions.")
        elif velocity < -0.1:
            tips.append("Take your time with easier questions to build confidence.")
        if engagement == "declining":
            tips.append("Take a short break or try a different topic to stay fresh.")
        if accuracy_trend > 0.05:
            tips.append("Great progress! You're getting more accurate over time.")
        if optimal > 0.7:
            tips.append("You're ready for challenging questions. Keep pushing yourself!")
        elif optimal < 0.4:
            tips.append("Focus on mastering the basics before moving to harder topics.")
        return tips or ["Keep practicing to see personalized recommendations!"]
