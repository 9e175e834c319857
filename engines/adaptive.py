"""Adaptive quiz assembly and learner-model updates.

Glues the difficulty selector, the mastery tracker and the content
generator together. Everything here reads through the repositories so a
user's context is rebuilt from stored activity on every call.
"""

import logging
import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import db
from content_generator import ContentGenerator
from engines.bandit import ContextualBandit
from engines.errors import NotFoundError, UpstreamError
from engines.mastery import MasteryTracker, mastery_label
from engines.reward import Outcome, compute_reward
from models import Question, TopicMastery, UserContext
from repositories import Repositories
from settings import DEFAULT_SETTINGS, Settings

logger = logging.getLogger(__name__)

BASE_QUESTION_COUNT = 3
GENERATED_QUESTION_COUNT = 2


def time_of_day(moment: datetime) -> str:
    if moment.hour < 12:
        return "morning"
    if moment.hour < 17:
        return "afternoon"
    return "evening"


class AdaptiveService:
    def __init__(
        self,
        repos: Optional[Repositories] = None,
        settings: Optional[Settings] = None,
        bandit: Optional[ContextualBandit] = None,
        mastery: Optional[MasteryTracker] = None,
        generator: Optional[ContentGenerator] = None,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.repos = repos or Repositories()
        self.settings = settings or DEFAULT_SETTINGS
        self.bandit = bandit or ContextualBandit(self.repos.arms, self.repos.quiz, self.settings.bandit)
        self.mastery = mastery or MasteryTracker(self.repos.mastery, self.settings.mastery, now=now)
        self.generator = generator or ContentGenerator()
        self.rng = rng or random.Random()
        self.now = now

    # -- context -----------------------------------------------------------

    def recent_accuracy(self, user_id: str) -> float:
        try:
            responses = self.repos.quiz.recent_responses(user_id, limit=10)
        except UpstreamError:
            logger.exception("Failed to load recent responses for %s", user_id)
            return 0.5
        if not responses:
            return 0.5
        return sum(1 for r in responses if r.is_correct) / len(responses)

    def engagement_level(self, user_id: str) -> float:
        try:
            sessions = self.repos.quiz.recent_sessions(user_id, limit=5)
        except UpstreamError:
            logger.exception("Failed to load recent sessions for %s", user_id)
            return 0.5
        if not sessions:
            return 0.5
        completion = sum(s.completion_rate for s in sessions) / len(sessions)
        seconds = sum(s.total_time for s in sessions) / len(sessions)
        # ten minutes of answering counts as full engagement
        return (min(1.0, completion) + min(1.0, seconds / 600)) / 2

    def build_user_context(
        self,
        user_id: str,
        topic_id: Optional[str] = None,
        session_context: Optional[Dict[str, Any]] = None,
    ) -> UserContext:
        user = self.repos.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        session_context = session_context or {}
        stats = self.repos.stats.get(user_id)

        current = 0.5
        if topic_id:
            record = self.repos.mastery.get(user_id, topic_id)
            if record is not None:
                current = record.mastery_score

        return UserContext(
            user_id=user_id,
            grade_level=user.grade or 5,
            current_mastery=current,
            recent_accuracy=self.recent_accuracy(user_id),
            engagement_level=self.engagement_level(user_id),
            time_of_day=session_context.get("time_of_day") or time_of_day(self.now()),
            session_length=session_context.get("session_length") or 15,
            streak_count=stats.current_streak if stats else 0,
        )

    # -- quiz assembly -----------------------------------------------------

    def generate_questions(self, topic, context: UserContext, target: float, count: int) -> List[Question]:
        generated = []
        for i in range(count):
            try:
                question = self.generator.generate_question(
                    topic.id,
                    topic.name,
                    context.grade_level,
                    round(min(1.0, max(0.1, target + i * 0.1 - 0.05)), 2),
                    "multiple_choice",
                    topic.learning_objectives,
                    mastery_label(context.current_mastery, self.settings.mastery),
                )
            except UpstreamError as exc:
                logger.warning("Skipping generated question %d for %s: %s", i, topic.id, exc)
                continue
            # stored so the answer can be graded through /quiz/submit
            self.repos.curriculum.upsert_question(question)
            generated.append(question)
        return generated

    def generate_adaptive_quiz(
        self,
        user_id: str,
        topic_id: str,
        session_context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        topic = self.repos.curriculum.get_topic(topic_id)
        if topic is None:
            raise NotFoundError("Topic not found")
        context = self.build_user_context(user_id, topic_id, session_context)
        selection = self.bandit.select_difficulty(user_id, topic_id, context)
        window = self.bandit.get_difficulty_range(user_id, topic_id, context, selection)

        pool = self.repos.curriculum.get_questions_by_difficulty_range(topic_id, window["min"], window["max"])
        base = self.rng.sample(pool, min(BASE_QUESTION_COUNT, len(pool)))
        generated = self.generate_questions(topic, context, selection.difficulty, GENERATED_QUESTION_COUNT)
        questions = sorted(base + generated, key=lambda q: q.difficulty_level)

        return {
            "questions": [q.public_dict() for q in questions],
            "difficulty_progression": [q.difficulty_level for q in questions],
            "personalized_hints": context.current_mastery < 0.6,
            "adaptive_strategy": selection.reasoning,
            "expected_performance": selection.confidence,
            "selection": selection.to_dict(),
            "difficulty_range": window,
        }

    # -- model update ------------------------------------------------------

    def update_learning_model(
        self,
        user_id: str,
        topic_id: str,
        question_id: Optional[str],
        outcome: Outcome,
    ) -> Dict[str, Any]:
        reward = compute_reward(outcome)
        context = self.build_user_context(user_id, topic_id)
        stored = self.bandit.update_arm(user_id, topic_id, outcome.difficulty_level, reward, context)
        record = self.mastery.update_mastery(
            user_id, topic_id, outcome.is_correct, outcome.time_spent, outcome.difficulty_level
        )
        context.current_mastery = record.mastery_score
        following = self.bandit.select_difficulty(user_id, topic_id, context)
        insights = self.bandit.analyze_performance_pattern(user_id, topic_id)
        logger.debug("Model update %s/%s q=%s reward=%.3f stored=%.3f", user_id, topic_id, question_id, reward, stored)
        return {
            "reward": reward,
            "mastery_update": record.to_dict(),
            "next_difficulty_recommendation": following.difficulty,
            "performance_insights": insights.to_dict(),
        }

    # -- learning path -----------------------------------------------------

    def recommended_topics(self, grade: int, progress: List[TopicMastery]) -> List[Dict[str, Any]]:
        mastered = {p.topic_id for p in progress if p.mastery_score >= self.settings.mastery.advanced}
        topics = self.repos.curriculum.list_topics(grade=grade)
        return [t.to_dict() for t in topics if t.id not in mastered][:3]

    def improvement_rate(self, user_id: str) -> float:
        """Mastery change across the last week, in points per update."""
        try:
            records = self.repos.mastery.list_updated_since(user_id, self.now() - timedelta(days=7))
        except UpstreamError:
            logger.exception("Failed to load mastery history for %s", user_id)
            return 0.0
        if len(records) < 2:
            return 0.0
        return (records[-1].mastery_score - records[0].mastery_score) / len(records) * 100

    def adaptive_insights(self, user_id: str, progress: List[TopicMastery]) -> Dict[str, Any]:
        advanced = self.settings.mastery.advanced
        total = len(progress)
        mastered = [p for p in progress if p.mastery_score >= advanced]
        return {
            "mastered_topics": len(mastered),
            "struggling_topics": sum(1 for p in progress if p.mastery_score < self.settings.mastery.developing),
            "mastery_percentage": (len(mastered) / total * 100) if total else 0,
            "improvement_rate": self.improvement_rate(user_id),
            "strong_areas": [p.topic_name for p in mastered if p.topic_name][:3],
            "focus_areas": [p.topic_name for p in progress if p.mastery_score < 0.6 and p.topic_name][:3],
        }

    def get_personalized_learning_path(self, user_id: str) -> Dict[str, Any]:
        user = self.repos.users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        grade = user.grade or 5
        progress = self.repos.mastery.list_for_user(user_id)
        weak = [p.topic_name for p in progress if p.mastery_score < 0.6 and p.topic_name]
        path = self.generator.generate_learning_path([p.to_dict() for p in progress], weak, grade)
        return {
            "recommended_topics": self.recommended_topics(grade, progress),
            "learning_goals": path.get("focus_areas", []),
            "adaptive_insights": self.adaptive_insights(user_id, progress),
            "next_best_actions": path.get("suggested_activities", []),
        }

    # -- feedback and hints ------------------------------------------------

    def generate_personalized_feedback(
        self,
        user_id: str,
        question_id: str,
        is_correct: bool,
        time_spent: float,
    ) -> str:
        question = self.repos.curriculum.get_question(question_id)
        if question is None:
            return "Great job!" if is_correct else "Keep trying!"
        topic = self.repos.curriculum.get_topic(question.topic_id)
        stats = self.repos.stats.get(user_id)
        return self.generator.generate_feedback(
            is_correct,
            topic.name if topic else "this topic",
            self.recent_accuracy(user_id),
            stats.current_streak if stats else 0,
            time_spent,
        )

    def generate_hint(self, user_id: str, question_id: str) -> str:
        question = self.repos.curriculum.get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")
        record = self.repos.mastery.get(user_id, question.topic_id)
        label = mastery_label(record.mastery_score if record else 0.0, self.settings.mastery)
        answer = question.correct_answer.get("answer", question.correct_answer.get("order", ""))
        return self.generator.generate_hint(question.question_text, str(answer), label)
