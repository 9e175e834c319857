"""Badge criteria evaluation and idempotent awarding."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import db
from engines.errors import NotFoundError, UpstreamError
from models import Badge, UserBadge, UserStats
from repositories import (
    BadgeRepository,
    CurriculumRepository,
    MasteryRepository,
    QuizRepository,
    UserStatsRepository,
)
from settings import GamificationSettings, MasterySettings

logger = logging.getLogger(__name__)


class BadgeEvaluator:
    def __init__(
        self,
        badges: Optional[BadgeRepository] = None,
        stats: Optional[UserStatsRepository] = None,
        quiz: Optional[QuizRepository] = None,
        mastery: Optional[MasteryRepository] = None,
        curriculum: Optional[CurriculumRepository] = None,
        settings: Optional[GamificationSettings] = None,
        mastery_settings: Optional[MasterySettings] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.badges = badges or BadgeRepository()
        self.stats = stats or UserStatsRepository()
        self.quiz = quiz or QuizRepository()
        self.mastery = mastery or MasteryRepository()
        self.curriculum = curriculum or CurriculumRepository()
        self.settings = settings or GamificationSettings()
        self.mastery_settings = mastery_settings or MasterySettings()
        self.now = now

    # -- awarding ----------------------------------------------------------

    def check_and_award_badges(self, user_id: str, context: Optional[Dict[str, Any]] = None) -> List[Badge]:
        """Evaluate every active badge the user lacks and award the ones met.

        Returns only badges inserted by this call; a concurrent award of the
        same badge is silently skipped without granting its XP twice.
        """
        try:
            earned = self.badges.earned_badge_ids(user_id)
            candidates = [b for b in self.badges.list_active() if b.id not in earned]
        except UpstreamError:
            logger.exception("Failed to load badges for %s", user_id)
            return []

        awarded = []
        for badge in candidates:
            if not self.meets_criteria(user_id, badge):
                continue
            if self.badges.award(user_id, badge, self.now(), self.settings.xp_per_level):
                logger.info("Awarded badge %s to %s", badge.id, user_id)
                awarded.append(badge)
        return awarded

    def meets_criteria(self, user_id: str, badge: Badge) -> bool:
        criteria = badge.criteria
        kind = badge.criteria_type
        stats = self.stats.get(user_id) or UserStats(user_id=user_id)

        if kind == "quiz_completed":
            return len(self.quiz.completed_sessions(user_id)) >= int(criteria.get("count", 1))
        if kind == "correct_streak":
            target = int(criteria.get("count", 1))
            return stats.perfect_session_streak >= target or stats.longest_perfect_session_streak >= target
        if kind == "subject_mastery":
            subject_id = criteria.get("subject_id")
            if not subject_id:
                return False
            total = self.curriculum.count_active_topics_in_subject(subject_id)
            mastered = self.mastery.count_mastered_in_subject(user_id, subject_id, self.mastery_settings.advanced)
            return total > 0 and mastered >= total
        if kind == "speed_challenge":
            needed = int(criteria.get("questions") or 10)
            limit = float(criteria.get("time_limit") or 10)
            return self.quiz.count_fast_correct(user_id, limit, needed) >= needed
        if kind == "daily_login":
            return stats.daily_activity_streak >= int(criteria.get("days", 1))
        if kind == "perfect_scores":
            perfect = [
                s for s in self.quiz.completed_sessions(user_id)
                if s.total_questions > 0 and s.correct_answers == s.total_questions
            ]
            return len(perfect) >= int(criteria.get("count", 1))
        if kind == "total_xp":
            return stats.total_xp >= int(criteria.get("amount", 0))
        if kind == "topic_explorer":
            return self.mastery.count_attempted_topics(user_id) >= int(criteria.get("topics_count", 1))
        return False

    # -- progress ----------------------------------------------------------

    def calculate_badge_progress(self, badge: Badge, stats: UserStats, completed_sessions: int = 0) -> Dict[str, Any]:
        criteria = badge.criteria
        kind = badge.criteria_type
        if kind == "quiz_completed":
            current, target = completed_sessions, criteria.get("count", 1)
        elif kind == "correct_streak":
            current, target = stats.perfect_session_streak, criteria.get("count", 1)
        elif kind == "total_xp":
            current, target = stats.total_xp, criteria.get("amount", 1)
        elif kind == "daily_login":
            current, target = stats.daily_activity_streak, criteria.get("days", 1)
        else:
            return {"current": 0, "target": 1, "progress": 0}
        target = max(1, int(target))
        return {"current": current, "target": target, "progress": min(100.0, current / target * 100)}

    def is_close_to_earning(self, badge: Badge, stats: UserStats, completed_sessions: int = 0) -> bool:
        progress = self.calculate_badge_progress(badge, stats, completed_sessions)
        return progress["progress"] >= self.settings.close_to_badge_percent

    def get_badge_progress(self, user_id: str, badge_id: str) -> Dict[str, Any]:
        badge = self.badges.get(badge_id)
        if badge is None:
            raise NotFoundError(f"badge {badge_id} not found")
        stats = self.stats.get(user_id)
        if stats is None:
            raise NotFoundError(f"stats for user {user_id} not found")
        completed = len(self.quiz.completed_sessions(user_id))
        progress = self.calculate_badge_progress(badge, stats, completed)
        progress["badge_id"] = badge.id
        progress["earned"] = badge.id in self.badges.earned_badge_ids(user_id)
        return progress

    def get_user_badges(self, user_id: str, since: Optional[datetime] = None) -> List[UserBadge]:
        try:
            return self.badges.list_user_badges(user_id, since)
        except UpstreamError:
            logger.exception("Failed to load earned badges for %s", user_id)
            return []

    def next_close_badge(self, user_id: str, stats: UserStats) -> Optional[Dict[str, Any]]:
        """First unearned badge the user is close to, with its progress."""
        try:
            earned = self.badges.earned_badge_ids(user_id)
            active = self.badges.list_active()
            completed = len(self.quiz.completed_sessions(user_id))
        except UpstreamError:
            logger.exception("Failed to evaluate badge milestones for %s", user_id)
            return None
        for badge in active:
            if badge.id in earned:
                continue
            if self.is_close_to_earning(badge, stats, completed):
                return {
                    "type": "badge",
                    "description": badge.name,
                    "icon": badge.icon,
                    "progress": self.calculate_badge_progress(badge, stats, completed),
                }
        return None
