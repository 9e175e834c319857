"""XP, levels and the motivational layer on top of badges and streaks."""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import db
from engines.badges import BadgeEvaluator
from engines.errors import InvalidRequestError, NotFoundError, UpstreamError
from engines.leaderboard import Leaderboard
from engines.streaks import StreakTracker, StreakUpdate
from models import Badge, TopicMastery, UserStats
from repositories import Repositories
from settings import GamificationSettings, MasterySettings

logger = logging.getLogger(__name__)

XP_EVENT_TYPES = ("question_correct", "quiz_complete", "streak_milestone", "daily_login", "topic_mastery")
CHALLENGE_TYPES = ("daily", "weekly", "topic")

ENCOURAGEMENT = {
    "low": [
        "Every expert was once a beginner. You're doing great! 💪",
        "Learning takes time, and you're making progress every day! 🌱",
        "Remember, it's not about being perfect - it's about getting better! ⭐",
    ],
    "medium": [
        "You're really getting the hang of this! Keep it up! 🚀",
        "Your hard work is paying off - way to go! 🎉",
        "You're building great money habits that will last a lifetime! 💰",
    ],
    "high": [
        "Wow! You're absolutely crushing it! 🔥",
        "You're a financial literacy superstar! ⭐",
        "Your dedication is inspiring - keep leading by example! 👑",
    ],
}

DAILY_CHALLENGES = [
    {"title": "Question Master", "description": "Answer 5 questions correctly today", "target": 5,
     "progress": 0, "reward": {"xp": 25, "badge": None}},
    {"title": "Speed Demon", "description": "Answer 3 questions in under 20 seconds each", "target": 3,
     "progress": 0, "reward": {"xp": 30, "badge": None}},
    {"title": "Perfect Score", "description": "Complete a quiz with 100% accuracy", "target": 1,
     "progress": 0, "reward": {"xp": 40, "badge": None}},
]

WEEKLY_CHALLENGES = [
    {"title": "Topic Explorer", "description": "Try questions from 3 different topics", "target": 3,
     "progress": 0, "reward": {"xp": 100, "badge": "explorer"}},
    {"title": "Consistency Champion", "description": "Practice for 5 days this week", "target": 5,
     "progress": 0, "reward": {"xp": 150, "badge": "consistent"}},
    {"title": "Mastery Seeker", "description": "Achieve 80% mastery in any topic", "target": 1,
     "progress": 0, "reward": {"xp": 200, "badge": "master"}},
]


@dataclass
class XPResult:
    new_total_xp: int
    new_level: int
    level_up: bool


@dataclass
class GamificationUpdate:
    xp_gained: int
    level_up: bool
    new_badges: List[Badge] = field(default_factory=list)
    streak_update: Optional[StreakUpdate] = None
    achievements: List[str] = field(default_factory=list)
    next_level_progress: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xp_gained": self.xp_gained,
            "level_up": self.level_up,
            "new_badges": [badge.to_dict() for badge in self.new_badges],
            "streak_update": self.streak_update.to_dict() if self.streak_update else None,
            "achievements": list(self.achievements),
            "next_level_progress": self.next_level_progress,
        }


class GamificationEngine:
    def __init__(
        self,
        repos: Optional[Repositories] = None,
        settings: Optional[GamificationSettings] = None,
        mastery_settings: Optional[MasterySettings] = None,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.repos = repos or Repositories()
        self.settings = settings or GamificationSettings()
        self.mastery_settings = mastery_settings or MasterySettings()
        self.rng = rng or random.Random()
        self.now = now
        self.streaks = StreakTracker(self.repos.stats, self.settings, now=now)
        self.badges = BadgeEvaluator(
            self.repos.badges,
            self.repos.stats,
            self.repos.quiz,
            self.repos.mastery,
            self.repos.curriculum,
            self.settings,
            self.mastery_settings,
            now=now,
        )
        self.leaderboard = Leaderboard(self.repos.stats, self.repos.users, self.repos.quiz, self.settings, now=now)

    # -- XP ----------------------------------------------------------------

    def level_for(self, total_xp: int) -> int:
        return total_xp // self.settings.xp_per_level + 1

    def next_level_progress(self, total_xp: int) -> int:
        per_level = self.settings.xp_per_level
        return round((total_xp % per_level) / per_level * 100)

    def bonus_xp(self, event_type: str, context: Optional[Dict[str, Any]] = None) -> int:
        context = context or {}
        bonus = 0
        if event_type == "question_correct":
            difficulty = context.get("question_difficulty")
            if difficulty:
                bonus += round(float(difficulty) * 20)
            time_spent = context.get("time_spent")
            if time_spent and time_spent < 30:
                bonus += 5
            if not context.get("hints_used"):
                bonus += 3
        elif event_type == "quiz_complete":
            bonus += self.settings.quiz_complete_bonus
        elif event_type == "streak_milestone":
            streak = context.get("streak")
            if streak:
                bonus += min(self.settings.streak_bonus_cap, int(streak) * 2)
        elif event_type == "topic_mastery":
            bonus += self.settings.topic_mastery_bonus
        return bonus

    def update_xp(self, user_id: str, xp: int) -> Optional[XPResult]:
        """Add ``xp`` and recompute the level; None when the user has no stats row."""
        result = self.repos.stats.add_xp(user_id, xp, self.settings.xp_per_level)
        if result is None:
            return None
        before, after = result
        if after.level > before.level:
            logger.info("User %s levelled up to %d", user_id, after.level)
        return XPResult(new_total_xp=after.total_xp, new_level=after.level, level_up=after.level > before.level)

    def process_xp_event(
        self,
        user_id: str,
        event_type: str,
        points: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ) -> GamificationUpdate:
        if event_type not in XP_EVENT_TYPES:
            raise InvalidRequestError(f"unknown XP event type {event_type!r}")
        total = int(points) + self.bonus_xp(event_type, context)
        xp = self.update_xp(user_id, total)
        streak = self.streaks.update_streak(user_id, event_type, context)
        new_badges = self.badges.check_and_award_badges(
            user_id, {"event_type": event_type, "xp_gained": total, "context": context}
        )
        self.repos.stats.touch_last_activity(user_id, self.now())

        achievements = [f"Earned {badge.name} badge!" for badge in new_badges]
        if streak.milestone_reached:
            achievements.append(f"{streak.current_streak} day streak!")
        if event_type == "topic_mastery":
            achievements.append("Topic mastered!")

        return GamificationUpdate(
            xp_gained=total,
            level_up=bool(xp and xp.level_up),
            new_badges=new_badges,
            streak_update=streak,
            achievements=achievements,
            next_level_progress=self.next_level_progress(xp.new_total_xp if xp else 0),
        )

    # -- read models -------------------------------------------------------

    def _require_stats(self, user_id: str) -> UserStats:
        stats = self.repos.stats.get(user_id)
        if stats is None:
            raise NotFoundError(f"stats for user {user_id} not found")
        return stats

    def get_weekly_progress(self, user_id: str) -> Dict[str, Any]:
        try:
            responses = self.repos.quiz.responses_since(user_id, self.now() - timedelta(days=7))
        except UpstreamError:
            logger.exception("Failed to load weekly progress for %s", user_id)
            return {"daily_activity": [], "total_questions": 0, "accuracy": 0}

        days: Dict[str, List[int]] = {}
        for response in responses:
            day = (response.answered_at or "").split("T")[0]
            tally = days.setdefault(day, [0, 0])
            tally[0] += 1
            tally[1] += int(response.is_correct)

        total = len(responses)
        correct = sum(1 for r in responses if r.is_correct)
        return {
            "daily_activity": [
                {"date": day, "questions": n, "accuracy": (ok / n * 100) if n else 0}
                for day, (n, ok) in days.items()
            ],
            "total_questions": total,
            "accuracy": (correct / total * 100) if total else 0,
        }

    def get_user_game_stats(self, user_id: str) -> Dict[str, Any]:
        stats = self._require_stats(user_id)
        return {
            "stats": stats.to_dict(),
            "badges": [ub.to_dict() for ub in self.badges.get_user_badges(user_id)],
            "streaks": self.streaks.get_user_streaks(user_id),
            "leaderboard_positions": self.leaderboard.get_user_positions(user_id),
            "weekly_progress": self.get_weekly_progress(user_id),
            "achievements": [
                ub.to_dict() for ub in self.badges.get_user_badges(user_id, since=self.now() - timedelta(days=1))
            ],
        }

    # -- motivation --------------------------------------------------------

    def motivation_level(self, stats: UserStats, recent_sessions) -> float:
        level = 0.5
        level += min(0.3, len(recent_sessions) * 0.1)
        if stats.current_streak > 0:
            level += min(0.2, stats.current_streak * 0.02)
        if recent_sessions:
            accuracy = sum(
                (s.correct_answers / s.total_questions) if s.total_questions > 0 else 0 for s in recent_sessions
            ) / len(recent_sessions)
            level += accuracy * 0.2
        return min(1.0, max(0.0, level))

    @staticmethod
    def suggested_actions(stats: UserStats, motivation: float) -> List[str]:
        if motivation < 0.4:
            actions = [
                "Try an easier topic to build confidence",
                "Take a short break and come back refreshed",
                "Review your progress - you've come so far!",
            ]
        elif motivation < 0.7:
            actions = [
                "Challenge yourself with a harder question",
                "Try to beat your personal best",
                "Explore a new topic",
            ]
        else:
            actions = [
                "You're on fire! Keep the momentum going",
                "Share your progress with friends",
                "Try the weekly challenge",
            ]
        if stats.current_streak == 0:
            actions.append("Start a new learning streak today!")
        elif stats.current_streak < 3:
            actions.append(f"Keep your {stats.current_streak}-day streak alive!")
        return actions[:3]

    def encouragement(self, motivation: float) -> str:
        if motivation < 0.4:
            bucket = "low"
        elif motivation > 0.7:
            bucket = "high"
        else:
            bucket = "medium"
        return self.rng.choice(ENCOURAGEMENT[bucket])

    def next_milestone(self, user_id: str, stats: UserStats) -> Dict[str, Any]:
        per_level = self.settings.xp_per_level
        remaining = stats.level * per_level - stats.total_xp
        level_up = {
            "type": "level_up",
            "description": f"Level {stats.level + 1}",
            "progress": (stats.total_xp % per_level) / per_level * 100,
            "remaining": remaining,
        }
        if remaining <= 100:
            return level_up
        return self.badges.next_close_badge(user_id, stats) or level_up

    def get_user_motivation(self, user_id: str) -> Dict[str, Any]:
        stats = self._require_stats(user_id)
        try:
            recent = self.repos.quiz.sessions_since(user_id, self.now() - timedelta(days=3))
        except UpstreamError:
            logger.exception("Failed to load recent sessions for %s", user_id)
            recent = []
        motivation = self.motivation_level(stats, recent)
        return {
            "motivation_level": motivation,
            "suggested_actions": self.suggested_actions(stats, motivation),
            "encouragement_message": self.encouragement(motivation),
            "next_milestone": self.next_milestone(user_id, stats),
        }

    # -- challenges --------------------------------------------------------

    @staticmethod
    def daily_challenge(stats: UserStats) -> Dict[str, Any]:
        return dict(DAILY_CHALLENGES[min(2, stats.level // 3)])

    def weekly_challenge(self, progress: List[TopicMastery]) -> Dict[str, Any]:
        mastered = sum(1 for p in progress if p.mastery_score >= self.mastery_settings.advanced)
        index = 0 if mastered < 2 else (1 if mastered < 5 else 2)
        return dict(WEEKLY_CHALLENGES[index])

    @staticmethod
    def topic_challenge(progress: List[TopicMastery]) -> Dict[str, Any]:
        for record in progress:
            if record.mastery_score < 0.6 and record.attempts > 2:
                return {
                    "title": f"{record.topic_name} Focus",
                    "description": f"Improve your mastery in {record.topic_name} to 70%",
                    "target": 0.7,
                    "progress": record.mastery_score,
                    "reward": {"xp": 75, "badge": None},
                    "topic_id": record.topic_id,
                }
        return {
            "title": "New Topic Adventure",
            "description": "Try a new topic and answer 3 questions",
            "target": 3,
            "progress": 0,
            "reward": {"xp": 50, "badge": None},
        }

    def create_custom_challenge(self, user_id: str, challenge_type: str) -> Dict[str, Any]:
        if challenge_type not in CHALLENGE_TYPES:
            raise InvalidRequestError(f"unknown challenge type {challenge_type!r}")
        stats = self._require_stats(user_id)
        progress = self.repos.mastery.list_for_user(user_id)
        if challenge_type == "daily":
            challenge = self.daily_challenge(stats)
        elif challenge_type == "weekly":
            challenge = self.weekly_challenge(progress)
        else:
            challenge = self.topic_challenge(progress)
        created = self.now()
        hours = 24 if challenge_type == "daily" else 168
        return self.repos.challenges.insert(user_id, challenge_type, challenge, created, created + timedelta(hours=hours))
