import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import db
from engines.errors import InvalidRequestError, UpstreamError
from models import UserRecord, UserStats
from repositories import QuizRepository, UserRepository, UserStatsRepository
from settings import GamificationSettings

logger = logging.getLogger(__name__)

LEADERBOARD_TYPES = ("xp", "streak", "weekly")
TIMEFRAMES = ("daily", "weekly", "monthly")


def _user_card(user: UserRecord) -> Dict[str, Any]:
    return {"id": user.id, "name": user.full_name, "grade": user.grade, "avatar_url": user.avatar_url}


def _stats_card(stats: UserStats) -> Dict[str, Any]:
    return {
        "total_xp": stats.total_xp,
        "level": stats.level,
        "current_streak": stats.current_streak,
        "longest_streak": stats.longest_streak,
        "badges_earned": stats.badges_earned,
    }


def _score(stats: UserStats, kind: str) -> int:
    return stats.current_streak if kind == "streak" else stats.total_xp


class Leaderboard:
    """Rankings computed on demand from current stats; nothing is cached."""

    def __init__(
        self,
        stats: Optional[UserStatsRepository] = None,
        users: Optional[UserRepository] = None,
        quiz: Optional[QuizRepository] = None,
        settings: Optional[GamificationSettings] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.stats = stats or UserStatsRepository()
        self.users = users or UserRepository()
        self.quiz = quiz or QuizRepository()
        self.settings = settings or GamificationSettings()
        self.now = now

    def get_global_leaderboard(self, kind: str = "xp", grade: Optional[int] = None, limit: int = 10) -> List[Dict[str, Any]]:
        if kind not in LEADERBOARD_TYPES:
            raise InvalidRequestError(f"unknown leaderboard type {kind!r}")
        if kind == "weekly":
            return self.get_weekly_leaderboard(grade, limit)
        try:
            rows = self.stats.list_student_scores(grade)
        except UpstreamError:
            logger.exception("Failed to load leaderboard %s", kind)
            return []
        # sorted() is stable, so equal scores keep store order
        rows = sorted(rows, key=lambda pair: _score(pair[1], kind), reverse=True)[: max(0, int(limit))]
        return [
            {"rank": index + 1, "user": _user_card(user), "stats": _stats_card(stats), "score": _score(stats, kind)}
            for index, (user, stats) in enumerate(rows)
        ]

    def get_weekly_leaderboard(self, grade: Optional[int] = None, limit: int = 10) -> List[Dict[str, Any]]:
        since = self.now() - timedelta(days=7)
        try:
            counts = self.quiz.correct_counts_since(since, grade)
        except UpstreamError:
            logger.exception("Failed to load weekly leaderboard")
            return []
        entries = []
        for index, (user, correct) in enumerate(counts[: max(0, int(limit))]):
            stats = self.stats.get(user.id)
            entries.append(
                {
                    "rank": index + 1,
                    "user": _user_card(user),
                    "stats": {"level": stats.level, "badges_earned": stats.badges_earned} if stats else None,
                    "score": correct * self.settings.weekly_xp_per_correct,
                }
            )
        return entries

    def get_user_rank(self, user_id: str, scope: str = "global", kind: str = "xp") -> Optional[Dict[str, Any]]:
        """Rank is one more than the number of students scoring strictly higher."""
        try:
            user = self.users.get(user_id)
            stats = self.stats.get(user_id)
            if user is None or stats is None:
                return None
            grade = user.grade if scope == "grade" else None
            population = self.stats.list_student_scores(grade)
        except UpstreamError:
            logger.exception("Failed to rank %s (%s/%s)", user_id, scope, kind)
            return None
        score = _score(stats, kind)
        higher = sum(1 for _, other in population if _score(other, kind) > score)
        return {"rank": higher + 1, "total_users": len(population), "score": score}

    def get_user_positions(self, user_id: str) -> List[Dict[str, Any]]:
        positions = []
        for label, scope, kind in (("global_xp", "global", "xp"), ("grade_xp", "grade", "xp"), ("streak", "global", "streak")):
            rank = self.get_user_rank(user_id, scope, kind)
            if rank is not None:
                positions.append({"type": label, **rank})
        return positions

    def timeframe_start(self, timeframe: str) -> datetime:
        now = self.now()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        if timeframe == "daily":
            return midnight
        if timeframe == "weekly":
            # weeks start on Sunday
            return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
        if timeframe == "monthly":
            return midnight.replace(day=1)
        raise InvalidRequestError(f"unknown timeframe {timeframe!r}")

    def get_top_performers(self, timeframe: str = "weekly", limit: int = 5) -> List[Dict[str, Any]]:
        since = self.timeframe_start(timeframe)
        try:
            counts = self.quiz.correct_counts_since(since)
        except UpstreamError:
            logger.exception("Failed to load top performers (%s)", timeframe)
            return []
        return [
            {"rank": index + 1, "user": _user_card(user), "score": correct, "metric": "correct_answers"}
            for index, (user, correct) in enumerate(counts[: max(0, int(limit))])
        ]
