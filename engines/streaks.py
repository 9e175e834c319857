import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import db
from repositories import UserStatsRepository
from settings import GamificationSettings

logger = logging.getLogger(__name__)


@dataclass
class StreakUpdate:
    current_streak: int
    milestone_reached: bool
    longest_streak: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {"current_streak": self.current_streak, "milestone_reached": self.milestone_reached}
        if self.longest_streak is not None:
            payload["longest_streak"] = self.longest_streak
        return payload


class StreakTracker:
    """Daily-activity streak, compared on calendar dates in UTC."""

    def __init__(
        self,
        repository: Optional[UserStatsRepository] = None,
        settings: Optional[GamificationSettings] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.repository = repository or UserStatsRepository()
        self.settings = settings or GamificationSettings()
        self.now = now

    def _is_milestone(self, streak: int) -> bool:
        every = self.settings.streak_milestone_every
        return streak > 0 and every > 0 and streak % every == 0

    def update_streak(self, user_id: str, event_type: str = "", context: Optional[Dict[str, Any]] = None) -> StreakUpdate:
        moment = self.now()
        today = moment.date()
        yesterday = today - timedelta(days=1)

        def compute(stats):
            last = db.parse_timestamp(stats.last_activity)
            last_day = last.date() if last else None
            if last_day == today:
                return None
            if last_day == yesterday:
                streak = stats.daily_activity_streak + 1
            else:
                streak = 1
            return streak, db.to_iso(moment)

        result = self.repository.update_daily_streak(user_id, compute)
        if result is None:
            return StreakUpdate(current_streak=0, milestone_reached=False)

        before, after = result
        if after is before:
            return StreakUpdate(
                current_streak=before.daily_activity_streak,
                milestone_reached=False,
                longest_streak=before.longest_daily_streak,
            )

        streak = after.daily_activity_streak
        milestone = self._is_milestone(streak)
        if milestone:
            logger.info("User %s reached a %d day streak (%s)", user_id, streak, event_type or "activity")
        return StreakUpdate(
            current_streak=streak,
            milestone_reached=milestone,
            longest_streak=after.longest_daily_streak,
        )

    def get_user_streaks(self, user_id: str) -> Dict[str, Any]:
        stats = self.repository.get(user_id)
        if stats is None:
            return {"current": 0, "longest": 0, "last_activity": None, "is_active_today": False,
                    "perfect_sessions": 0, "longest_perfect_sessions": 0}
        last = db.parse_timestamp(stats.last_activity)
        return {
            "current": stats.daily_activity_streak,
            "longest": stats.longest_daily_streak,
            "last_activity": stats.last_activity,
            "is_active_today": bool(last and last.date() == self.now().date()),
            "perfect_sessions": stats.perfect_session_streak,
            "longest_perfect_sessions": stats.longest_perfect_session_streak,
        }
