"""Per-topic mastery estimates.

The update is an exponential moving step toward 1 (correct) or 0 (wrong)
with a fixed learning rate. ``guess_rate`` and ``slip_rate`` exist in the
settings for a knowledge-tracing update but are not applied here.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import db
from models import TopicMastery
from repositories import MasteryRepository
from settings import MasterySettings

logger = logging.getLogger(__name__)


def mastery_label(score: float, settings: Optional[MasterySettings] = None) -> str:
    settings = settings or MasterySettings()
    if score >= settings.advanced:
        return "advanced"
    if score >= settings.proficient:
        return "proficient"
    if score >= settings.developing:
        return "developing"
    return "novice"


class MasteryTracker:
    def __init__(
        self,
        repository: Optional[MasteryRepository] = None,
        settings: Optional[MasterySettings] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.repository = repository or MasteryRepository()
        self.settings = settings or MasterySettings()
        self.now = now

    def next_score(self, score: float, correct: bool) -> float:
        rate = self.settings.learning_rate
        if correct:
            return score + (1 - score) * rate
        return max(0.0, score - score * rate)

    def update_mastery(
        self,
        user_id: str,
        topic_id: str,
        correct: bool,
        time_spent: float,
        difficulty_level: float = 0.5,
    ) -> TopicMastery:
        stamp = db.to_iso(self.now())

        def compute(current: Optional[TopicMastery]) -> TopicMastery:
            if current is None:
                return TopicMastery(
                    user_id=user_id,
                    topic_id=topic_id,
                    mastery_score=self.settings.initial_correct if correct else self.settings.initial_incorrect,
                    attempts=1,
                    correct_answers=1 if correct else 0,
                    total_time_spent=float(time_spent),
                    last_attempted=stamp,
                    updated_at=stamp,
                )
            score = self.next_score(current.mastery_score, correct)
            return replace(
                current,
                mastery_score=score,
                attempts=current.attempts + 1,
                correct_answers=current.correct_answers + (1 if correct else 0),
                total_time_spent=current.total_time_spent + float(time_spent),
                mastery_level=mastery_label(score, self.settings),
                is_completed=score >= self.settings.advanced,
                last_attempted=stamp,
                updated_at=stamp,
            )

        updated = self.repository.update(user_id, topic_id, compute)
        logger.debug(
            "mastery %s/%s -> %.3f (%s)", user_id, topic_id, updated.mastery_score, updated.mastery_level
        )
        return updated

    def get_mastery(self, user_id: str, topic_id: str) -> Optional[TopicMastery]:
        return self.repository.get(user_id, topic_id)

    def list_mastery(self, user_id: str) -> List[TopicMastery]:
        return self.repository.list_for_user(user_id)

    def progress_overview(self, user_id: str) -> Dict[str, Any]:
        records = self.repository.list_for_user(user_id)
        if not records:
            return {
                "total_topics": 0,
                "completed_topics": 0,
                "average_mastery": 0,
                "grade_progress": {},
                "subject_progress": {},
            }

        threshold = self.settings.advanced
        grade_progress: Dict[str, Dict[str, int]] = {}
        subject_progress: Dict[str, Dict[str, int]] = {}
        for record in records:
            done = record.mastery_score >= threshold
            if record.grade_level:
                bucket = grade_progress.setdefault(str(record.grade_level), {"total": 0, "completed": 0})
                bucket["total"] += 1
                bucket["completed"] += int(done)
            if record.subject_id:
                bucket = subject_progress.setdefault(record.subject_id, {"total": 0, "completed": 0})
                bucket["total"] += 1
                bucket["completed"] += int(done)

        average = sum(r.mastery_score for r in records) / len(records)
        return {
            "total_topics": len(records),
            "completed_topics": sum(1 for r in records if r.mastery_score >= threshold),
            "average_mastery": round(average, 2),
            "grade_progress": grade_progress,
            "subject_progress": subject_progress,
        }
