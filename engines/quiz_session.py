"""Quiz sessions: Created -> InProgress -> Completed.

An unfinished session simply keeps ``is_completed = 0``; there is no
abandoned state.
"""

import logging
import random
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import db
from engines.errors import InvalidRequestError, NotFoundError
from engines.gamification import GamificationEngine
from engines.grading import check_answer
from engines.mastery import MasteryTracker
from models import Question
from repositories import Repositories
from settings import DEFAULT_SETTINGS, Settings

logger = logging.getLogger(__name__)


class QuizSessionOrchestrator:
    def __init__(
        self,
        repos: Optional[Repositories] = None,
        settings: Optional[Settings] = None,
        gamification: Optional[GamificationEngine] = None,
        mastery: Optional[MasteryTracker] = None,
        rng: Optional[random.Random] = None,
        now: Callable[[], datetime] = db.utcnow,
    ):
        self.repos = repos or Repositories()
        self.settings = settings or DEFAULT_SETTINGS
        self.rng = rng or random.Random()
        self.now = now
        self.gamification = gamification or GamificationEngine(
            self.repos, self.settings.gamification, self.settings.mastery, rng=self.rng, now=now
        )
        self.mastery = mastery or MasteryTracker(self.repos.mastery, self.settings.mastery, now=now)

    def answer_xp(self, question: Question, time_spent: float, hints_used: int) -> int:
        quiz = self.settings.quiz
        xp = quiz.base_xp + round(question.difficulty_level * 20)
        if time_spent < question.estimated_time:
            xp += 5
        xp -= hints_used * 2
        return max(quiz.min_xp, xp)

    def start(
        self,
        user_id: str,
        topic_id: str,
        session_type: str = "practice",
        question_count: Optional[int] = None,
    ) -> Dict[str, Any]:
        quiz = self.settings.quiz
        count = quiz.default_question_count if question_count is None else int(question_count)
        if not 1 <= count <= quiz.max_question_count:
            raise InvalidRequestError(f"question_count must be between 1 and {quiz.max_question_count}")

        record = self.repos.mastery.get(user_id, topic_id)
        mastery = record.mastery_score if record and record.mastery_score else quiz.default_mastery
        target = min(0.9, max(0.1, mastery + 0.1))

        pool = self.repos.curriculum.get_questions_by_difficulty_range(
            topic_id, target - quiz.difficulty_window, target + quiz.difficulty_window
        )
        if not pool:
            raise NotFoundError("No questions available for this topic")
        questions = self.rng.sample(pool, min(count, len(pool)))

        session = self.repos.quiz.create_session(user_id, topic_id, session_type, len(questions), self.now())
        logger.info("Started %s session %s for %s on %s (%d questions)",
                    session_type, session.id, user_id, topic_id, len(questions))
        return {
            "session_id": session.id,
            "topic_id": topic_id,
            "questions": [q.public_dict() for q in questions],
            "current_question": 0,
            "total_questions": len(questions),
            "target_difficulty": target,
        }

    def submit_answer(
        self,
        user_id: str,
        session_id: str,
        question_id: str,
        user_answer: Any,
        time_spent: float,
        hints_used: int = 0,
        confidence_level: Optional[int] = None,
    ) -> Dict[str, Any]:
        session = self.repos.quiz.get_session(session_id, user_id)
        if session is None:
            raise NotFoundError("Quiz session not found")
        question = self.repos.curriculum.get_question(question_id)
        if question is None:
            raise NotFoundError("Question not found")

        correct = check_answer(question, user_answer)
        xp = self.answer_xp(question, time_spent, hints_used)

        response = self.repos.quiz.record_response(
            session_id=session_id,
            question_id=question_id,
            user_id=user_id,
            user_answer=user_answer,
            is_correct=correct,
            time_spent=time_spent,
            hints_used=hints_used,
            confidence_level=confidence_level,
            difficulty_at_attempt=question.difficulty_level,
            answered_at=self.now(),
        )
        self.repos.quiz.increment_session_counters(session_id, correct, time_spent)

        before = self.repos.mastery.get(user_id, session.topic_id)
        mastery = self.mastery.update_mastery(
            user_id, session.topic_id, correct, time_spent, question.difficulty_level
        )

        level_up = False
        if correct:
            result = self.gamification.update_xp(user_id, xp)
            level_up = bool(result and result.level_up)

        achievements: List[str] = []
        if mastery.is_completed and not (before and before.is_completed):
            update = self.gamification.process_xp_event(
                user_id, "topic_mastery", context={"topic_id": session.topic_id}
            )
            level_up = level_up or update.level_up
            achievements = update.achievements

        return {
            "is_correct": correct,
            "correct_answer": question.correct_answer,
            "explanation": question.explanation,
            "xp_earned": xp if correct else 0,
            "level_up": level_up,
            "response_id": response.id,
            "mastery_score": mastery.mastery_score,
            "achievements": achievements,
        }

    def complete(self, user_id: str, session_id: str) -> Dict[str, Any]:
        session = self.repos.quiz.get_session(session_id, user_id)
        if session is None:
            raise NotFoundError("Quiz session not found")
        if session.is_completed:
            raise InvalidRequestError("Quiz session already completed")

        responses = self.repos.quiz.list_session_responses(session_id)
        answered = len(responses)
        correct = sum(1 for r in responses if r.is_correct)
        total_time = sum(r.time_spent for r in responses)
        completion = answered / session.total_questions if session.total_questions else 0.0

        completed = self.repos.quiz.finalize_session(
            session_id,
            correct_answers=correct,
            total_time=total_time,
            completion_rate=completion,
            completed_at=self.now(),
        )
        if completed is None:
            # a concurrent request finalized it between the read and the update
            raise InvalidRequestError("Quiz session already completed")
        stats = self.repos.stats.apply_session_totals(
            user_id,
            answered=answered,
            correct=correct,
            time_spent=total_time,
            perfect=correct == answered,
        )
        update = self.gamification.process_xp_event(
            user_id, "quiz_complete", context={"topic_id": session.topic_id, "session_id": session_id}
        )

        accuracy = correct / answered if answered else 0.0
        average = total_time / answered if answered else 0.0
        return {
            "session": completed.to_dict(),
            "performance": {
                "accuracy": round(accuracy * 100),
                "total_questions": answered,
                "correct_answers": correct,
                "total_time": total_time,
                "average_time_per_question": round(average),
                "completion_rate": round(completion * 100),
            },
            "perfect_session_streak": stats.perfect_session_streak if stats else 0,
            "gamification": update.to_dict(),
            "responses": [
                {
                    "question_id": r.question_id,
                    "is_correct": r.is_correct,
                    "time_spent": r.time_spent,
                    "hints_used": r.hints_used,
                }
                for r in responses
            ],
        }

    def history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self.repos.quiz.list_history(user_id, limit)]
