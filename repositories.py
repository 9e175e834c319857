"""Per-entity repositories over the SQLite store.

Each repository returns exactly one shape: a dataclass (or ``None``) for a
point lookup and a list for a collection. Counter updates are expressed as
deltas executed atomically in SQL so concurrent requests cannot overwrite
each other's increments.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import db
from engines.errors import UpstreamError
from models import (
    Badge,
    BanditArm,
    Question,
    QuestionResponse,
    QuizSession,
    Topic,
    TopicMastery,
    UserBadge,
    UserRecord,
    UserStats,
)

logger = logging.getLogger(__name__)


def _bucket(difficulty: float) -> float:
    # Arms are keyed on a REAL column; rounding keeps 0.6 and 0.6000000001 on one row.
    return round(float(difficulty), 2)


class BanditArmRepository:
    def list_arms(self, user_id: str, topic_id: str) -> List[BanditArm]:
        rows = db._query(
            """
            SELECT * FROM bandit_arms
            WHERE user_id = ? AND topic_id = ?
            ORDER BY difficulty_level
            """,
            (user_id, topic_id),
        )
        return [BanditArm.from_row(row) for row in rows]

    def create_arms(self, user_id: str, topic_id: str, levels: Sequence[float]) -> None:
        now = db.to_iso(db.utcnow())
        with db._transaction() as con:
            for level in levels:
                con.execute(
                    """
                    INSERT OR IGNORE INTO bandit_arms
                        (user_id, topic_id, difficulty_level, reward_sum, play_count, confidence_bound, last_updated)
                    VALUES (?, ?, ?, 0, 0, 1.0, ?)
                    """,
                    (user_id, topic_id, _bucket(level), now),
                )

    def apply_reward(self, user_id: str, topic_id: str, difficulty: float, reward: float) -> None:
        """Add ``reward`` and one play to the arm, creating it if absent."""
        db._exec(
            """
            INSERT INTO bandit_arms
                (user_id, topic_id, difficulty_level, reward_sum, play_count, confidence_bound, last_updated)
            VALUES (?, ?, ?, ?, 1, 1.0, ?)
            ON CONFLICT(user_id, topic_id, difficulty_level) DO UPDATE SET
                reward_sum = bandit_arms.reward_sum + excluded.reward_sum,
                play_count = bandit_arms.play_count + 1,
                last_updated = excluded.last_updated
            """,
            (user_id, topic_id, _bucket(difficulty), float(reward), db.to_iso(db.utcnow())),
        )

    def set_confidence_bounds(self, user_id: str, topic_id: str, bounds: Dict[float, float]) -> None:
        with db._transaction() as con:
            for difficulty, bound in bounds.items():
                con.execute(
                    """
                    UPDATE bandit_arms SET confidence_bound = ?
                    WHERE user_id = ? AND topic_id = ? AND difficulty_level = ?
                    """,
                    (float(bound), user_id, topic_id, _bucket(difficulty)),
                )


_MASTERY_SELECT = """
    SELECT m.*, t.name AS topic_name, t.grade_level AS grade_level, t.subject_id AS subject_id
    FROM topic_mastery m
    LEFT JOIN topics t ON t.id = m.topic_id
"""


class MasteryRepository:
    def get(self, user_id: str, topic_id: str) -> Optional[TopicMastery]:
        row = db._query_one(
            _MASTERY_SELECT + " WHERE m.user_id = ? AND m.topic_id = ?",
            (user_id, topic_id),
        )
        return TopicMastery.from_row(row) if row else None

    def list_for_user(self, user_id: str) -> List[TopicMastery]:
        rows = db._query(
            _MASTERY_SELECT + " WHERE m.user_id = ? ORDER BY m.updated_at DESC",
            (user_id,),
        )
        return [TopicMastery.from_row(row) for row in rows]

    def list_updated_since(self, user_id: str, since: datetime) -> List[TopicMastery]:
        rows = db._query(
            _MASTERY_SELECT + " WHERE m.user_id = ? AND m.updated_at >= ? ORDER BY m.updated_at",
            (user_id, db.to_iso(since)),
        )
        return [TopicMastery.from_row(row) for row in rows]

    def update(
        self,
        user_id: str,
        topic_id: str,
        compute: Callable[[Optional[TopicMastery]], TopicMastery],
    ) -> TopicMastery:
        """Read the current row, apply ``compute`` and write the result in one transaction."""
        with db._transaction() as con:
            row = con.execute(
                "SELECT * FROM topic_mastery WHERE user_id = ? AND topic_id = ?",
                (user_id, topic_id),
            ).fetchone()
            current = TopicMastery.from_row(row) if row else None
            updated = compute(current)
            con.execute(
                """
                INSERT INTO topic_mastery
                    (user_id, topic_id, mastery_score, attempts, correct_answers, total_time_spent,
                     mastery_level, is_completed, last_attempted, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id, topic_id) DO UPDATE SET
                    mastery_score = excluded.mastery_score,
                    attempts = excluded.attempts,
                    correct_answers = excluded.correct_answers,
                    total_time_spent = excluded.total_time_spent,
                    mastery_level = excluded.mastery_level,
                    is_completed = excluded.is_completed,
                    last_attempted = excluded.last_attempted,
                    updated_at = excluded.updated_at
                """,
                (
                    user_id,
                    topic_id,
                    updated.mastery_score,
                    updated.attempts,
                    updated.correct_answers,
                    updated.total_time_spent,
                    updated.mastery_level,
                    int(updated.is_completed),
                    updated.last_attempted,
                    updated.updated_at,
                ),
            )
        return updated

    def count_attempted_topics(self, user_id: str) -> int:
        row = db._query_one(
            "SELECT COUNT(*) AS n FROM topic_mastery WHERE user_id = ? AND attempts > 0",
            (user_id,),
        )
        return int(row["n"]) if row else 0

    def count_mastered_in_subject(self, user_id: str, subject_id: str, threshold: float) -> int:
        row = db._query_one(
            """
            SELECT COUNT(*) AS n FROM topic_mastery m
            JOIN topics t ON t.id = m.topic_id
            WHERE m.user_id = ? AND t.subject_id = ? AND t.is_active = 1 AND m.mastery_score >= ?
            """,
            (user_id, subject_id, threshold),
        )
        return int(row["n"]) if row else 0


class UserRepository:
    def create(
        self,
        user_id: str,
        *,
        full_name: Optional[str] = None,
        grade: Optional[int] = None,
        role: str = "student",
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> UserRecord:
        """Create the user with its stats and profile rows (registration)."""
        now = db.to_iso(db.utcnow())
        with db._transaction() as con:
            con.execute(
                """
                INSERT INTO users (id, email, full_name, grade, role, avatar_url, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = COALESCE(excluded.email, users.email),
                    full_name = COALESCE(excluded.full_name, users.full_name),
                    grade = COALESCE(excluded.grade, users.grade),
                    role = excluded.role,
                    avatar_url = COALESCE(excluded.avatar_url, users.avatar_url)
                """,
                (user_id, email, full_name, grade, role, avatar_url, now),
            )
            con.execute("INSERT OR IGNORE INTO user_stats (user_id) VALUES (?)", (user_id,))
            con.execute("INSERT OR IGNORE INTO user_profiles (user_id) VALUES (?)", (user_id,))
        user = self.get(user_id)
        if user is None:
            raise UpstreamError(f"user {user_id} missing after registration")
        return user

    def get(self, user_id: str) -> Optional[UserRecord]:
        row = db._query_one(
            """
            SELECT u.*, p.learning_style, p.preferred_difficulty, p.session_length_preference
            FROM users u
            LEFT JOIN user_profiles p ON p.user_id = u.id
            WHERE u.id = ?
            """,
            (user_id,),
        )
        return UserRecord.from_row(row) if row else None


class UserStatsRepository:
    def get(self, user_id: str) -> Optional[UserStats]:
        row = db._query_one("SELECT * FROM user_stats WHERE user_id = ?", (user_id,))
        return UserStats.from_row(row) if row else None

    def add_xp(self, user_id: str, amount: int, xp_per_level: int) -> Optional[Tuple[UserStats, UserStats]]:
        """Add ``amount`` XP and recompute the level. Returns (before, after)."""
        with db._transaction() as con:
            row = con.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            before = UserStats.from_row(row)
            con.execute(
                """
                UPDATE user_stats
                SET total_xp = total_xp + ?,
                    level = ((total_xp + ?) / ?) + 1
                WHERE user_id = ?
                """,
                (int(amount), int(amount), int(xp_per_level), user_id),
            )
            after = UserStats.from_row(
                con.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,)).fetchone()
            )
        return before, after

    def update_daily_streak(
        self,
        user_id: str,
        compute: Callable[[UserStats], Optional[Tuple[int, str]]],
    ) -> Optional[Tuple[UserStats, UserStats]]:
        """Apply ``compute`` to the stats row; it returns (new_streak, last_activity) or None for no change."""
        with db._transaction() as con:
            row = con.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,)).fetchone()
            if row is None:
                return None
            before = UserStats.from_row(row)
            change = compute(before)
            if change is None:
                return before, before
            new_streak, last_activity = change
            con.execute(
                """
                UPDATE user_stats
                SET daily_activity_streak = ?,
                    longest_daily_streak = MAX(longest_daily_streak, ?),
                    last_activity = ?
                WHERE user_id = ?
                """,
                (new_streak, new_streak, last_activity, user_id),
            )
            after = UserStats.from_row(
                con.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,)).fetchone()
            )
        return before, after

    def apply_session_totals(
        self,
        user_id: str,
        *,
        answered: int,
        correct: int,
        time_spent: float,
        perfect: bool,
    ) -> Optional[UserStats]:
        """Accumulate a finished session and advance or reset the perfect-session streak."""
        with db._transaction() as con:
            cur = con.execute(
                """
                UPDATE user_stats
                SET total_questions_answered = total_questions_answered + ?,
                    total_correct_answers = total_correct_answers + ?,
                    total_time_spent = total_time_spent + ?,
                    perfect_session_streak = CASE WHEN ? THEN perfect_session_streak + ? ELSE 0 END,
                    longest_perfect_session_streak = MAX(
                        longest_perfect_session_streak,
                        CASE WHEN ? THEN perfect_session_streak + ? ELSE 0 END
                    )
                WHERE user_id = ?
                """,
                (
                    int(answered),
                    int(correct),
                    float(time_spent),
                    int(perfect),
                    int(correct),
                    int(perfect),
                    int(correct),
                    user_id,
                ),
            )
            if cur.rowcount == 0:
                return None
            row = con.execute("SELECT * FROM user_stats WHERE user_id = ?", (user_id,)).fetchone()
        return UserStats.from_row(row)

    def touch_last_activity(self, user_id: str, when: datetime) -> None:
        db._exec(
            "UPDATE user_stats SET last_activity = ? WHERE user_id = ?",
            (db.to_iso(when), user_id),
        )

    def list_student_scores(self, grade: Optional[int] = None) -> List[Tuple[UserRecord, UserStats]]:
        sql = """
            SELECT u.*, s.*
            FROM users u
            JOIN user_stats s ON s.user_id = u.id
            WHERE u.role = 'student'
        """
        params: List[Any] = []
        if grade is not None:
            sql += " AND u.grade = ?"
            params.append(grade)
        rows = db._query(sql, params)
        return [(UserRecord.from_row(row), UserStats.from_row(row)) for row in rows]


class BadgeRepository:
    def list_active(self) -> List[Badge]:
        rows = db._query("SELECT * FROM badges WHERE is_active = 1 ORDER BY id")
        return [Badge.from_row(row) for row in rows]

    def get(self, badge_id: str) -> Optional[Badge]:
        row = db._query_one("SELECT * FROM badges WHERE id = ?", (badge_id,))
        return Badge.from_row(row) if row else None

    def upsert(self, badge: Badge) -> None:
        db._exec(
            """
            INSERT INTO badges (id, name, description, icon, category, rarity, criteria, xp_reward, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                icon = excluded.icon,
                category = excluded.category,
                rarity = excluded.rarity,
                criteria = excluded.criteria,
                xp_reward = excluded.xp_reward,
                is_active = excluded.is_active
            """,
            (
                badge.id,
                badge.name,
                badge.description,
                badge.icon,
                badge.category,
                badge.rarity,
                db.json_dumps(badge.criteria),
                int(badge.xp_reward),
                int(badge.is_active),
            ),
        )

    def earned_badge_ids(self, user_id: str) -> Set[str]:
        rows = db._query("SELECT badge_id FROM user_badges WHERE user_id = ?", (user_id,))
        return {row["badge_id"] for row in rows}

    def list_user_badges(self, user_id: str, since: Optional[datetime] = None) -> List[UserBadge]:
        sql = """
            SELECT ub.user_id AS ub_user_id, ub.earned_at AS earned_at, b.*
            FROM user_badges ub
            JOIN badges b ON b.id = ub.badge_id
            WHERE ub.user_id = ?
        """
        params: List[Any] = [user_id]
        if since is not None:
            sql += " AND ub.earned_at >= ?"
            params.append(db.to_iso(since))
        sql += " ORDER BY ub.earned_at DESC"
        rows = db._query(sql, params)
        return [
            UserBadge(user_id=row["ub_user_id"], badge=Badge.from_row(row), earned_at=row["earned_at"])
            for row in rows
        ]

    def award(self, user_id: str, badge: Badge, earned_at: datetime, xp_per_level: int) -> bool:
        """Insert the (user, badge) pair once and grant its XP reward.

        Returns False when the pair already existed, in which case no XP is
        granted. Insert and reward share one transaction.
        """
        with db._transaction() as con:
            cur = con.execute(
                "INSERT OR IGNORE INTO user_badges (user_id, badge_id, earned_at) VALUES (?, ?, ?)",
                (user_id, badge.id, db.to_iso(earned_at)),
            )
            if cur.rowcount != 1:
                return False
            con.execute(
                "UPDATE user_stats SET badges_earned = badges_earned + 1 WHERE user_id = ?",
                (user_id,),
            )
            if badge.xp_reward and badge.xp_reward > 0:
                con.execute(
                    """
                    UPDATE user_stats
                    SET total_xp = total_xp + ?,
                        level = ((total_xp + ?) / ?) + 1
                    WHERE user_id = ?
                    """,
                    (int(badge.xp_reward), int(badge.xp_reward), int(xp_per_level), user_id),
                )
        return True


_SESSION_SELECT = """
    SELECT s.*, t.name AS topic_name
    FROM quiz_sessions s
    LEFT JOIN topics t ON t.id = s.topic_id
"""


class QuizRepository:
    def create_session(
        self,
        user_id: str,
        topic_id: str,
        session_type: str,
        total_questions: int,
        started_at: datetime,
    ) -> QuizSession:
        session_id = str(uuid.uuid4())
        db._exec(
            """
            INSERT INTO quiz_sessions (id, user_id, topic_id, session_type, total_questions, started_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, user_id, topic_id, session_type, int(total_questions), db.to_iso(started_at)),
        )
        session = self.get_session(session_id)
        if session is None:
            raise UpstreamError(f"quiz session {session_id} missing after insert")
        return session

    def get_session(self, session_id: str, user_id: Optional[str] = None) -> Optional[QuizSession]:
        sql = _SESSION_SELECT + " WHERE s.id = ?"
        params: List[Any] = [session_id]
        if user_id is not None:
            sql += " AND s.user_id = ?"
            params.append(user_id)
        row = db._query_one(sql, params)
        return QuizSession.from_row(row) if row else None

    def record_response(
        self,
        *,
        session_id: str,
        question_id: str,
        user_id: str,
        user_answer: Any,
        is_correct: bool,
        time_spent: float,
        hints_used: int,
        confidence_level: Optional[int],
        difficulty_at_attempt: float,
        answered_at: datetime,
    ) -> QuestionResponse:
        cur = db._exec(
            """
            INSERT INTO question_responses
                (session_id, question_id, user_id, user_answer, is_correct, time_spent,
                 hints_used, confidence_level, difficulty_at_attempt, answered_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                question_id,
                user_id,
                db.json_dumps(user_answer),
                int(bool(is_correct)),
                float(time_spent),
                int(hints_used),
                confidence_level,
                float(difficulty_at_attempt),
                db.to_iso(answered_at),
            ),
        )
        row = db._query_one("SELECT * FROM question_responses WHERE id = ?", (cur.lastrowid,))
        if row is None:
            raise UpstreamError(f"response {cur.lastrowid} missing after insert")
        return QuestionResponse.from_row(row)

    def increment_session_counters(self, session_id: str, correct: bool, time_spent: float) -> None:
        db._exec(
            """
            UPDATE quiz_sessions
            SET correct_answers = correct_answers + ?,
                total_time = total_time + ?
            WHERE id = ?
            """,
            (int(bool(correct)), float(time_spent), session_id),
        )

    def list_session_responses(self, session_id: str) -> List[QuestionResponse]:
        rows = db._query(
            "SELECT * FROM question_responses WHERE session_id = ? ORDER BY answered_at, id",
            (session_id,),
        )
        return [QuestionResponse.from_row(row) for row in rows]

    def finalize_session(
        self,
        session_id: str,
        *,
        correct_answers: int,
        total_time: float,
        completion_rate: float,
        completed_at: datetime,
    ) -> Optional[QuizSession]:
        """Mark the session completed, once.

        Returns None when the session was already completed (or vanished), so
        only one caller ever applies the completion side effects.
        """
        cur = db._exec(
            """
            UPDATE quiz_sessions
            SET correct_answers = ?,
                total_time = ?,
                completion_rate = ?,
                completed_at = ?,
                is_completed = 1
            WHERE id = ? AND is_completed = 0
            """,
            (int(correct_answers), float(total_time), float(completion_rate), db.to_iso(completed_at), session_id),
        )
        if cur.rowcount != 1:
            return None
        return self.get_session(session_id)

    def list_history(self, user_id: str, limit: int = 10) -> List[QuizSession]:
        rows = db._query(
            _SESSION_SELECT
            + " WHERE s.user_id = ? AND s.is_completed = 1 ORDER BY s.completed_at DESC LIMIT ?",
            (user_id, int(limit)),
        )
        return [QuizSession.from_row(row) for row in rows]

    def recent_sessions(self, user_id: str, limit: int = 5) -> List[QuizSession]:
        rows = db._query(
            _SESSION_SELECT + " WHERE s.user_id = ? ORDER BY s.started_at DESC LIMIT ?",
            (user_id, int(limit)),
        )
        return [QuizSession.from_row(row) for row in rows]

    def sessions_since(self, user_id: str, since: datetime) -> List[QuizSession]:
        rows = db._query(
            _SESSION_SELECT + " WHERE s.user_id = ? AND s.started_at >= ? ORDER BY s.started_at DESC",
            (user_id, db.to_iso(since)),
        )
        return [QuizSession.from_row(row) for row in rows]

    def completed_sessions(self, user_id: str) -> List[QuizSession]:
        rows = db._query(
            _SESSION_SELECT + " WHERE s.user_id = ? AND s.is_completed = 1",
            (user_id,),
        )
        return [QuizSession.from_row(row) for row in rows]

    def recent_responses(
        self,
        user_id: str,
        limit: int = 10,
        topic_id: Optional[str] = None,
    ) -> List[QuestionResponse]:
        """Most recent responses first."""
        if topic_id is None:
            rows = db._query(
                "SELECT * FROM question_responses WHERE user_id = ? ORDER BY answered_at DESC, id DESC LIMIT ?",
                (user_id, int(limit)),
            )
        else:
            rows = db._query(
                """
                SELECT r.* FROM question_responses r
                JOIN quiz_sessions s ON s.id = r.session_id
                WHERE r.user_id = ? AND s.topic_id = ?
                ORDER BY r.answered_at DESC, r.id DESC
                LIMIT ?
                """,
                (user_id, topic_id, int(limit)),
            )
        return [QuestionResponse.from_row(row) for row in rows]

    def count_fast_correct(self, user_id: str, time_limit: float, limit: int) -> int:
        rows = db._query(
            """
            SELECT id FROM question_responses
            WHERE user_id = ? AND is_correct = 1 AND time_spent <= ?
            ORDER BY answered_at DESC
            LIMIT ?
            """,
            (user_id, float(time_limit), int(limit)),
        )
        return len(rows)

    def responses_since(self, user_id: str, since: datetime) -> List[QuestionResponse]:
        rows = db._query(
            "SELECT * FROM question_responses WHERE user_id = ? AND answered_at >= ? ORDER BY answered_at",
            (user_id, db.to_iso(since)),
        )
        return [QuestionResponse.from_row(row) for row in rows]

    def correct_counts_since(self, since: datetime, grade: Optional[int] = None) -> List[Tuple[UserRecord, int]]:
        """Correct answers per student since ``since``, highest first."""
        sql = """
            SELECT u.*, COUNT(r.id) AS correct_count
            FROM question_responses r
            JOIN users u ON u.id = r.user_id
            WHERE r.is_correct = 1 AND r.answered_at >= ?
        """
        params: List[Any] = [db.to_iso(since)]
        if grade is not None:
            sql += " AND u.grade = ?"
            params.append(grade)
        sql += " GROUP BY u.id ORDER BY correct_count DESC, MIN(r.answered_at)"
        rows = db._query(sql, params)
        return [(UserRecord.from_row(row), int(row["correct_count"])) for row in rows]


class CurriculumRepository:
    def upsert_subject(self, subject_id: str, name: str, color_hex: Optional[str] = None, icon: Optional[str] = None) -> None:
        db._exec(
            """
            INSERT INTO subjects (id, name, color_hex, icon) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, color_hex = excluded.color_hex, icon = excluded.icon
            """,
            (subject_id, name, color_hex, icon),
        )

    def upsert_topic(self, topic: Topic) -> None:
        db._exec(
            """
            INSERT INTO topics (id, subject_id, name, description, grade_level, learning_objectives, sort_order, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                subject_id = excluded.subject_id,
                name = excluded.name,
                description = excluded.description,
                grade_level = excluded.grade_level,
                learning_objectives = excluded.learning_objectives,
                sort_order = excluded.sort_order,
                is_active = excluded.is_active
            """,
            (
                topic.id,
                topic.subject_id,
                topic.name,
                topic.description,
                topic.grade_level,
                db.json_dumps(list(topic.learning_objectives)),
                int(topic.sort_order),
                int(topic.is_active),
            ),
        )

    def upsert_question(self, question: Question) -> None:
        db._exec(
            """
            INSERT INTO questions
                (id, topic_id, question_text, question_type, options, correct_answer, explanation,
                 difficulty_level, hints, estimated_time, is_active, ai_generated)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                topic_id = excluded.topic_id,
                question_text = excluded.question_text,
                question_type = excluded.question_type,
                options = excluded.options,
                correct_answer = excluded.correct_answer,
                explanation = excluded.explanation,
                difficulty_level = excluded.difficulty_level,
                hints = excluded.hints,
                estimated_time = excluded.estimated_time,
                is_active = excluded.is_active,
                ai_generated = excluded.ai_generated
            """,
            (
                question.id,
                question.topic_id,
                question.question_text,
                question.question_type,
                None if question.options is None else db.json_dumps(question.options),
                db.json_dumps(question.correct_answer),
                question.explanation,
                float(question.difficulty_level),
                db.json_dumps(list(question.hints)),
                float(question.estimated_time),
                int(question.is_active),
                int(question.ai_generated),
            ),
        )

    def get_topic(self, topic_id: str) -> Optional[Topic]:
        row = db._query_one(
            """
            SELECT t.*, s.name AS subject_name
            FROM topics t LEFT JOIN subjects s ON s.id = t.subject_id
            WHERE t.id = ?
            """,
            (topic_id,),
        )
        return Topic.from_row(row) if row else None

    def list_topics(self, grade: Optional[int] = None, subject_id: Optional[str] = None) -> List[Topic]:
        sql = """
            SELECT t.*, s.name AS subject_name
            FROM topics t LEFT JOIN subjects s ON s.id = t.subject_id
            WHERE t.is_active = 1
        """
        params: List[Any] = []
        if grade is not None:
            sql += " AND t.grade_level = ?"
            params.append(grade)
        if subject_id is not None:
            sql += " AND t.subject_id = ?"
            params.append(subject_id)
        sql += " ORDER BY t.sort_order, t.name"
        return [Topic.from_row(row) for row in db._query(sql, params)]

    def count_active_topics_in_subject(self, subject_id: str) -> int:
        row = db._query_one(
            "SELECT COUNT(*) AS n FROM topics WHERE subject_id = ? AND is_active = 1",
            (subject_id,),
        )
        return int(row["n"]) if row else 0

    def get_question(self, question_id: str) -> Optional[Question]:
        row = db._query_one("SELECT * FROM questions WHERE id = ?", (question_id,))
        return Question.from_row(row) if row else None

    def list_questions(self, topic_id: str) -> List[Question]:
        rows = db._query(
            "SELECT * FROM questions WHERE topic_id = ? AND is_active = 1 ORDER BY difficulty_level",
            (topic_id,),
        )
        return [Question.from_row(row) for row in rows]

    def get_questions_by_difficulty_range(self, topic_id: str, minimum: float, maximum: float) -> List[Question]:
        rows = db._query(
            """
            SELECT * FROM questions
            WHERE topic_id = ? AND is_active = 1 AND ai_generated = 0
              AND difficulty_level >= ? AND difficulty_level <= ?
            ORDER BY difficulty_level, id
            """,
            (topic_id, float(minimum), float(maximum)),
        )
        return [Question.from_row(row) for row in rows]


class ChallengeRepository:
    def insert(
        self,
        user_id: str,
        challenge_type: str,
        challenge_data: Dict[str, Any],
        created_at: datetime,
        expires_at: datetime,
    ) -> Dict[str, Any]:
        cur = db._exec(
            """
            INSERT INTO user_challenges (user_id, challenge_type, challenge_data, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user_id, challenge_type, db.json_dumps(challenge_data), db.to_iso(created_at), db.to_iso(expires_at)),
        )
        return {
            "id": cur.lastrowid,
            "user_id": user_id,
            "challenge_type": challenge_type,
            "challenge_data": challenge_data,
            "created_at": db.to_iso(created_at),
            "expires_at": db.to_iso(expires_at),
        }


class Repositories:
    """Bundle handed to the engines so tests can swap in fakes per entity."""

    def __init__(
        self,
        *,
        arms: Optional[BanditArmRepository] = None,
        mastery: Optional[MasteryRepository] = None,
        users: Optional[UserRepository] = None,
        stats: Optional[UserStatsRepository] = None,
        badges: Optional[BadgeRepository] = None,
        quiz: Optional[QuizRepository] = None,
        curriculum: Optional[CurriculumRepository] = None,
        challenges: Optional[ChallengeRepository] = None,
    ) -> None:
        self.arms = arms or BanditArmRepository()
        self.mastery = mastery or MasteryRepository()
        self.users = users or UserRepository()
        self.stats = stats or UserStatsRepository()
        self.badges = badges or BadgeRepository()
        self.quiz = quiz or QuizRepository()
        self.curriculum = curriculum or CurriculumRepository()
        self.challenges = challenges or ChallengeRepository()
