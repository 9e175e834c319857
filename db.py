import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Generator, Iterable, List, Optional

from db_pool import SQLiteConnectionPool
from engines.errors import UpstreamError

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "finquest.db")

_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)


def configure(path: str, max_connections: int = 10) -> None:
    """Point the module at another database file (used by tests and the app lifespan)."""
    global DB_PATH, _pool
    if _pool is not None:
        _pool.close_all()
    DB_PATH = path
    _pool = SQLiteConnectionPool(path, max_connections=max_connections)


def _exec(sql: str, params: Iterable = ()) -> sqlite3.Cursor:
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, tuple(params))
            con.commit()
            return cur
    except sqlite3.Error as exc:
        raise UpstreamError(f"store write failed: {exc}") from exc


def _query(sql: str, params: Iterable = ()) -> List[sqlite3.Row]:
    try:
        with _pool.get_connection() as con:
            return con.execute(sql, tuple(params)).fetchall()
    except sqlite3.Error as exc:
        raise UpstreamError(f"store read failed: {exc}") from exc


def _query_one(sql: str, params: Iterable = ()) -> Optional[sqlite3.Row]:
    rows = _query(sql, params)
    return rows[0] if rows else None


@contextmanager
def _transaction() -> Generator[sqlite3.Connection, None, None]:
    """Run a read-modify-write sequence under a write lock.

    ``BEGIN IMMEDIATE`` takes SQLite's reserved lock up front, so two
    requests updating the same counters serialise instead of both reading
    the old value.
    """
    try:
        with _pool.get_connection() as con:
            con.execute("BEGIN IMMEDIATE")
            try:
                yield con
            except Exception:
                con.rollback()
                raise
            con.commit()
    except sqlite3.Error as exc:
        raise UpstreamError(f"store transaction failed: {exc}") from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id          TEXT PRIMARY KEY,
    email       TEXT,
    full_name   TEXT,
    grade       INTEGER,
    role        TEXT NOT NULL DEFAULT 'student',
    avatar_url  TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_profiles (
    user_id                    TEXT PRIMARY KEY,
    learning_style             TEXT DEFAULT 'visual',
    preferred_difficulty       TEXT DEFAULT 'medium',
    session_length_preference  INTEGER DEFAULT 15,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_stats (
    user_id                         TEXT PRIMARY KEY,
    total_xp                        INTEGER NOT NULL DEFAULT 0,
    level                           INTEGER NOT NULL DEFAULT 1,
    daily_activity_streak           INTEGER NOT NULL DEFAULT 0,
    longest_daily_streak            INTEGER NOT NULL DEFAULT 0,
    perfect_session_streak          INTEGER NOT NULL DEFAULT 0,
    longest_perfect_session_streak  INTEGER NOT NULL DEFAULT 0,
    total_questions_answered        INTEGER NOT NULL DEFAULT 0,
    total_correct_answers           INTEGER NOT NULL DEFAULT 0,
    total_time_spent                REAL NOT NULL DEFAULT 0,
    badges_earned                   INTEGER NOT NULL DEFAULT 0,
    last_activity                   TEXT,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS subjects (
    id         TEXT PRIMARY KEY,
    name       TEXT NOT NULL,
    color_hex  TEXT,
    icon       TEXT
);

CREATE TABLE IF NOT EXISTS topics (
    id                   TEXT PRIMARY KEY,
    subject_id           TEXT,
    name                 TEXT NOT NULL,
    description          TEXT DEFAULT '',
    grade_level          INTEGER,
    learning_objectives  TEXT DEFAULT '[]',
    sort_order           INTEGER DEFAULT 0,
    is_active            INTEGER NOT NULL DEFAULT 1
);
CREATE INDEX IF NOT EXISTS idx_topics_grade ON topics(grade_level, sort_order);

CREATE TABLE IF NOT EXISTS questions (
    id                TEXT PRIMARY KEY,
    topic_id          TEXT NOT NULL,
    question_text     TEXT NOT NULL,
    question_type     TEXT NOT NULL,
    options           TEXT,
    correct_answer    TEXT NOT NULL,
    explanation       TEXT DEFAULT '',
    difficulty_level  REAL NOT NULL,
    hints             TEXT DEFAULT '[]',
    estimated_time    REAL DEFAULT 30,
    is_active         INTEGER NOT NULL DEFAULT 1,
    ai_generated      INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_questions_topic ON questions(topic_id, difficulty_level);

CREATE TABLE IF NOT EXISTS bandit_arms (
    user_id           TEXT NOT NULL,
    topic_id          TEXT NOT NULL,
    difficulty_level  REAL NOT NULL,
    reward_sum        REAL NOT NULL DEFAULT 0,
    play_count        INTEGER NOT NULL DEFAULT 0,
    confidence_bound  REAL NOT NULL DEFAULT 1.0,
    last_updated      TEXT,
    PRIMARY KEY (user_id, topic_id, difficulty_level)
);

CREATE TABLE IF NOT EXISTS topic_mastery (
    user_id           TEXT NOT NULL,
    topic_id          TEXT NOT NULL,
    mastery_score     REAL NOT NULL,
    attempts          INTEGER NOT NULL DEFAULT 0,
    correct_answers   INTEGER NOT NULL DEFAULT 0,
    total_time_spent  REAL NOT NULL DEFAULT 0,
    mastery_level     TEXT NOT NULL DEFAULT 'novice',
    is_completed      INTEGER NOT NULL DEFAULT 0,
    last_attempted    TEXT,
    updated_at        TEXT,
    PRIMARY KEY (user_id, topic_id)
);

CREATE TABLE IF NOT EXISTS badges (
    id           TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    description  TEXT DEFAULT '',
    icon         TEXT,
    category     TEXT,
    rarity       TEXT DEFAULT 'common',
    criteria     TEXT NOT NULL,
    xp_reward    INTEGER NOT NULL DEFAULT 0,
    is_active    INTEGER NOT NULL DEFAULT 1
);

CREATE TABLE IF NOT EXISTS user_badges (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL,
    badge_id   TEXT NOT NULL,
    earned_at  TEXT NOT NULL,
    UNIQUE (user_id, badge_id)
);

CREATE TABLE IF NOT EXISTS quiz_sessions (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    topic_id         TEXT NOT NULL,
    session_type     TEXT NOT NULL DEFAULT 'practice',
    total_questions  INTEGER NOT NULL DEFAULT 0,
    correct_answers  INTEGER NOT NULL DEFAULT 0,
    total_time       REAL NOT NULL DEFAULT 0,
    completion_rate  REAL NOT NULL DEFAULT 0,
    started_at       TEXT NOT NULL,
    completed_at     TEXT,
    is_completed     INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON quiz_sessions(user_id, started_at);

CREATE TABLE IF NOT EXISTS question_responses (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id             TEXT NOT NULL,
    question_id            TEXT NOT NULL,
    user_id                TEXT NOT NULL,
    user_answer            TEXT,
    is_correct             INTEGER NOT NULL,
    time_spent             REAL NOT NULL DEFAULT 0,
    hints_used             INTEGER NOT NULL DEFAULT 0,
    confidence_level       INTEGER,
    difficulty_at_attempt  REAL NOT NULL DEFAULT 0.5,
    answered_at            TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES quiz_sessions(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_responses_user ON question_responses(user_id, answered_at);
CREATE INDEX IF NOT EXISTS idx_responses_session ON question_responses(session_id);

CREATE TABLE IF NOT EXISTS user_challenges (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    challenge_type  TEXT NOT NULL,
    challenge_data  TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    expires_at      TEXT NOT NULL
);
"""


BADGE_CATALOGUE: List[Dict[str, Any]] = [
    {
        "id": "first_quiz",
        "name": "First Steps",
        "description": "Complete your first quiz",
        "icon": "🎯",
        "category": "progress",
        "rarity": "common",
        "criteria": {"type": "quiz_completed", "count": 1},
        "xp_reward": 50,
    },
    {
        "id": "quiz_champion",
        "name": "Quiz Champion",
        "description": "Complete 10 quizzes",
        "icon": "🏆",
        "category": "progress",
        "rarity": "rare",
        "criteria": {"type": "quiz_completed", "count": 10},
        "xp_reward": 150,
    },
    {
        "id": "hot_streak",
        "name": "Hot Streak",
        "description": "Answer 3 questions in a row without a miss",
        "icon": "🔥",
        "category": "streak",
        "rarity": "common",
        "criteria": {"type": "correct_streak", "count": 3},
        "xp_reward": 30,
    },
    {
        "id": "week_warrior",
        "name": "Week Warrior",
        "description": "Practice 7 days in a row",
        "icon": "📅",
        "category": "streak",
        "rarity": "rare",
        "criteria": {"type": "daily_login", "days": 7},
        "xp_reward": 75,
    },
    {
        "id": "quick_thinker",
        "name": "Quick Thinker",
        "description": "Answer 5 questions correctly in 10 seconds or less",
        "icon": "⚡",
        "category": "skill",
        "rarity": "rare",
        "criteria": {"type": "speed_challenge", "questions": 5, "time_limit": 10},
        "xp_reward": 50,
    },
    {
        "id": "perfect_penny",
        "name": "Perfect Penny",
        "description": "Finish a quiz with every answer correct",
        "icon": "💯",
        "category": "skill",
        "rarity": "common",
        "criteria": {"type": "perfect_scores", "count": 1},
        "xp_reward": 40,
    },
    {
        "id": "xp_collector",
        "name": "XP Collector",
        "description": "Earn 1000 XP",
        "icon": "💰",
        "category": "progress",
        "rarity": "epic",
        "criteria": {"type": "total_xp", "amount": 1000},
        "xp_reward": 0,
    },
    {
        "id": "money_explorer",
        "name": "Money Explorer",
        "description": "Try questions from 3 different topics",
        "icon": "🧭",
        "category": "exploration",
        "rarity": "common",
        "criteria": {"type": "topic_explorer", "topics_count": 3},
        "xp_reward": 40,
    },
    {
        "id": "budget_boss",
        "name": "Budget Boss",
        "description": "Master every budgeting topic",
        "icon": "📊",
        "category": "mastery",
        "rarity": "legendary",
        "criteria": {"type": "subject_mastery", "subject_id": "budgeting"},
        "xp_reward": 200,
    },
]


def _seed_badges(con: sqlite3.Connection) -> None:
    for badge in BADGE_CATALOGUE:
        con.execute(
            """
            INSERT OR IGNORE INTO badges
                (id, name, description, icon, category, rarity, criteria, xp_reward, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1)
            """,
            (
                badge["id"],
                badge["name"],
                badge["description"],
                badge["icon"],
                badge["category"],
                badge["rarity"],
                json_dumps(badge["criteria"]),
                int(badge["xp_reward"]),
            ),
        )


def init(seed_badges: bool = True) -> None:
    """Create every table (idempotent) and seed the badge catalogue."""
    try:
        with _pool.get_connection() as con:
            con.executescript(_SCHEMA)
            if seed_badges:
                _seed_badges(con)
            con.commit()
    except sqlite3.Error as exc:
        logger.error("Failed to initialise database at %s: %s", DB_PATH, exc)
        raise
