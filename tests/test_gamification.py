import random
from datetime import datetime, timedelta, timezone

import pytest

import db
from engines.errors import InvalidRequestError, NotFoundError
from engines.gamification import DAILY_CHALLENGES, GamificationEngine
from models import Badge
from repositories import Repositories
from settings import GamificationSettings

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(temp_db):
    return GamificationEngine(Repositories(), GamificationSettings(), rng=random.Random(1), now=lambda: NOW)


def _student(engine, user_id, grade=4, xp=0):
    engine.repos.users.create(user_id, full_name=user_id.title(), grade=grade)
    if xp:
        engine.update_xp(user_id, xp)


def test_update_xp_levels_up_on_boundary(engine):
    _student(engine, "ana")
    first = engine.update_xp("ana", 950)
    assert (first.new_total_xp, first.new_level, first.level_up) == (950, 1, False)

    second = engine.update_xp("ana", 100)
    assert (second.new_total_xp, second.new_level, second.level_up) == (1050, 2, True)
    assert engine.next_level_progress(1050) == 5


def test_update_xp_without_stats_row(engine):
    assert engine.update_xp("ghost", 10) is None


def test_bonus_xp_per_event():
    engine = GamificationEngine(settings=GamificationSettings())
    assert engine.bonus_xp("question_correct", {"question_difficulty": 0.5, "time_spent": 10}) == 18
    assert engine.bonus_xp("quiz_complete") == 10
    assert engine.bonus_xp("streak_milestone", {"streak": 40}) == 50
    assert engine.bonus_xp("topic_mastery") == 25


def test_unknown_event_type_is_rejected(engine):
    _student(engine, "ana")
    with pytest.raises(InvalidRequestError):
        engine.process_xp_event("ana", "bogus")


def test_quiz_complete_event_awards_first_quiz_once(engine):
    _student(engine, "ana")
    session = engine.repos.quiz.create_session("ana", "needs-wants", "practice", 1, NOW)
    engine.repos.quiz.finalize_session(
        session.id, correct_answers=0, total_time=10, completion_rate=1.0, completed_at=NOW
    )

    update = engine.process_xp_event("ana", "quiz_complete")
    assert "first_quiz" in [b.id for b in update.new_badges]
    assert update.xp_gained == 10
    assert update.streak_update.current_streak == 1
    assert "Earned First Steps badge!" in update.achievements

    again = engine.process_xp_event("ana", "quiz_complete")
    assert "first_quiz" not in [b.id for b in again.new_badges]

    stats = engine.repos.stats.get("ana")
    # 2 x 10 event XP + 50 for the badge
    assert stats.total_xp == 70
    assert stats.badges_earned == 1


def test_badge_award_is_idempotent(engine):
    _student(engine, "ana")
    badge = engine.repos.badges.get("perfect_penny")

    assert engine.repos.badges.award("ana", badge, NOW, 1000) is True
    assert engine.repos.badges.award("ana", badge, NOW, 1000) is False

    stats = engine.repos.stats.get("ana")
    assert stats.total_xp == badge.xp_reward
    assert stats.badges_earned == 1
    assert len(engine.badges.get_user_badges("ana")) == 1


def test_badge_without_xp_still_counts(engine):
    _student(engine, "ana", xp=1000)
    awarded = engine.badges.check_and_award_badges("ana")
    assert "xp_collector" in [b.id for b in awarded]
    stats = engine.repos.stats.get("ana")
    assert stats.total_xp == 1000
    assert stats.badges_earned == 1


def test_correct_streak_badge_uses_perfect_sessions(engine):
    _student(engine, "ana")
    engine.repos.stats.apply_session_totals("ana", answered=3, correct=3, time_spent=30, perfect=True)
    assert "hot_streak" in [b.id for b in engine.badges.check_and_award_badges("ana")]


def test_badge_progress(engine):
    _student(engine, "ana", xp=800)
    progress = engine.badges.get_badge_progress("ana", "xp_collector")
    assert progress["current"] == 800
    assert progress["target"] == 1000
    assert progress["progress"] == pytest.approx(80.0)
    assert progress["earned"] is False

    with pytest.raises(NotFoundError):
        engine.badges.get_badge_progress("ana", "no_such_badge")


def test_inactive_badges_are_not_evaluated(engine):
    _student(engine, "ana", xp=5)
    engine.repos.badges.upsert(
        Badge(id="tiny", name="Tiny", criteria={"type": "total_xp", "amount": 1}, xp_reward=5, is_active=False)
    )
    assert "tiny" not in [b.id for b in engine.badges.check_and_award_badges("ana")]


def test_leaderboard_ranks_by_strictly_higher_scores(engine):
    _student(engine, "ana", xp=100)
    _student(engine, "ben", xp=300)
    _student(engine, "cai", xp=300)
    _student(engine, "dee", grade=5, xp=50)

    board = engine.leaderboard.get_global_leaderboard("xp", limit=3)
    assert [row["score"] for row in board] == [300, 300, 100]
    assert [row["rank"] for row in board] == [1, 2, 3]

    rank = engine.leaderboard.get_user_rank("ana")
    assert rank == {"rank": 3, "total_users": 4, "score": 100}
    assert engine.leaderboard.get_user_rank("ben")["rank"] == 1
    assert engine.leaderboard.get_user_rank("cai")["rank"] == 1

    grade_rank = engine.leaderboard.get_user_rank("dee", scope="grade")
    assert grade_rank == {"rank": 1, "total_users": 1, "score": 50}

    with pytest.raises(InvalidRequestError):
        engine.leaderboard.get_global_leaderboard("karma")


def test_week_starts_on_sunday(engine):
    # 2026-03-10 is a Tuesday
    start = engine.leaderboard.timeframe_start("weekly")
    assert start == datetime(2026, 3, 8, tzinfo=timezone.utc)
    assert engine.leaderboard.timeframe_start("monthly").day == 1


def test_daily_challenge_expires_after_a_day(engine):
    _student(engine, "ana")
    challenge = engine.create_custom_challenge("ana", "daily")

    assert challenge["challenge_data"]["title"] == DAILY_CHALLENGES[0]["title"]
    expires = db.parse_timestamp(challenge["expires_at"])
    assert expires - NOW == timedelta(hours=24)
    assert challenge["id"] is not None


def test_weekly_and_topic_challenges(engine):
    _student(engine, "ana")
    weekly = engine.create_custom_challenge("ana", "weekly")
    assert db.parse_timestamp(weekly["expires_at"]) - NOW == timedelta(hours=168)
    assert weekly["challenge_data"]["title"] == "Topic Explorer"

    topic = engine.create_custom_challenge("ana", "topic")
    assert topic["challenge_data"]["title"] == "New Topic Adventure"

    with pytest.raises(InvalidRequestError):
        engine.create_custom_challenge("ana", "monthly")


def test_motivation_for_new_student(engine):
    _student(engine, "ana")
    motivation = engine.get_user_motivation("ana")

    assert motivation["motivation_level"] == pytest.approx(0.5)
    assert "Start a new learning streak today!" in motivation["suggested_actions"]
    assert len(motivation["suggested_actions"]) <= 3
    assert motivation["encouragement_message"]
    assert motivation["next_milestone"]["type"] == "level_up"


def test_game_stats_requires_a_registered_user(engine):
    with pytest.raises(NotFoundError):
        engine.get_user_game_stats("ghost")
