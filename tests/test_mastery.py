import random
from datetime import datetime, timezone

import pytest

from engines.mastery import MasteryTracker, mastery_label
from settings import MasterySettings

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _tracker(**overrides):
    return MasteryTracker(settings=MasterySettings(**overrides), now=lambda: NOW)


def test_first_attempt_seeds_score(temp_db):
    tracker = _tracker()
    correct = tracker.update_mastery("alice", "needs-wants", True, 12)
    wrong = tracker.update_mastery("bob", "needs-wants", False, 12)

    assert correct.mastery_score == pytest.approx(0.1)
    assert correct.attempts == 1
    assert correct.correct_answers == 1
    assert wrong.mastery_score == pytest.approx(0.05)
    assert wrong.correct_answers == 0


def test_updates_move_toward_target(temp_db):
    tracker = _tracker()
    tracker.update_mastery("alice", "needs-wants", True, 10)
    up = tracker.update_mastery("alice", "needs-wants", True, 10)
    assert up.mastery_score == pytest.approx(0.19)

    down = tracker.update_mastery("alice", "needs-wants", False, 10)
    assert down.mastery_score == pytest.approx(0.171)
    assert down.attempts == 3
    assert down.total_time_spent == pytest.approx(30)

    stored = tracker.get_mastery("alice", "needs-wants")
    assert stored.mastery_score == pytest.approx(0.171)
    assert stored.last_attempted.startswith("2026-03-10")


def test_score_stays_in_unit_interval(temp_db):
    tracker = _tracker(learning_rate=1.0)
    tracker.update_mastery("alice", "t", True, 5)
    assert tracker.update_mastery("alice", "t", True, 5).mastery_score == pytest.approx(1.0)
    assert tracker.update_mastery("alice", "t", False, 5).mastery_score == pytest.approx(0.0)


def test_completion_flag_follows_threshold(temp_db):
    tracker = _tracker(learning_rate=0.5)
    scores = [tracker.update_mastery("alice", "t", True, 5) for _ in range(4)]

    assert [round(s.mastery_score, 4) for s in scores] == [0.1, 0.55, 0.775, 0.8875]
    assert not scores[2].is_completed
    assert scores[3].is_completed
    assert scores[3].mastery_level == "advanced"


@pytest.mark.parametrize(
    "score,label",
    [(0.0, "novice"), (0.39, "novice"), (0.4, "developing"), (0.6, "proficient"), (0.8, "advanced"), (1.0, "advanced")],
)
def test_mastery_label_thresholds(score, label):
    assert mastery_label(score) == label


def test_progress_overview_groups_by_grade_and_subject(curriculum):
    tracker = _tracker(learning_rate=0.9)
    for _ in range(3):
        tracker.update_mastery("alice", "needs-wants", True, 5)

    overview = tracker.progress_overview("alice")
    assert overview["total_topics"] == 1
    assert overview["completed_topics"] == 1
    assert overview["grade_progress"] == {"4": {"total": 1, "completed": 1}}
    assert overview["subject_progress"] == {"budgeting": {"total": 1, "completed": 1}}


def test_progress_overview_for_new_user(temp_db):
    overview = _tracker().progress_overview("nobody")
    assert overview["total_topics"] == 0
    assert overview["average_mastery"] == 0


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_random_answer_sequences_keep_mastery_in_unit_interval(temp_db, seed):
    rng = random.Random(seed)
    tracker = _tracker()
    correct_so_far = 0
    for step in range(1, 201):
        correct = rng.random() < 0.6
        correct_so_far += correct
        record = tracker.update_mastery("alice", "t", correct, rng.uniform(1, 90), rng.random())

        assert 0.0 <= record.mastery_score <= 1.0
        assert record.attempts == step
        assert record.correct_answers == correct_so_far
        assert record.is_completed == (record.mastery_score >= MasterySettings().advanced)
