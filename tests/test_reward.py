import itertools

import pytest

from engines.reward import Outcome, compute_reward


def test_fast_correct_answer_on_medium_item():
    reward = compute_reward(Outcome(is_correct=True, time_spent=20, difficulty_level=0.6))
    assert reward == pytest.approx(0.82)


def test_slow_correct_answer_loses_speed_bonus():
    reward = compute_reward(Outcome(is_correct=True, time_spent=60, difficulty_level=0.6))
    assert reward == pytest.approx(0.72)


def test_hints_reduce_reward():
    reward = compute_reward(Outcome(is_correct=True, time_spent=20, hints_used=2, difficulty_level=0.6))
    assert reward == pytest.approx(0.72)


def test_wrong_answer_rewards_effort():
    assert compute_reward(Outcome(is_correct=False, time_spent=5)) == pytest.approx(0.1)
    assert compute_reward(Outcome(is_correct=False, time_spent=15)) == pytest.approx(0.2)


def test_confident_answer_on_hardest_item():
    reward = compute_reward(
        Outcome(is_correct=True, time_spent=5, difficulty_level=1.0, confidence_level=5)
    )
    assert reward == pytest.approx(0.95)
    assert compute_reward(Outcome(is_correct=False, time_spent=5, confidence_level=3)) == pytest.approx(0.1)


def test_many_hints_clamp_at_zero():
    reward = compute_reward(Outcome(is_correct=True, time_spent=100, hints_used=30, difficulty_level=0.0))
    assert reward == 0.0


@pytest.mark.parametrize("is_correct", [True, False])
@pytest.mark.parametrize("difficulty", [0.0, 0.1, 0.25, 0.5, 0.75, 0.9, 1.0])
def test_reward_stays_in_unit_interval(is_correct, difficulty):
    for time_spent, hints_used, confidence in itertools.product(
        [0, 1, 9.9, 10, 10.1, 29, 30, 45, 60, 120, 600],
        [0, 1, 2, 3, 5, 10, 20],
        [None, 1, 2, 3, 4, 5],
    ):
        outcome = Outcome(
            is_correct=is_correct,
            time_spent=time_spent,
            hints_used=hints_used,
            difficulty_level=difficulty,
            confidence_level=confidence,
        )
        assert 0.0 <= compute_reward(outcome) <= 1.0, outcome
