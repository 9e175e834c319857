import random
import unittest

import pytest

from engines.bandit import ContextualBandit, linear_trend
from models import UserContext
from settings import BanditSettings
from fakes import InMemoryArms, InMemoryResponses, make_response


def _bandit(exploration_rate=0.0, responses=None):
    arms = InMemoryArms()
    bandit = ContextualBandit(
        arms,
        InMemoryResponses(responses),
        BanditSettings(exploration_rate=exploration_rate),
        rng=random.Random(3),
    )
    return bandit, arms


class ContextualBanditTests(unittest.TestCase):
    def setUp(self):
        self.context = UserContext(user_id="learner", grade_level=5, current_mastery=0.5)

    def test_first_selection_initialises_five_arms(self):
        bandit, arms = _bandit()
        selection = bandit.select_difficulty("learner", "needs-wants", self.context)

        self.assertEqual(selection.reasoning, "default_initialization")
        self.assertAlmostEqual(selection.difficulty, 0.45)
        levels = [arm.difficulty_level for arm in arms.list_arms("learner", "needs-wants")]
        self.assertEqual(levels, [0.2, 0.4, 0.6, 0.8, 1.0])

    def test_unplayed_arms_are_tried_in_order(self):
        bandit, arms = _bandit()
        bandit.select_difficulty("learner", "needs-wants", self.context)

        chosen = []
        for _ in range(5):
            selection = bandit.select_difficulty("learner", "needs-wants", self.context)
            self.assertEqual(selection.reasoning, "exploitation")
            self.assertEqual(selection.expected_reward, 1.0)
            chosen.append(selection.difficulty)
            bandit.update_arm("learner", "needs-wants", selection.difficulty, 0.8, self.context)

        self.assertEqual(chosen, [0.2, 0.4, 0.6, 0.8, 1.0])
        for arm in arms.list_arms("learner", "needs-wants"):
            self.assertEqual(arm.play_count, 1)

    def test_selection_after_every_arm_played_is_finite(self):
        bandit, _ = _bandit()
        bandit.select_difficulty("learner", "t", self.context)
        for level in (0.2, 0.4, 0.6, 0.8, 1.0):
            bandit.update_arm("learner", "t", level, 0.9 if level == 0.6 else 0.1, self.context)

        selection = bandit.select_difficulty("learner", "t", self.context)
        self.assertEqual(selection.difficulty, 0.6)
        self.assertLess(selection.expected_reward, 10)

    def test_update_arm_returns_adjusted_reward(self):
        bandit, arms = _bandit()
        stored = bandit.update_arm("learner", "t", 0.6, 0.8, self.context)
        # engagement 0.5 scales by 0.75
        self.assertAlmostEqual(stored, 0.6)
        by_level = {arm.difficulty_level: arm for arm in arms.list_arms("learner", "t")}
        self.assertAlmostEqual(by_level[0.6].reward_sum, 0.6)

    def test_off_grid_difficulty_lands_on_an_arm_level(self):
        bandit, arms = _bandit()
        bandit.update_arm("learner", "t", 0.73, 0.8, self.context)

        played = {arm.difficulty_level: arm.play_count for arm in arms.list_arms("learner", "t")}
        self.assertEqual(played, {0.2: 0, 0.4: 0, 0.6: 0, 0.8: 1, 1.0: 0})

        # the next selection works over the full arm set
        selection = bandit.select_difficulty("learner", "t", self.context)
        self.assertEqual(selection.reasoning, "exploitation")
        self.assertEqual(selection.difficulty, 0.2)

    def test_nearest_level(self):
        bandit, _ = _bandit()
        self.assertEqual(bandit.nearest_level(0.0), 0.2)
        self.assertEqual(bandit.nearest_level(0.61), 0.6)
        self.assertEqual(bandit.nearest_level(0.95), 1.0)

    def test_long_sessions_are_penalised(self):
        bandit, _ = _bandit()
        context = UserContext(user_id="learner", engagement_level=1.0, session_length=30)
        self.assertAlmostEqual(bandit.adjust_reward(1.0, context), 0.9)

    def test_read_failure_falls_back_to_default(self):
        bandit, arms = _bandit()
        arms.fail_reads = True
        selection = bandit.select_difficulty("learner", "t", self.context)
        self.assertEqual(selection.reasoning, "default_initialization")

    def test_default_difficulty_is_clamped(self):
        bandit, _ = _bandit()
        low = bandit.default_difficulty(UserContext(user_id="u", grade_level=1, current_mastery=0.0))
        high = bandit.default_difficulty(UserContext(user_id="u", grade_level=12, current_mastery=1.0))
        self.assertAlmostEqual(low.difficulty, 0.1)
        self.assertAlmostEqual(high.difficulty, 0.9)


def test_difficulty_range_widens_with_distance_from_middle_mastery():
    bandit, _ = _bandit()
    bandit.select_difficulty("learner", "t", UserContext(user_id="learner"))
    selection = bandit.select_difficulty("learner", "t", UserContext(user_id="learner"))

    window = bandit.get_difficulty_range("learner", "t", UserContext(user_id="learner"), selection)
    assert window["target"] == selection.difficulty
    assert window["min"] == pytest.approx(0.1)
    assert window["max"] == pytest.approx(0.35)

    skewed = bandit.get_difficulty_range("learner", "t", UserContext(user_id="learner", current_mastery=1.0), selection)
    assert skewed["max"] == pytest.approx(0.4)


def test_performance_pattern_without_history():
    bandit, _ = _bandit()
    pattern = bandit.analyze_performance_pattern("learner", "t")
    assert pattern.optimal_difficulty == 0.5
    assert pattern.engagement_trend == "unknown"
    assert pattern.recommendations == ["Complete more questions to analyze patterns"]


def test_performance_pattern_finds_productive_difficulty():
    # newest first: recent answers right, older ones wrong
    responses = [make_response(i, True, difficulty=0.8) for i in range(4)]
    responses += [make_response(i + 4, False, difficulty=0.3) for i in range(4)]
    bandit, _ = _bandit(responses=responses)

    pattern = bandit.analyze_performance_pattern("learner", "t")
    assert pattern.optimal_difficulty == 0.8
    assert pattern.learning_velocity == pytest.approx(1.0)
    assert "You're improving fast! Try slightly harder questions." in pattern.recommendations


def test_engagement_trend_labels():
    slow_recent = [make_response(0, True, time_spent=60)] + [make_response(i, True, time_spent=20) for i in range(1, 6)]
    assert ContextualBandit.engagement_trend(slow_recent) == "increasing"
    fast_recent = [make_response(0, True, time_spent=2), make_response(1, True, time_spent=2)]
    fast_recent += [make_response(i, True, time_spent=30) for i in range(2, 6)]
    assert ContextualBandit.engagement_trend(fast_recent) == "declining"
    assert ContextualBandit.engagement_trend(fast_recent[:2]) == "insufficient_data"


def test_linear_trend():
    assert linear_trend([0, 1, 2, 3]) == pytest.approx(1.0)
    assert linear_trend([1]) == 0.0
