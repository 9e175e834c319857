from dataclasses import dataclass
from typing import Optional


@dataclass
class Outcome:
    is_correct: bool
    time_spent: float
    hints_used: int = 0
    difficulty_level: float = 0.5
    confidence_level: Optional[int] = None


def compute_reward(outcome: Outcome) -> float:
    """Score one answer in [0, 1] for the difficulty selector.

    Correct answers earn more on harder items and when answered within the
    expected time; each hint costs 0.05. A wrong answer that was at least
    attempted for more than ten seconds is worth slightly more than a guess.
    """

    if outcome.is_correct:
        reward = 0.6 + outcome.difficulty_level * 0.2
        if outcome.time_spent < 30 + outcome.difficulty_level * 30:
            reward += 0.1
        reward -= outcome.hints_used * 0.05
    else:
        reward = 0.1
        if outcome.time_spent > 10:
            reward += 0.1

    if outcome.confidence_level is not None and outcome.confidence_level >= 4:
        reward += 0.05

    return max(0.0, min(1.0, reward))
