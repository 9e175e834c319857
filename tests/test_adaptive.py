import random
from datetime import datetime, timezone

import pytest

from engines.adaptive import AdaptiveService, time_of_day
from engines.bandit import ContextualBandit, DifficultySelection
from engines.errors import NotFoundError
from engines.reward import Outcome
from fakes import ScriptedGenerator
from models import Question
from repositories import Repositories
from settings import BanditSettings, Settings

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _service(generator=None):
    repos = Repositories()
    settings = Settings(bandit=BanditSettings(exploration_rate=0.0))
    bandit = ContextualBandit(repos.arms, repos.quiz, settings.bandit, rng=random.Random(5))
    return AdaptiveService(repos, settings, bandit=bandit, generator=generator or ScriptedGenerator(), now=lambda: NOW)


@pytest.fixture
def service(curriculum):
    svc = _service()
    svc.repos.users.create("ana", full_name="Ana", grade=4)
    return svc


def test_adaptive_quiz_mixes_bank_and_generated_questions(service):
    quiz = service.generate_adaptive_quiz("ana", "needs-wants", {"time_of_day": "morning"})

    assert quiz["adaptive_strategy"] == "default_initialization"
    assert quiz["selection"]["selected_difficulty"] == pytest.approx(0.3)
    assert quiz["difficulty_range"]["min"] == pytest.approx(0.15)
    assert quiz["difficulty_range"]["max"] == pytest.approx(0.45)
    assert len(quiz["questions"]) == 5
    assert quiz["difficulty_progression"] == sorted(quiz["difficulty_progression"])
    assert quiz["personalized_hints"] is True
    assert all("correct_answer" not in q for q in quiz["questions"])

    arms = service.repos.arms.list_arms("ana", "needs-wants")
    assert len(arms) == 5


def test_generated_questions_are_stored_but_kept_out_of_the_bank(service):
    quiz = service.generate_adaptive_quiz("ana", "needs-wants")
    generated = [q["id"] for q in quiz["questions"] if q["id"].startswith("ai-")]
    assert len(generated) == 2

    stored = service.repos.curriculum.get_question(generated[0])
    assert stored is not None and stored.ai_generated
    bank = service.repos.curriculum.get_questions_by_difficulty_range("needs-wants", 0.0, 1.0)
    assert all(not q.ai_generated for q in bank)


def test_generator_failure_falls_back_to_bank_questions(curriculum):
    service = _service(ScriptedGenerator(fail=True))
    service.repos.users.create("ana", grade=4)

    quiz = service.generate_adaptive_quiz("ana", "needs-wants")
    assert [q["id"] for q in quiz["questions"]] == ["q2", "q3", "q4"]


def test_adaptive_quiz_for_unknown_topic_or_user(service):
    with pytest.raises(NotFoundError):
        service.generate_adaptive_quiz("ana", "no-such-topic")
    with pytest.raises(NotFoundError):
        service.generate_adaptive_quiz("ghost", "needs-wants")


def test_update_learning_model(service):
    outcome = Outcome(is_correct=True, time_spent=20, difficulty_level=0.6)
    result = service.update_learning_model("ana", "needs-wants", "q6", outcome)

    assert result["reward"] == pytest.approx(0.82)
    assert result["mastery_update"]["mastery_score"] == pytest.approx(0.1)
    # the four unplayed arms outrank the played one; the first of them wins
    assert result["next_difficulty_recommendation"] == pytest.approx(0.2)
    assert set(result["performance_insights"]) == {
        "optimal_difficulty", "learning_velocity", "engagement_trend", "recommendations",
    }

    arms = {arm.difficulty_level: arm for arm in service.repos.arms.list_arms("ana", "needs-wants")}
    assert sorted(arms) == [0.2, 0.4, 0.6, 0.8, 1.0]
    assert arms[0.6].play_count == 1
    # neutral engagement scales the stored reward by 0.75
    assert arms[0.6].reward_sum == pytest.approx(0.615)


def test_first_model_update_off_the_arm_grid_creates_every_arm(service):
    service.update_learning_model("ana", "needs-wants", None, Outcome(is_correct=True, time_spent=10, difficulty_level=0.5))

    arms = service.repos.arms.list_arms("ana", "needs-wants")
    assert [arm.difficulty_level for arm in arms] == [0.2, 0.4, 0.6, 0.8, 1.0]
    assert sum(arm.play_count for arm in arms) == 1


def test_user_context_defaults(service):
    context = service.build_user_context("ana", "needs-wants")
    assert context.grade_level == 4
    assert context.current_mastery == 0.5
    assert context.recent_accuracy == 0.5
    assert context.engagement_level == 0.5
    assert context.time_of_day == "afternoon"
    assert context.streak_count == 0

    with pytest.raises(NotFoundError):
        service.build_user_context("ghost")


def test_learning_path(service):
    service.mastery.update_mastery("ana", "needs-wants", False, 10)
    path = service.get_personalized_learning_path("ana")

    assert [t["id"] for t in path["recommended_topics"]] == ["needs-wants"]
    assert path["learning_goals"] == ["Needs vs Wants"]
    assert path["next_best_actions"] == ["Daily practice sessions"]
    insights = path["adaptive_insights"]
    assert insights["struggling_topics"] == 1
    assert insights["mastery_percentage"] == 0
    assert insights["focus_areas"] == ["Needs vs Wants"]


def test_hint_and_feedback(service):
    assert service.generate_hint("ana", "q3") == "hint for novice"
    with pytest.raises(NotFoundError):
        service.generate_hint("ana", "missing")

    assert service.generate_personalized_feedback("ana", "q3", True, 12) == "right on Needs vs Wants"
    assert service.generate_personalized_feedback("ana", "missing", False, 12) == "Keep trying!"


@pytest.mark.parametrize("hour,label", [(8, "morning"), (12, "afternoon"), (16, "afternoon"), (17, "evening")])
def test_time_of_day(hour, label):
    assert time_of_day(datetime(2026, 3, 10, hour, tzinfo=timezone.utc)) == label


class FixedBandit(ContextualBandit):
    def __init__(self, repos, difficulty):
        super().__init__(repos.arms, repos.quiz, BanditSettings(exploration_rate=0.0))
        self.difficulty = difficulty

    def select_difficulty(self, user_id, topic_id, context):
        return DifficultySelection(self.difficulty, 0.5, "exploitation", 0.6)


def test_bank_questions_are_drawn_from_the_whole_window(curriculum):
    for qid, difficulty in (("x45", 0.45), ("x55", 0.55)):
        curriculum.upsert_question(
            Question(
                id=qid,
                topic_id="needs-wants",
                question_text="Is a bike a need or a want?",
                question_type="multiple_choice",
                correct_answer={"answer": "B"},
                difficulty_level=difficulty,
                options={"A": "Need", "B": "Want"},
            )
        )
    repos = Repositories()
    repos.users.create("ana", grade=4)
    service = AdaptiveService(
        repos,
        Settings(),
        bandit=FixedBandit(repos, 0.5),
        generator=ScriptedGenerator(fail=True),
        rng=random.Random(7),
        now=lambda: NOW,
    )

    served = set()
    for _ in range(30):
        quiz = service.generate_adaptive_quiz("ana", "needs-wants")
        ids = [q["id"] for q in quiz["questions"]]
        assert len(ids) == len(set(ids)) == 3
        served.update(ids)

    assert served == {"q4", "x45", "q5", "x55", "q6"}


def test_generated_difficulty_stays_in_range_at_the_top_arm(curriculum):
    repos = Repositories()
    repos.users.create("ana", grade=4)
    generator = ScriptedGenerator()
    service = AdaptiveService(
        repos, Settings(), bandit=FixedBandit(repos, 1.0), generator=generator, rng=random.Random(1), now=lambda: NOW
    )

    quiz = service.generate_adaptive_quiz("ana", "needs-wants")

    assert [call[1] for call in generator.question_calls] == [pytest.approx(0.95), pytest.approx(1.0)]
    assert max(quiz["difficulty_progression"]) <= 1.0
