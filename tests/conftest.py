import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    # Reset the connection pool for each test
    db.configure(str(db_path))
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def curriculum(temp_db):
    """One budgeting topic with ten multiple-choice questions from 0.1 to 1.0."""
    from models import Question, Topic
    from repositories import CurriculumRepository

    repo = CurriculumRepository()
    repo.upsert_subject("budgeting", "Budgeting", "#22c55e", "📊")
    repo.upsert_topic(
        Topic(
            id="needs-wants",
            subject_id="budgeting",
            name="Needs vs Wants",
            description="Telling needs from wants",
            grade_level=4,
            learning_objectives=["Identify needs", "Identify wants"],
            sort_order=1,
        )
    )
    for i in range(1, 11):
        repo.upsert_question(
            Question(
                id=f"q{i}",
                topic_id="needs-wants",
                question_text=f"Question {i}: is food a need or a want?",
                question_type="multiple_choice",
                correct_answer={"answer": "A"},
                difficulty_level=round(i / 10, 1),
                options={"A": "Need", "B": "Want"},
                explanation="Food keeps you alive.",
                hints=["Think about what you cannot live without."],
                estimated_time=30,
            )
        )
    return repo
