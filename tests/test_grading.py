import unittest

from engines.grading import check_answer
from models import Question


def _question(kind, key):
    return Question(
        id="q",
        topic_id="t",
        question_text="?",
        question_type=kind,
        correct_answer=key,
        difficulty_level=0.5,
    )


class CheckAnswerTests(unittest.TestCase):
    def test_multiple_choice_accepts_bare_or_wrapped_answer(self):
        question = _question("multiple_choice", {"answer": "B"})
        self.assertTrue(check_answer(question, "B"))
        self.assertTrue(check_answer(question, {"answer": "B"}))
        self.assertFalse(check_answer(question, "b"))
        self.assertFalse(check_answer(question, None))

    def test_true_false(self):
        question = _question("true_false", {"answer": True})
        self.assertTrue(check_answer(question, True))
        self.assertFalse(check_answer(question, False))

    def test_fill_blank_ignores_case_and_whitespace(self):
        question = _question("fill_blank", {"answer": "Savings"})
        self.assertTrue(check_answer(question, "  savings "))
        self.assertFalse(check_answer(question, "spending"))
        self.assertFalse(check_answer(question, None))

    def test_drag_drop_requires_exact_order(self):
        question = _question("drag_drop", {"order": ["earn", "save", "spend"]})
        self.assertTrue(check_answer(question, ["earn", "save", "spend"]))
        self.assertTrue(check_answer(question, {"order": ["earn", "save", "spend"]}))
        self.assertFalse(check_answer(question, ["save", "earn", "spend"]))
        self.assertFalse(check_answer(question, "earn,save,spend"))

    def test_unknown_type_never_passes(self):
        self.assertFalse(check_answer(_question("essay", {"answer": "x"}), "x"))

    def test_missing_key_never_passes(self):
        self.assertFalse(check_answer(_question("multiple_choice", {}), None))


if __name__ == "__main__":
    unittest.main()
