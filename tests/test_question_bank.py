import json

import pytest

import fastapi_app
from question_bank import QuestionBank
from quiz_models import Question


def test_shipped_bank_loads():
    bank = QuestionBank.from_file(fastapi_app.settings.question_bank_path)

    subjects = bank.subjects()
    assert {"python", "javascript", "sql"} <= set(subjects)
    assert all(count > 0 for count in subjects.values())

    first = bank.get_questions("python")[0]
    assert len(first.options) >= 2
    assert 0 <= first.correct_index < len(first.options)


def test_unknown_subject_is_empty():
    bank = QuestionBank.from_dict({"python": []})

    assert bank.get_questions("cobol") == ()
    assert bank.get_questions("python") == ()


def test_preserves_order_and_defaults_category(tmp_path):
    path = tmp_path / "bank.json"
    path.write_text(json.dumps({
        "go": [
            {"question": "First?", "options": ["a", "b"], "correct": 1},
            {"question": "Second?", "options": ["a", "b", "c"], "correct": 0, "category": "Syntax"},
        ]
    }), encoding="utf-8")

    questions = QuestionBank.from_file(path).get_questions("go")

    assert [q.prompt for q in questions] == ["First?", "Second?"]
    assert questions[0].category == "General"
    assert questions[0].correct_option == "b"


@pytest.mark.parametrize("item", [
    {"question": "Too few?", "options": ["only"], "correct": 0},
    {"question": "Bad index?", "options": ["a", "b"], "correct": 2},
    {"question": "Negative?", "options": ["a", "b"], "correct": -1},
    {"options": ["a", "b"], "correct": 0},
])
def test_malformed_question_rejected(item):
    with pytest.raises(ValueError, match="python\\[0\\]"):
        QuestionBank.from_dict({"python": [item]})


def test_question_is_immutable():
    question = Question("Q?", ("a", "b"), 0, "Basics")

    with pytest.raises(AttributeError):
        question.correct_index = 1
