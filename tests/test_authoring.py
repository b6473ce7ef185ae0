from datetime import datetime

import pytest

from school_platform.backend.database.models import Question, QuestionType, Quiz
from school_platform.backend.exceptions import ValidationException, ValueRangeException
from school_platform.backend.schemas import QuestionOption
from school_platform.backend.services.authoring import (
    merged_question_definition,
    merged_quiz_values,
    validate_question_definition,
    validate_quiz_settings
)


def options(*flags):
    return [QuestionOption(id=f"o{i}", text=f"Option {i}", is_correct=flag) for i, flag in enumerate(flags)]


def test_valid_multiple_choice_definition_is_normalized():
    stored = validate_question_definition(QuestionType.MULTIPLE_CHOICE, 2, options=options(False, True))

    assert stored == [
        {"id": "o0", "text": "Option 0", "is_correct": False},
        {"id": "o1", "text": "Option 1", "is_correct": True},
    ]


def test_option_alias_is_accepted():
    option = QuestionOption.model_validate({"id": "a", "text": " Yes ", "isCorrect": True})

    assert option.is_correct is True
    assert option.text == "Yes"


@pytest.mark.parametrize("question_type,flags", [
    (QuestionType.MULTIPLE_CHOICE, (True,)),
    (QuestionType.MULTIPLE_CHOICE, (False, False)),
    (QuestionType.MULTIPLE_CHOICE, (True, True, False)),
    (QuestionType.TRUE_FALSE, (True, False, False)),
    (QuestionType.ESSAY, (True, False)),
])
def test_invalid_option_sets(question_type, flags):
    with pytest.raises(ValidationException):
        validate_question_definition(question_type, 1, options=options(*flags))


def test_duplicate_option_ids_are_rejected():
    duplicated = [
        QuestionOption(id="a", text="One", is_correct=True),
        QuestionOption(id="a", text="Two", is_correct=False),
    ]
    with pytest.raises(ValidationException):
        validate_question_definition(QuestionType.MULTIPLE_CHOICE, 1, options=duplicated)


def test_essay_definition():
    assert validate_question_definition(QuestionType.ESSAY, 5, max_words=200) is None

    with pytest.raises(ValidationException):
        validate_question_definition(
            QuestionType.MULTIPLE_CHOICE, 1, options=options(True, False), max_words=10
        )


@pytest.mark.parametrize("points", [0, 101])
def test_points_out_of_range(points):
    with pytest.raises(ValueRangeException):
        validate_question_definition(QuestionType.ESSAY, points)


def test_quiz_settings():
    validate_quiz_settings({"time_limit_minutes": 480, "passing_score": 100})

    with pytest.raises(ValueRangeException):
        validate_quiz_settings({"time_limit_minutes": 481})
    with pytest.raises(ValueRangeException):
        validate_quiz_settings({"passing_score": 101})
    with pytest.raises(ValidationException):
        validate_quiz_settings({
            "start_date": datetime(2030, 1, 2),
            "end_date": datetime(2030, 1, 1)
        })


def test_window_check_uses_merged_values():
    quiz = Quiz(time_limit_minutes=None, passing_score=60, start_date=datetime(2030, 1, 10), end_date=None)

    with pytest.raises(ValidationException):
        validate_quiz_settings(merged_quiz_values(quiz, {"end_date": datetime(2030, 1, 1)}))


def test_switching_a_question_to_essay_drops_its_options():
    question = Question(
        question_type=QuestionType.MULTIPLE_CHOICE, points=2, max_words=None,
        options=[{"id": "a", "text": "A", "is_correct": True}, {"id": "b", "text": "B", "is_correct": False}]
    )

    definition = merged_question_definition(question, {"question_type": QuestionType.ESSAY})

    assert definition["options"] is None
    assert validate_question_definition(**definition) is None


def test_changing_options_keeps_other_fields():
    question = Question(
        question_type=QuestionType.MULTIPLE_CHOICE, points=2, max_words=None,
        options=[{"id": "a", "text": "A", "is_correct": True}, {"id": "b", "text": "B", "is_correct": False}]
    )

    definition = merged_question_definition(question, {"options": options(False, False, True)})
    stored = validate_question_definition(**definition)

    assert definition["points"] == 2
    assert [option["is_correct"] for option in stored] == [False, False, True]
