"""
School Platform Quiz Engine
Quiz configuration and question definition rules

The grading engine assumes every stored question satisfies these rules
(exactly one correct option, options only on auto-graded types), so all
authoring writes go through here.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from ..database.models import Question, QuestionType, Quiz
from ..exceptions import ValidationException, ValueRangeException
from ..schemas import QuestionOption
from ...config import get_settings


def validate_time_limit(time_limit_minutes: Optional[int]) -> None:
    if time_limit_minutes is None:
        return
    settings = get_settings()
    if time_limit_minutes < 1 or time_limit_minutes > settings.MAX_TIME_LIMIT_MINUTES:
        raise ValueRangeException(
            "time_limit_minutes",
            time_limit_minutes,
            min_value=1,
            max_value=settings.MAX_TIME_LIMIT_MINUTES
        )


def validate_passing_score(passing_score: int) -> None:
    if passing_score < 0 or passing_score > 100:
        raise ValueRangeException("passing_score", passing_score, min_value=0, max_value=100)


def validate_quiz_window(start_date: Optional[datetime], end_date: Optional[datetime]) -> None:
    if start_date and end_date and start_date > end_date:
        raise ValidationException(
            "Start date must not be after end date",
            field="end_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()}
        )


def validate_quiz_settings(values: Dict[str, Any]) -> None:
    """Check a complete set of quiz column values"""
    validate_time_limit(values.get("time_limit_minutes"))
    validate_passing_score(values.get("passing_score", get_settings().DEFAULT_PASSING_SCORE))
    validate_quiz_window(values.get("start_date"), values.get("end_date"))


def validate_points(points: int) -> None:
    settings = get_settings()
    if points < 1 or points > settings.MAX_QUESTION_POINTS:
        raise ValueRangeException(
            "points", points, min_value=1, max_value=settings.MAX_QUESTION_POINTS
        )


def normalize_options(
    question_type: QuestionType,
    options: Optional[Sequence[QuestionOption]]
) -> Optional[List[dict]]:
    """Validate an option list against the question type and return its
    storage form, or None for essay questions"""
    if question_type == QuestionType.ESSAY:
        if options:
            raise ValidationException(
                "Essay questions cannot have options",
                field="options"
            )
        return None

    options = list(options or [])

    if question_type == QuestionType.MULTIPLE_CHOICE and len(options) < 2:
        raise ValidationException(
            "Multiple choice questions need at least 2 options",
            field="options",
            details={"option_count": len(options)}
        )

    if question_type == QuestionType.TRUE_FALSE and len(options) != 2:
        raise ValidationException(
            "True/false questions must have exactly 2 options",
            field="options",
            details={"option_count": len(options)}
        )

    ids = [option.id for option in options]
    if len(set(ids)) != len(ids):
        raise ValidationException("Option ids must be unique", field="options")

    correct = sum(1 for option in options if option.is_correct)
    if correct != 1:
        raise ValidationException(
            "Exactly one option must be marked as correct",
            field="options",
            details={"correct_count": correct}
        )

    return [
        {"id": option.id, "text": option.text, "is_correct": option.is_correct}
        for option in options
    ]


def validate_question_definition(
    question_type: QuestionType,
    points: int,
    options: Optional[Sequence[QuestionOption]] = None,
    max_words: Optional[int] = None
) -> Optional[List[dict]]:
    """Check a full question definition; returns the options to store"""
    validate_points(points)

    if max_words is not None:
        if question_type != QuestionType.ESSAY:
            raise ValidationException(
                "Word limit applies to essay questions only",
                field="max_words"
            )
        if max_words < 1:
            raise ValueRangeException("max_words", max_words, min_value=1)

    return normalize_options(question_type, options)


def merged_quiz_values(quiz: Quiz, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Quiz column values after applying ``changes``"""
    values = {
        "time_limit_minutes": quiz.time_limit_minutes,
        "passing_score": quiz.passing_score,
        "start_date": quiz.start_date,
        "end_date": quiz.end_date
    }
    values.update(changes)
    return values


def merged_question_definition(question: Question, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Question definition after applying ``changes``; stored options are
    lifted back into ``QuestionOption`` so the merged result can be re-validated"""
    definition = {
        "question_type": question.question_type,
        "points": question.points,
        "options": [QuestionOption(**option) for option in question.options or []],
        "max_words": question.max_words
    }

    # Switching type drops settings that only belong to the old type
    new_type = changes.get("question_type")
    if new_type == QuestionType.ESSAY and "options" not in changes:
        definition["options"] = None
    if new_type and new_type != QuestionType.ESSAY and "max_words" not in changes:
        definition["max_words"] = None

    for key in definition:
        if key in changes:
            definition[key] = changes[key]

    return definition


__all__ = [
    "validate_time_limit",
    "validate_passing_score",
    "validate_quiz_window",
    "validate_quiz_settings",
    "validate_points",
    "normalize_options",
    "validate_question_definition",
    "merged_quiz_values",
    "merged_question_definition"
]
