"""
School Platform Quiz Engine
Answer grading and attempt score aggregation

Everything here is pure: callers load questions and answers, hand them in,
and persist what comes back.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from ..database.models import Question, QuestionType
from ..exceptions import InvalidStateException, ValidationException, ValueRangeException
from ..schemas import (
    AnswerPayload,
    EssayAnswer,
    SelectedOptionAnswer,
    TrueFalseAnswer,
    payload_to_json
)


class GradedAnswer(Protocol):
    points_awarded: Optional[int]


@dataclass
class AnswerOutcome:
    """Grading result for one (question, payload) pair"""

    question_id: str
    payload: Optional[dict]
    is_correct: Optional[bool]
    points_awarded: Optional[int]  # None while pending manual grading

    @property
    def is_pending(self) -> bool:
        return self.points_awarded is None


@dataclass
class AttemptAggregate:
    score: int
    max_score: int
    percentage: float
    is_passed: Optional[bool]
    fully_graded: bool


def correct_option_id(question: Question) -> Optional[str]:
    """Id of the option flagged correct; the first one if several are"""
    for option in question.options or []:
        if option.get("is_correct"):
            return option.get("id")
    return None


def _option_for_boolean(question: Question, value: bool) -> Optional[str]:
    wanted = "true" if value else "false"
    for option in question.options or []:
        if str(option.get("text", "")).strip().lower() == wanted:
            return option.get("id")
    return None


def _wrong_variant(question: Question, payload: AnswerPayload) -> ValidationException:
    return ValidationException(
        f"Answer for question {question.id} does not match its type "
        f"({question.question_type.value})",
        field="answer",
        details={"question_id": question.id, "answer_type": type(payload).__name__}
    )


def grade_answer(question: Question, payload: Optional[AnswerPayload]) -> AnswerOutcome:
    """Grade one submitted answer.

    Multiple choice and true/false answers are scored against the stored key.
    Essay answers, and essay questions left blank, come back pending.
    """
    if question.question_type in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        if payload is None:
            return AnswerOutcome(question.id, None, False, 0)

        if isinstance(payload, SelectedOptionAnswer):
            selected = payload.selected_option
        elif isinstance(payload, TrueFalseAnswer) and question.question_type == QuestionType.TRUE_FALSE:
            selected = _option_for_boolean(question, payload.value)
        else:
            raise _wrong_variant(question, payload)

        key = correct_option_id(question)
        is_correct = key is not None and selected == key
        return AnswerOutcome(
            question.id,
            payload_to_json(payload),
            is_correct,
            question.points if is_correct else 0
        )

    if question.question_type == QuestionType.ESSAY:
        if payload is not None and not isinstance(payload, EssayAnswer):
            raise _wrong_variant(question, payload)
        return AnswerOutcome(question.id, payload_to_json(payload), None, None)

    raise ValueError(f"Unsupported question type: {question.question_type}")


def compute_aggregate(
    questions: Sequence[Question],
    answers: Iterable[GradedAnswer],
    passing_score: float
) -> AttemptAggregate:
    """Recompute score, percentage and pass flag for an attempt.

    The denominator is every question of the quiz, answered or not. Pending
    answers count as zero and keep ``is_passed`` at None.
    """
    score = 0
    fully_graded = True
    for answer in answers:
        if answer.points_awarded is None:
            fully_graded = False
        else:
            score += answer.points_awarded

    max_score = sum(question.points for question in questions)
    if max_score > 0:
        percentage = score / max_score * 100
        # Compared in integers so a score landing on the threshold passes
        reaches_threshold = score * 100 >= passing_score * max_score
    else:
        percentage = 0.0
        reaches_threshold = passing_score <= 0
    is_passed = reaches_threshold if fully_graded else None

    return AttemptAggregate(
        score=score,
        max_score=max_score,
        percentage=percentage,
        is_passed=is_passed,
        fully_graded=fully_graded
    )


def validate_manual_grade(question: Question, points_awarded: int) -> bool:
    """Check a manual grade and return the correctness flag it implies"""
    if question.question_type != QuestionType.ESSAY:
        raise InvalidStateException(
            "Only essay answers can be graded manually",
            rule_name="manual_grading",
            details={"question_id": question.id, "question_type": question.question_type.value}
        )

    if points_awarded < 0 or points_awarded > question.points:
        raise ValueRangeException(
            "points_awarded",
            points_awarded,
            min_value=0,
            max_value=question.points
        )

    return points_awarded == question.points


__all__ = [
    "AnswerOutcome",
    "AttemptAggregate",
    "correct_option_id",
    "grade_answer",
    "compute_aggregate",
    "validate_manual_grade"
]
