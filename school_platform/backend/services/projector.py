"""
School Platform Quiz Engine
Role and phase dependent shaping of quiz and attempt payloads

All answer-key redaction happens here. ``resolve_view`` decides what a
viewer may see for a given phase; the ``project_*`` helpers render entities
at that level. REDACTED payloads never carry ``is_correct`` (on options or
answers), explanations, or points awarded.
"""

import enum
from typing import Dict, Any, List, Optional, Sequence, Union

from ..database.models import Answer, AttemptStatus, Question, Quiz, QuizAttempt
from ..exceptions import (
    AuthorizationException,
    ResourceOwnershipException,
    ResultsNotAvailableException
)
from ..utils.helpers import isoformat
from .access import Actor
from .randomizer import PresentedQuestion


class ViewPhase(enum.Enum):
    QUIZ = "quiz"          # browsing a quiz's detail page
    TAKING = "taking"      # starting or resuming an attempt
    RESULTS = "results"    # looking at a submitted attempt


class ViewLevel(enum.Enum):
    REDACTED = "redacted"
    FULL = "full"


def results_released(quiz: Quiz, attempt: QuizAttempt) -> bool:
    """Whether the attempt's owner may see grading detail"""
    if attempt.status == AttemptStatus.IN_PROGRESS:
        return False
    return bool(quiz.show_results) or attempt.status == AttemptStatus.GRADED


def resolve_view(
    actor: Actor,
    quiz: Quiz,
    phase: ViewPhase,
    attempt: Optional[QuizAttempt] = None
) -> ViewLevel:
    """Decide the view level for ``actor`` or raise when access is denied"""
    if actor.is_admin:
        return ViewLevel.FULL

    if actor.is_teacher:
        if quiz.teacher_id == actor.actor_id:
            return ViewLevel.FULL
        if phase == ViewPhase.RESULTS:
            raise ResourceOwnershipException(
                "quiz", quiz.id,
                message="You can only view results for your own quizzes"
            )
        return ViewLevel.REDACTED

    if actor.is_student:
        if phase != ViewPhase.RESULTS:
            return ViewLevel.REDACTED
        if attempt is None or attempt.student_id != actor.actor_id:
            raise AuthorizationException("Access denied")
        if results_released(quiz, attempt):
            return ViewLevel.FULL
        raise ResultsNotAvailableException(attempt.id)

    raise AuthorizationException("Access denied")


def project_option(option: dict, level: ViewLevel) -> Dict[str, Any]:
    data = {"id": option.get("id"), "text": option.get("text")}
    if level == ViewLevel.FULL:
        data["is_correct"] = bool(option.get("is_correct"))
    return data


def project_question(
    question: Question,
    level: ViewLevel,
    options: Optional[List[dict]] = None
) -> Dict[str, Any]:
    """Render a question; ``options`` overrides the stored option order"""
    if options is None:
        options = question.options or []

    data = {
        "id": question.id,
        "quiz_id": question.quiz_id,
        "question_type": question.question_type.value,
        "prompt": question.prompt,
        "points": question.points,
        "order_index": question.order_index,
        "max_words": question.max_words,
        "options": [project_option(option, level) for option in options] if question.is_auto_gradable else None
    }

    if level == ViewLevel.FULL:
        data["explanation"] = question.explanation

    return data


def project_quiz_summary(quiz: Quiz, question_count: int, max_score: int) -> Dict[str, Any]:
    """Quiz settings without questions; carries no answer key at any level"""
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "subject_id": quiz.subject_id,
        "teacher_id": quiz.teacher_id,
        "status": quiz.status.value,
        "time_limit_minutes": quiz.time_limit_minutes,
        "passing_score": quiz.passing_score,
        "shuffle_questions": quiz.shuffle_questions,
        "shuffle_answers": quiz.shuffle_answers,
        "show_results": quiz.show_results,
        "start_date": isoformat(quiz.start_date),
        "end_date": isoformat(quiz.end_date),
        "created_at": isoformat(quiz.created_at),
        "updated_at": isoformat(quiz.updated_at),
        "question_count": question_count,
        "max_score": max_score
    }


def project_quiz(
    quiz: Quiz,
    questions: Sequence[Union[Question, PresentedQuestion]],
    level: ViewLevel,
    include_questions: bool = True
) -> Dict[str, Any]:
    question_rows = [
        item.question if isinstance(item, PresentedQuestion) else item
        for item in questions
    ]

    data = project_quiz_summary(
        quiz,
        len(question_rows),
        sum(question.points for question in question_rows)
    )

    if include_questions:
        rendered = []
        for item in questions:
            if isinstance(item, PresentedQuestion):
                rendered.append(project_question(item.question, level, item.options))
            else:
                rendered.append(project_question(item, level))
        data["questions"] = rendered

    return data


def project_answer(answer: Answer, level: ViewLevel) -> Dict[str, Any]:
    data = {
        "id": answer.id,
        "question_id": answer.question_id,
        "answer": answer.payload
    }

    if level == ViewLevel.FULL:
        data.update({
            "is_correct": answer.is_correct,
            "points_awarded": answer.points_awarded,
            "pending_review": answer.is_pending,
            "feedback": answer.feedback,
            "graded_at": isoformat(answer.graded_at)
        })

    return data


def project_attempt(
    attempt: QuizAttempt,
    level: ViewLevel,
    answers: Optional[Sequence[Answer]] = None,
    max_score: Optional[int] = None
) -> Dict[str, Any]:
    """Render an attempt; scores and answers only at FULL level"""
    data = {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "student_id": attempt.student_id,
        "status": attempt.status.value,
        "started_at": isoformat(attempt.started_at),
        "submitted_at": isoformat(attempt.submitted_at),
        "time_spent_seconds": attempt.time_spent_seconds
    }

    if level == ViewLevel.FULL:
        data.update({
            "score": attempt.score,
            "max_score": max_score,
            "percentage": attempt.percentage,
            "is_passed": attempt.is_passed
        })
        if answers is not None:
            data["answers"] = [project_answer(answer, level) for answer in answers]

    return data


def render_taking_view(
    actor: Actor,
    quiz: Quiz,
    attempt: QuizAttempt,
    presented: Sequence[PresentedQuestion]
) -> Dict[str, Any]:
    """Payload for a freshly started or resumed attempt"""
    level = resolve_view(actor, quiz, ViewPhase.TAKING)
    return {
        "attempt": project_attempt(attempt, ViewLevel.REDACTED),
        "quiz": project_quiz(quiz, presented, level)
    }


def render_results_view(
    actor: Actor,
    quiz: Quiz,
    attempt: QuizAttempt,
    questions: Sequence[Question],
    answers: Sequence[Answer]
) -> Dict[str, Any]:
    """Full grading detail of an attempt, or the reason it is withheld"""
    level = resolve_view(actor, quiz, ViewPhase.RESULTS, attempt)
    max_score = sum(question.points for question in questions)
    return {
        "attempt": project_attempt(attempt, level, answers, max_score),
        "quiz": project_quiz(quiz, questions, level)
    }


__all__ = [
    "ViewPhase",
    "ViewLevel",
    "results_released",
    "resolve_view",
    "project_option",
    "project_question",
    "project_quiz_summary",
    "project_quiz",
    "project_answer",
    "project_attempt",
    "render_taking_view",
    "render_results_view"
]
