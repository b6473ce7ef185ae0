"""
School Platform Quiz Engine
Quiz attempt lifecycle: start/resume, submit, essay grading and results

States per (quiz, student): no attempt, IN_PROGRESS, SUBMITTED, GRADED.
Submit and grade lock the attempt row and commit answers and aggregate
together; start leaves the final word to the (quiz, student) unique key.
"""

import logging
import random
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import AttemptStatus, Quiz, QuizAttempt, QuizStatus, UserRole
from ..database.store import EntityStore
from ..exceptions import (
    AnswerNotFoundException,
    AttemptAlreadyCompletedException,
    AttemptNotFoundException,
    AuthorizationException,
    EnrollmentRequiredException,
    InvalidQuestionException,
    InvalidStateException,
    QuizNotAvailableException,
    QuizNotFoundException,
    TimeLimitExceededException,
    ValidationException
)
from ..schemas import SubmittedAnswer
from ..utils.helpers import utcnow
from ...config import Settings, get_settings
from .access import Actor, PermissionChecker
from .projector import (
    ViewLevel,
    project_answer,
    project_attempt,
    render_results_view,
    render_taking_view,
    results_released
)
from .randomizer import arrange_questions
from .scoring import compute_aggregate, grade_answer, validate_manual_grade

# Configure logging
logger = logging.getLogger(__name__)


def check_quiz_availability(quiz: Quiz, now: Optional[datetime] = None) -> None:
    """Raise unless the quiz is published and ``now`` lies in its window"""
    now = now or utcnow()

    if quiz.status != QuizStatus.PUBLISHED:
        raise QuizNotAvailableException("Quiz is not published", quiz.id)

    if quiz.start_date and now < quiz.start_date:
        raise QuizNotAvailableException("Quiz has not started yet", quiz.id)

    if quiz.end_date and now > quiz.end_date:
        raise QuizNotAvailableException("Quiz has ended", quiz.id)


async def ensure_enrolled(store: EntityStore, quiz: Quiz, actor: Actor) -> None:
    enrollment = await store.find_enrollment(actor.actor_id, quiz.subject_id)
    if not enrollment:
        logger.warning(f"Student {actor.actor_id} not enrolled in subject {quiz.subject_id}")
        raise EnrollmentRequiredException(quiz.subject_id)


class AttemptManager:
    """Orchestrates one request's worth of attempt operations"""

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        rng: Optional[random.Random] = None
    ):
        self.store = EntityStore(session)
        self.settings = settings or get_settings()
        self.rng = rng

    async def _get_quiz(self, quiz_id: str) -> Quiz:
        quiz = await self.store.find_quiz_by_id(quiz_id)
        if not quiz:
            raise QuizNotFoundException(quiz_id)
        return quiz

    async def _taking_view(self, actor: Actor, quiz: Quiz, attempt: QuizAttempt) -> Dict[str, Any]:
        questions = await self.store.find_questions_by_quiz(quiz.id)
        presented = arrange_questions(
            questions,
            shuffle_questions=quiz.shuffle_questions,
            shuffle_answers=quiz.shuffle_answers,
            rng=self.rng
        )
        return render_taking_view(actor, quiz, attempt, presented)

    async def _resume(self, actor: Actor, quiz: Quiz, attempt: QuizAttempt) -> Dict[str, Any]:
        if attempt.status != AttemptStatus.IN_PROGRESS:
            logger.warning(
                f"Student {actor.actor_id} tried to restart completed attempt {attempt.id}"
            )
            raise AttemptAlreadyCompletedException(attempt.id, quiz.id)

        logger.info(f"Attempt {attempt.id} resumed by student {actor.actor_id}")
        return await self._taking_view(actor, quiz, attempt)

    async def start_attempt(self, quiz_id: str, actor: Actor) -> Tuple[Dict[str, Any], bool]:
        """Start or resume the caller's attempt on a quiz.

        Returns the taking-phase payload and whether a new attempt was
        created (False on resume).
        """
        PermissionChecker.require_role(actor, UserRole.STUDENT)

        quiz = await self._get_quiz(quiz_id)
        check_quiz_availability(quiz)
        await ensure_enrolled(self.store, quiz, actor)

        existing = await self.store.find_attempt(quiz.id, actor.actor_id)
        if existing:
            return await self._resume(actor, quiz, existing), False

        try:
            attempt = await self.store.create_attempt(quiz.id, actor.actor_id)
            await self.store.commit()
        except IntegrityError:
            # Lost the race to a concurrent start; the stored row wins
            await self.store.rollback()
            quiz = await self._get_quiz(quiz_id)
            existing = await self.store.find_attempt(quiz.id, actor.actor_id)
            if not existing:
                raise
            return await self._resume(actor, quiz, existing), False

        logger.info(f"Attempt {attempt.id} started on quiz {quiz.id} by student {actor.actor_id}")
        return await self._taking_view(actor, quiz, attempt), True

    async def submit_attempt(
        self,
        attempt_id: str,
        actor: Actor,
        answers: Sequence[SubmittedAnswer],
        time_spent_seconds: Optional[int] = None
    ) -> Dict[str, Any]:
        """Grade and close an in-progress attempt"""
        PermissionChecker.require_role(actor, UserRole.STUDENT)

        attempt = await self.store.find_attempt_by_id(attempt_id, for_update=True)
        if not attempt:
            raise AttemptNotFoundException(attempt_id)

        if attempt.student_id != actor.actor_id:
            raise AuthorizationException("You can only submit your own quiz attempts")

        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidStateException(
                "Quiz attempt has already been submitted",
                rule_name="attempt_in_progress",
                details={"attempt_id": attempt.id, "status": attempt.status.value}
            )

        quiz = await self._get_quiz(attempt.quiz_id)

        now = utcnow()
        elapsed = max(0, int((now - attempt.started_at).total_seconds()))

        if quiz.time_limit_minutes:
            allowed = quiz.time_limit_minutes * 60 + self.settings.QUIZ_SUBMISSION_GRACE_SECONDS
            if elapsed > allowed:
                logger.warning(
                    f"Attempt {attempt.id} submitted after {elapsed}s, limit {allowed}s"
                )
                raise TimeLimitExceededException(attempt.id, elapsed, allowed)

        questions = await self.store.find_questions_by_quiz(quiz.id)
        questions_by_id = {question.id: question for question in questions}

        outcomes = []
        answered = set()
        for submitted in answers:
            question = questions_by_id.get(submitted.question_id)
            if question is None:
                raise InvalidQuestionException(submitted.question_id, quiz.id)
            if submitted.question_id in answered:
                raise ValidationException(
                    "Question answered more than once",
                    field="question_id",
                    value=submitted.question_id
                )
            answered.add(submitted.question_id)
            outcomes.append(grade_answer(question, submitted.answer))

        for question in questions:
            if question.id not in answered:
                outcomes.append(grade_answer(question, None))

        aggregate = compute_aggregate(questions, outcomes, quiz.passing_score)
        status = AttemptStatus.GRADED if aggregate.fully_graded else AttemptStatus.SUBMITTED

        await self.store.create_answers_batch(attempt.id, outcomes)
        await self.store.update_attempt_aggregate(
            attempt,
            score=aggregate.score,
            percentage=aggregate.percentage,
            is_passed=aggregate.is_passed,
            status=status,
            submitted_at=now,
            time_spent_seconds=time_spent_seconds if time_spent_seconds is not None else elapsed
        )
        await self.store.commit()

        logger.info(
            f"Attempt {attempt.id} submitted: {aggregate.score}/{aggregate.max_score} "
            f"({status.value})"
        )

        response = {
            "attempt": project_attempt(attempt, ViewLevel.REDACTED),
            "results_available": results_released(quiz, attempt)
        }
        if response["results_available"]:
            stored = await self.store.find_answers_by_attempt(attempt.id)
            response["results"] = render_results_view(actor, quiz, attempt, questions, stored)

        return response

    async def grade_essay(
        self,
        answer_id: str,
        actor: Actor,
        points_awarded: int,
        feedback: Optional[str] = None
    ) -> Dict[str, Any]:
        """Manually grade an essay answer and recompute its attempt"""
        answer = await self.store.find_answer_by_id(answer_id)
        if not answer:
            raise AnswerNotFoundException(answer_id)

        attempt = await self.store.find_attempt_by_id(answer.attempt_id, for_update=True)
        quiz = await self._get_quiz(attempt.quiz_id)
        PermissionChecker.require_quiz_manager(actor, quiz, action="grade answers for")

        question = await self.store.find_question_by_id(answer.question_id)
        is_correct = validate_manual_grade(question, points_awarded)

        await self.store.update_answer_grade(
            answer,
            points_awarded=points_awarded,
            is_correct=is_correct,
            feedback=feedback,
            graded_by_id=actor.actor_id
        )

        answers = await self.store.find_answers_by_attempt(attempt.id)
        questions = await self.store.find_questions_by_quiz(quiz.id)
        aggregate = compute_aggregate(questions, answers, quiz.passing_score)
        status = AttemptStatus.GRADED if aggregate.fully_graded else AttemptStatus.SUBMITTED

        await self.store.update_attempt_aggregate(
            attempt,
            score=aggregate.score,
            percentage=aggregate.percentage,
            is_passed=aggregate.is_passed,
            status=status
        )
        await self.store.commit()

        logger.info(
            f"Answer {answer.id} graded {points_awarded}/{question.points} by {actor.actor_id}; "
            f"attempt {attempt.id} now {status.value}"
        )

        return {
            "answer": project_answer(answer, ViewLevel.FULL),
            "attempt": project_attempt(attempt, ViewLevel.FULL, max_score=aggregate.max_score)
        }

    async def get_results(self, attempt_id: str, actor: Actor) -> Dict[str, Any]:
        attempt = await self.store.find_attempt_by_id(attempt_id)
        if not attempt:
            raise AttemptNotFoundException(attempt_id)

        quiz = await self._get_quiz(attempt.quiz_id)
        questions = await self.store.find_questions_by_quiz(quiz.id)
        answers = await self.store.find_answers_by_attempt(attempt.id)
        return render_results_view(actor, quiz, attempt, questions, answers)

    async def list_quiz_attempts(self, quiz_id: str, actor: Actor) -> Dict[str, Any]:
        """Every attempt on a quiz, for its owner or an admin"""
        quiz = await self._get_quiz(quiz_id)
        PermissionChecker.require_quiz_manager(actor, quiz, action="view attempts for")

        stats = await self.store.question_stats([quiz.id])
        question_count, max_score = stats.get(quiz.id, (0, 0))

        rows = await self.store.list_attempts_for_quiz(quiz.id)

        attempts = []
        for attempt, student, answered, pending in rows:
            item = project_attempt(attempt, ViewLevel.FULL, max_score=max_score)
            item.update({
                "student": {"id": student.id, "name": student.name, "email": student.email},
                "answered_count": answered,
                "pending_review_count": pending
            })
            attempts.append(item)

        return {
            "quiz_id": quiz.id,
            "question_count": question_count,
            "max_score": max_score,
            "total": len(attempts),
            "attempts": attempts
        }

    async def list_my_attempts(
        self,
        actor: Actor,
        subject_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """The caller's own attempts; scores only where results are released"""
        PermissionChecker.require_role(actor, UserRole.STUDENT)

        rows = await self.store.list_attempts_for_student(actor.actor_id, subject_id)
        stats = await self.store.question_stats([quiz.id for _, quiz in rows])

        items = []
        for attempt, quiz in rows:
            released = results_released(quiz, attempt)
            level = ViewLevel.FULL if released else ViewLevel.REDACTED
            item = project_attempt(attempt, level, max_score=stats.get(quiz.id, (0, 0))[1])
            item.update({
                "results_available": released,
                "quiz": {
                    "id": quiz.id,
                    "title": quiz.title,
                    "subject_id": quiz.subject_id,
                    "time_limit_minutes": quiz.time_limit_minutes
                }
            })
            items.append(item)

        return items


__all__ = ["AttemptManager", "check_quiz_availability", "ensure_enrolled"]
