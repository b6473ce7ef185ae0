"""
School Platform Quiz Engine
Entity store: async data access for quizzes, attempts and answers
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, desc, delete
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    Answer, AttemptStatus, Enrollment, Question, Quiz, QuizAttempt,
    QuizStatus, Subject, User, UserRole
)
from ..utils.helpers import utcnow


class EntityStore:
    """Thin query layer over one request-scoped session.

    Nothing here commits implicitly; the caller decides the transaction
    boundary with ``commit``/``rollback``.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # Users and enrollment
    async def find_user_by_id(self, user_id: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_subject_by_id(self, subject_id: str) -> Optional[Subject]:
        result = await self.session.execute(select(Subject).where(Subject.id == subject_id))
        return result.scalar_one_or_none()

    async def find_enrollment(self, student_id: str, subject_id: str) -> Optional[Enrollment]:
        result = await self.session.execute(
            select(Enrollment).where(
                Enrollment.student_id == student_id,
                Enrollment.subject_id == subject_id
            )
        )
        return result.scalar_one_or_none()

    # Quizzes
    async def find_quiz_by_id(self, quiz_id: str) -> Optional[Quiz]:
        result = await self.session.execute(select(Quiz).where(Quiz.id == quiz_id))
        return result.scalar_one_or_none()

    async def list_quizzes(
        self,
        role: UserRole,
        actor_id: str,
        subject_id: Optional[str] = None,
        status: Optional[QuizStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Quiz]:
        """Quizzes visible to a role: students see published quizzes of
        their enrolled subjects, teachers their own, admins everything"""
        query = select(Quiz)

        if role == UserRole.STUDENT:
            query = query.join(
                Enrollment, Enrollment.subject_id == Quiz.subject_id
            ).where(
                Enrollment.student_id == actor_id,
                Quiz.status == QuizStatus.PUBLISHED
            )
        elif role == UserRole.TEACHER:
            query = query.where(Quiz.teacher_id == actor_id)

        if subject_id:
            query = query.where(Quiz.subject_id == subject_id)

        if status and role != UserRole.STUDENT:
            query = query.where(Quiz.status == status)

        query = query.order_by(desc(Quiz.created_at)).offset(skip).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def question_stats(self, quiz_ids: Sequence[str]) -> Dict[str, Tuple[int, int]]:
        """(question count, total points) per quiz id"""
        if not quiz_ids:
            return {}

        result = await self.session.execute(
            select(
                Question.quiz_id,
                func.count(Question.id),
                func.coalesce(func.sum(Question.points), 0)
            )
            .where(Question.quiz_id.in_(list(quiz_ids)))
            .group_by(Question.quiz_id)
        )
        return {row[0]: (int(row[1]), int(row[2])) for row in result.all()}

    async def create_quiz(self, **fields: Any) -> Quiz:
        quiz = Quiz(**fields)
        self.session.add(quiz)
        await self.session.flush()
        return quiz

    async def delete_quiz(self, quiz: Quiz) -> None:
        await self.session.execute(delete(Quiz).where(Quiz.id == quiz.id))

    # Questions
    async def find_questions_by_quiz(self, quiz_id: str) -> List[Question]:
        """Questions of a quiz in display order"""
        result = await self.session.execute(
            select(Question)
            .where(Question.quiz_id == quiz_id)
            .order_by(Question.order_index)
        )
        return list(result.scalars().all())

    async def find_question_by_id(self, question_id: str) -> Optional[Question]:
        result = await self.session.execute(select(Question).where(Question.id == question_id))
        return result.scalar_one_or_none()

    async def find_question_by_order(self, quiz_id: str, order_index: int) -> Optional[Question]:
        result = await self.session.execute(
            select(Question).where(
                Question.quiz_id == quiz_id,
                Question.order_index == order_index
            )
        )
        return result.scalar_one_or_none()

    async def next_order_index(self, quiz_id: str) -> int:
        result = await self.session.execute(
            select(func.max(Question.order_index)).where(Question.quiz_id == quiz_id)
        )
        current = result.scalar()
        return 0 if current is None else current + 1

    async def create_question(self, **fields: Any) -> Question:
        question = Question(**fields)
        self.session.add(question)
        await self.session.flush()
        return question

    async def delete_question(self, question: Question) -> None:
        await self.session.execute(delete(Question).where(Question.id == question.id))

    # Attempts
    async def find_attempt(self, quiz_id: str, student_id: str) -> Optional[QuizAttempt]:
        result = await self.session.execute(
            select(QuizAttempt).where(
                QuizAttempt.quiz_id == quiz_id,
                QuizAttempt.student_id == student_id
            )
        )
        return result.scalar_one_or_none()

    async def find_attempt_by_id(
        self,
        attempt_id: str,
        for_update: bool = False
    ) -> Optional[QuizAttempt]:
        """Load an attempt; ``for_update`` takes a row lock where supported"""
        query = select(QuizAttempt).where(QuizAttempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create_attempt(self, quiz_id: str, student_id: str) -> QuizAttempt:
        """Insert a new IN_PROGRESS attempt.

        Raises ``IntegrityError`` when the (quiz, student) pair already has
        an attempt; the session must then be rolled back.
        """
        attempt = QuizAttempt(
            quiz_id=quiz_id,
            student_id=student_id,
            status=AttemptStatus.IN_PROGRESS,
            started_at=utcnow()
        )
        self.session.add(attempt)
        await self.session.flush()
        return attempt

    async def update_attempt_aggregate(
        self,
        attempt: QuizAttempt,
        score: int,
        percentage: float,
        is_passed: Optional[bool],
        status: AttemptStatus,
        submitted_at: Optional[datetime] = None,
        time_spent_seconds: Optional[int] = None
    ) -> QuizAttempt:
        attempt.score = score
        attempt.percentage = percentage
        attempt.is_passed = is_passed
        attempt.status = status
        if submitted_at is not None:
            attempt.submitted_at = submitted_at
        if time_spent_seconds is not None:
            attempt.time_spent_seconds = time_spent_seconds
        await self.session.flush()
        return attempt

    async def count_attempts_for_quiz(self, quiz_id: str) -> int:
        result = await self.session.execute(
            select(func.count(QuizAttempt.id)).where(QuizAttempt.quiz_id == quiz_id)
        )
        return result.scalar() or 0

    async def list_attempts_for_quiz(self, quiz_id: str) -> List[Tuple[QuizAttempt, User, int, int]]:
        """Attempts of a quiz with their students, answered-question and
        pending-review counts, newest submission first"""
        answer_counts = (
            select(
                Answer.attempt_id,
                func.count(Answer.payload).label("answered"),
                func.count(Answer.id).filter(Answer.points_awarded.is_(None)).label("pending")
            )
            .group_by(Answer.attempt_id)
            .subquery()
        )

        result = await self.session.execute(
            select(
                QuizAttempt,
                User,
                func.coalesce(answer_counts.c.answered, 0),
                func.coalesce(answer_counts.c.pending, 0)
            )
            .join(User, User.id == QuizAttempt.student_id)
            .outerjoin(answer_counts, answer_counts.c.attempt_id == QuizAttempt.id)
            .where(QuizAttempt.quiz_id == quiz_id)
            .order_by(
                QuizAttempt.submitted_at.is_(None),
                desc(QuizAttempt.submitted_at),
                desc(QuizAttempt.started_at)
            )
        )
        return [(row[0], row[1], int(row[2]), int(row[3])) for row in result.all()]

    async def list_attempts_for_student(
        self,
        student_id: str,
        subject_id: Optional[str] = None
    ) -> List[Tuple[QuizAttempt, Quiz]]:
        """A student's attempts with their quizzes, newest first"""
        query = (
            select(QuizAttempt, Quiz)
            .join(Quiz, Quiz.id == QuizAttempt.quiz_id)
            .where(QuizAttempt.student_id == student_id)
        )

        if subject_id:
            query = query.where(Quiz.subject_id == subject_id)

        query = query.order_by(desc(QuizAttempt.started_at))

        result = await self.session.execute(query)
        return [(row[0], row[1]) for row in result.all()]

    # Answers
    async def create_answers_batch(self, attempt_id: str, outcomes: Sequence[Any]) -> List[Answer]:
        """Insert one Answer per grading outcome"""
        answers = [
            Answer(
                attempt_id=attempt_id,
                question_id=outcome.question_id,
                payload=outcome.payload,
                is_correct=outcome.is_correct,
                points_awarded=outcome.points_awarded
            )
            for outcome in outcomes
        ]
        self.session.add_all(answers)
        await self.session.flush()
        return answers

    async def find_answers_by_attempt(self, attempt_id: str) -> List[Answer]:
        """Answers of an attempt in question display order"""
        result = await self.session.execute(
            select(Answer)
            .join(Question, Question.id == Answer.question_id)
            .where(Answer.attempt_id == attempt_id)
            .order_by(Question.order_index)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def find_answer_by_id(self, answer_id: str) -> Optional[Answer]:
        result = await self.session.execute(select(Answer).where(Answer.id == answer_id))
        return result.scalar_one_or_none()

    async def update_answer_grade(
        self,
        answer: Answer,
        points_awarded: int,
        is_correct: bool,
        feedback: Optional[str],
        graded_by_id: str
    ) -> Answer:
        answer.points_awarded = points_awarded
        answer.is_correct = is_correct
        answer.feedback = feedback
        answer.graded_by_id = graded_by_id
        answer.graded_at = utcnow()
        await self.session.flush()
        return answer

    # Transactions
    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


__all__ = ["EntityStore"]
