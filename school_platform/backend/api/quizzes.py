"""
School Platform Quiz Engine
Quiz authoring API routes
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Query, Path, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db
from ..database.models import QuestionType, Quiz, QuizStatus
from ..database.store import EntityStore
from ..dependencies import require_any_role, require_teacher_or_admin
from ..exceptions import (
    AuthorizationException,
    ConflictException,
    InvalidStateException,
    QuestionNotFoundException,
    QuizNotFoundException,
    SubjectNotFoundException,
    ValidationException
)
from ..schemas import QuestionOption
from ..services.access import Actor, PermissionChecker
from ..services.attempt_manager import check_quiz_availability, ensure_enrolled
from ..services.authoring import (
    merged_question_definition,
    merged_quiz_values,
    validate_question_definition,
    validate_quiz_settings
)
from ..services.projector import (
    ViewLevel,
    ViewPhase,
    project_question,
    project_quiz,
    project_quiz_summary,
    resolve_view
)
from ..utils.helpers import to_naive_utc

# Configure logging
logger = logging.getLogger(__name__)

# Router instance
router = APIRouter()

# Columns that may be omitted but never set to null
NON_NULL_QUIZ_FIELDS = (
    "title", "subject_id", "passing_score", "shuffle_questions",
    "shuffle_answers", "show_results", "status"
)
NON_NULL_QUESTION_FIELDS = ("question_type", "prompt", "points", "order_index")

# Question fields that change how existing answers were graded
GRADING_FIELDS = ("question_type", "options", "points")


# Pydantic models
class QuizCreateRequest(BaseModel):
    title: str = Field(..., max_length=200)
    description: Optional[str] = None
    subject_id: str
    time_limit_minutes: Optional[int] = None
    passing_score: int = 60
    shuffle_questions: bool = False
    shuffle_answers: bool = False
    show_results: bool = True
    status: QuizStatus = QuizStatus.DRAFT
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Title is required')
        return v.strip()


class QuizUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    subject_id: Optional[str] = None
    time_limit_minutes: Optional[int] = None
    passing_score: Optional[int] = None
    shuffle_questions: Optional[bool] = None
    shuffle_answers: Optional[bool] = None
    show_results: Optional[bool] = None
    status: Optional[QuizStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator('title')
    @classmethod
    def validate_title(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Title cannot be blank')
        return v.strip() if v else v


class QuestionCreateRequest(BaseModel):
    question_type: QuestionType
    prompt: str
    points: int = 1
    order_index: Optional[int] = Field(None, ge=0)
    explanation: Optional[str] = None
    options: Optional[List[QuestionOption]] = None
    max_words: Optional[int] = None

    @field_validator('prompt')
    @classmethod
    def validate_prompt(cls, v):
        if not v or len(v.strip()) == 0:
            raise ValueError('Question text is required')
        return v.strip()


class QuestionUpdateRequest(BaseModel):
    question_type: Optional[QuestionType] = None
    prompt: Optional[str] = None
    points: Optional[int] = None
    order_index: Optional[int] = Field(None, ge=0)
    explanation: Optional[str] = None
    options: Optional[List[QuestionOption]] = None
    max_words: Optional[int] = None

    @field_validator('prompt')
    @classmethod
    def validate_prompt(cls, v):
        if v is not None and len(v.strip()) == 0:
            raise ValueError('Question text cannot be blank')
        return v.strip() if v else v


# Helper functions
def reject_nulls(changes: Dict[str, Any], fields) -> None:
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationException(f"{field} cannot be null", field=field)


async def get_quiz_or_404(store: EntityStore, quiz_id: str) -> Quiz:
    quiz = await store.find_quiz_by_id(quiz_id)
    if not quiz:
        raise QuizNotFoundException(quiz_id)
    return quiz


async def check_subject_access(store: EntityStore, actor: Actor, subject_id: str):
    """The subject must exist and a teacher must be the one teaching it"""
    subject = await store.find_subject_by_id(subject_id)
    if not subject:
        raise SubjectNotFoundException(subject_id)

    if actor.is_teacher and subject.teacher_id != actor.actor_id:
        raise AuthorizationException("You can only create quizzes for subjects you teach")

    return subject


async def ensure_no_attempts(store: EntityStore, quiz: Quiz, action: str) -> None:
    attempt_count = await store.count_attempts_for_quiz(quiz.id)
    if attempt_count > 0:
        logger.warning(f"Refused to {action} on quiz {quiz.id}: {attempt_count} attempts exist")
        raise InvalidStateException(
            f"Cannot {action} for a quiz with {attempt_count} student attempts. "
            f"Archive it instead.",
            rule_name="quiz_has_attempts",
            details={"quiz_id": quiz.id, "attempt_count": attempt_count}
        )


def order_conflict(quiz_id: str, order_index: int) -> ConflictException:
    return ConflictException(
        f"Another question already uses order {order_index}",
        conflict_type="question_order",
        details={"quiz_id": quiz_id, "order_index": order_index}
    )


async def ensure_order_free(
    store: EntityStore,
    quiz_id: str,
    order_index: int,
    question_id: Optional[str] = None
) -> None:
    existing = await store.find_question_by_order(quiz_id, order_index)
    if existing and existing.id != question_id:
        raise order_conflict(quiz_id, order_index)


# API Routes
@router.get("", response_model=List[Dict[str, Any]])
async def list_quizzes(
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db),
    subject_id: Optional[str] = Query(None, description="Filter by subject ID"),
    status: Optional[QuizStatus] = Query(None, description="Filter by status"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(50, ge=1, le=100, description="Number of records to return")
):
    """List quizzes based on user role and filters"""
    store = EntityStore(db)

    quizzes = await store.list_quizzes(
        actor.role,
        actor.actor_id,
        subject_id=subject_id,
        status=status,
        skip=skip,
        limit=limit
    )
    stats = await store.question_stats([quiz.id for quiz in quizzes])

    return [
        project_quiz_summary(quiz, *stats.get(quiz.id, (0, 0)))
        for quiz in quizzes
    ]


@router.post("", response_model=Dict[str, Any], status_code=status.HTTP_201_CREATED)
async def create_quiz(
    request: QuizCreateRequest,
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Create a new quiz"""
    store = EntityStore(db)
    subject = await check_subject_access(store, actor, request.subject_id)

    values = request.model_dump()
    values["start_date"] = to_naive_utc(values["start_date"])
    values["end_date"] = to_naive_utc(values["end_date"])
    validate_quiz_settings(values)

    quiz = await store.create_quiz(
        teacher_id=actor.actor_id if actor.is_teacher else subject.teacher_id,
        **values
    )
    await store.commit()

    logger.info(f"Quiz {quiz.id} created by {actor.actor_id}")

    return project_quiz(quiz, [], ViewLevel.FULL)


@router.get("/{quiz_id}", response_model=Dict[str, Any])
async def get_quiz(
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    """Quiz detail; answer keys only for its owner and admins"""
    store = EntityStore(db)
    quiz = await get_quiz_or_404(store, quiz_id)

    level = resolve_view(actor, quiz, ViewPhase.QUIZ)

    if actor.is_student:
        check_quiz_availability(quiz)
        await ensure_enrolled(store, quiz, actor)

    questions = await store.find_questions_by_quiz(quiz.id)
    data = project_quiz(quiz, questions, level)

    if level == ViewLevel.FULL:
        data["attempt_count"] = await store.count_attempts_for_quiz(quiz.id)

    return data


@router.put("/{quiz_id}", response_model=Dict[str, Any])
async def update_quiz(
    request: QuizUpdateRequest,
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update quiz settings"""
    store = EntityStore(db)
    quiz = await get_quiz_or_404(store, quiz_id)
    PermissionChecker.require_quiz_manager(actor, quiz, action="update")

    changes = request.model_dump(exclude_unset=True)
    reject_nulls(changes, NON_NULL_QUIZ_FIELDS)

    for field in ("start_date", "end_date"):
        if field in changes:
            changes[field] = to_naive_utc(changes[field])

    if "subject_id" in changes and changes["subject_id"] != quiz.subject_id:
        await check_subject_access(store, actor, changes["subject_id"])

    validate_quiz_settings(merged_quiz_values(quiz, changes))

    for field, value in changes.items():
        setattr(quiz, field, value)

    await store.commit()
    await db.refresh(quiz)

    logger.info(f"Quiz {quiz.id} updated by {actor.actor_id}: {sorted(changes)}")

    questions = await store.find_questions_by_quiz(quiz.id)
    return project_quiz(quiz, questions, ViewLevel.FULL)


@router.delete("/{quiz_id}", response_model=Dict[str, str])
async def delete_quiz(
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete a quiz that nobody has attempted yet"""
    store = EntityStore(db)
    quiz = await get_quiz_or_404(store, quiz_id)
    PermissionChecker.require_quiz_manager(actor, quiz, action="delete")

    await ensure_no_attempts(store, quiz, "delete")

    await store.delete_quiz(quiz)
    await store.commit()

    logger.info(f"Quiz {quiz_id} deleted by {actor.actor_id}")

    return {"message": "Quiz deleted successfully"}


@router.post(
    "/{quiz_id}/questions",
    response_model=Dict[str, Any],
    status_code=status.HTTP_201_CREATED
)
async def add_question(
    request: QuestionCreateRequest,
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Add a question to a quiz"""
    store = EntityStore(db)
    quiz = await get_quiz_or_404(store, quiz_id)
    PermissionChecker.require_quiz_manager(actor, quiz, action="add questions to")

    await ensure_no_attempts(store, quiz, "add questions")

    options = validate_question_definition(
        request.question_type,
        request.points,
        options=request.options,
        max_words=request.max_words
    )

    order_index = request.order_index
    if order_index is None:
        order_index = await store.next_order_index(quiz.id)
    else:
        await ensure_order_free(store, quiz.id, order_index)

    try:
        question = await store.create_question(
            quiz_id=quiz.id,
            order_index=order_index,
            question_type=request.question_type,
            prompt=request.prompt,
            explanation=request.explanation,
            points=request.points,
            max_words=request.max_words,
            options=options
        )
        await store.commit()
    except IntegrityError:
        await store.rollback()
        raise order_conflict(quiz_id, order_index)

    logger.info(f"Question {question.id} added to quiz {quiz_id} by {actor.actor_id}")

    return project_question(question, ViewLevel.FULL)


@router.put("/questions/{question_id}", response_model=Dict[str, Any])
async def update_question(
    request: QuestionUpdateRequest,
    question_id: str = Path(..., description="Question ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Update a question"""
    store = EntityStore(db)
    question = await store.find_question_by_id(question_id)
    if not question:
        raise QuestionNotFoundException(question_id)

    quiz = await get_quiz_or_404(store, question.quiz_id)
    PermissionChecker.require_quiz_manager(actor, quiz, action="update questions in")

    changes = request.model_dump(exclude_unset=True)
    reject_nulls(changes, NON_NULL_QUESTION_FIELDS)

    if any(field in changes for field in GRADING_FIELDS):
        await ensure_no_attempts(store, quiz, "change answer keys or points")

    definition = merged_question_definition(question, changes)
    options = validate_question_definition(**definition)

    if "order_index" in changes:
        await ensure_order_free(store, quiz.id, changes["order_index"], question_id=question.id)

    question.question_type = definition["question_type"]
    question.points = definition["points"]
    question.max_words = definition["max_words"]
    question.options = options
    for field in ("prompt", "explanation", "order_index"):
        if field in changes:
            setattr(question, field, changes[field])

    # Rollback expires the loaded rows
    quiz_id, order_index = quiz.id, question.order_index
    try:
        await store.commit()
    except IntegrityError:
        await store.rollback()
        raise order_conflict(quiz_id, order_index)

    await db.refresh(question)

    logger.info(f"Question {question.id} updated by {actor.actor_id}: {sorted(changes)}")

    return project_question(question, ViewLevel.FULL)


@router.delete("/questions/{question_id}", response_model=Dict[str, str])
async def delete_question(
    question_id: str = Path(..., description="Question ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Delete a question from a quiz nobody has attempted yet"""
    store = EntityStore(db)
    question = await store.find_question_by_id(question_id)
    if not question:
        raise QuestionNotFoundException(question_id)

    quiz = await get_quiz_or_404(store, question.quiz_id)
    PermissionChecker.require_quiz_manager(actor, quiz, action="delete questions from")

    await ensure_no_attempts(store, quiz, "delete questions")

    await store.delete_question(question)
    await store.commit()

    logger.info(f"Question {question_id} deleted from quiz {quiz.id} by {actor.actor_id}")

    return {"message": "Question deleted successfully"}
