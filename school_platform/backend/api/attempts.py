"""
School Platform Quiz Engine
Quiz attempt API routes
"""

from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, Query, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.connection import get_db
from ..dependencies import (
    require_any_role,
    require_student,
    require_teacher_or_admin,
    user_rate_limit
)
from ..schemas import GradeEssayRequest, QuizSubmissionRequest
from ..services.access import Actor
from ..services.attempt_manager import AttemptManager

# Router instance
router = APIRouter()


@router.get("/my-attempts", response_model=List[Dict[str, Any]])
async def list_my_attempts(
    subject_id: Optional[str] = Query(None, description="Filter by subject ID"),
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """List the calling student's attempts, newest first"""
    return await AttemptManager(db).list_my_attempts(actor, subject_id)


@router.post(
    "/quizzes/{quiz_id}/start",
    response_model=Dict[str, Any],
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(user_rate_limit)]
)
async def start_quiz_attempt(
    response: Response,
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Start a new attempt, or resume the one in progress (200)"""
    payload, created = await AttemptManager(db).start_attempt(quiz_id, actor)
    if not created:
        response.status_code = status.HTTP_200_OK
    return payload


@router.post(
    "/{attempt_id}/submit",
    response_model=Dict[str, Any],
    dependencies=[Depends(user_rate_limit)]
)
async def submit_quiz_attempt(
    request: QuizSubmissionRequest,
    attempt_id: str = Path(..., description="Attempt ID"),
    actor: Actor = Depends(require_student),
    db: AsyncSession = Depends(get_db)
):
    """Submit answers and close the attempt"""
    return await AttemptManager(db).submit_attempt(
        attempt_id,
        actor,
        request.answers,
        time_spent_seconds=request.time_spent_seconds
    )


@router.get("/{attempt_id}/results", response_model=Dict[str, Any])
async def get_attempt_results(
    attempt_id: str = Path(..., description="Attempt ID"),
    actor: Actor = Depends(require_any_role),
    db: AsyncSession = Depends(get_db)
):
    """Graded results of an attempt, as far as the caller may see them"""
    return await AttemptManager(db).get_results(attempt_id, actor)


@router.get("/quizzes/{quiz_id}/attempts", response_model=Dict[str, Any])
async def list_quiz_attempts(
    quiz_id: str = Path(..., description="Quiz ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """All attempts on a quiz (quiz owner or admin)"""
    return await AttemptManager(db).list_quiz_attempts(quiz_id, actor)


@router.put("/answers/{answer_id}/grade", response_model=Dict[str, Any])
async def grade_essay_answer(
    request: GradeEssayRequest,
    answer_id: str = Path(..., description="Answer ID"),
    actor: Actor = Depends(require_teacher_or_admin),
    db: AsyncSession = Depends(get_db)
):
    """Manually grade an essay answer"""
    return await AttemptManager(db).grade_essay(
        answer_id,
        actor,
        request.points_awarded,
        feedback=request.feedback
    )
