import os

# Settings are cached on first use; select the testing profile before any import
os.environ["ENVIRONMENT"] = "testing"

from datetime import timedelta

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from school_platform.config import get_settings

get_settings.cache_clear()

from school_platform.backend.app import create_app
from school_platform.backend.database.connection import (
    close_database_connections,
    get_async_session,
    init_database
)
from school_platform.backend.database.models import (
    Enrollment, Question, QuestionType, Quiz, QuizStatus, Subject,
    User, UserRole, UserStatus
)
from school_platform.backend.utils.helpers import utcnow

MCQ_OPTIONS = [
    {"id": "a", "text": "3", "is_correct": False},
    {"id": "b", "text": "4", "is_correct": True},
    {"id": "c", "text": "5", "is_correct": False},
]

TRUE_FALSE_OPTIONS = [
    {"id": "t", "text": "True", "is_correct": True},
    {"id": "f", "text": "False", "is_correct": False},
]


class Factory:
    """Creates committed rows for tests"""

    def __init__(self, session):
        self.session = session
        self._counter = 0

    async def _save(self, obj):
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def user(self, role=UserRole.STUDENT, status=UserStatus.ACTIVE, name=None):
        self._counter += 1
        name = name or f"{role.value}-{self._counter}"
        return await self._save(User(
            email=f"{name}@school.test",
            name=name,
            role=role,
            status=status
        ))

    async def subject(self, teacher, name="Mathematics"):
        return await self._save(Subject(name=name, code="MATH101", teacher_id=teacher.id))

    async def enroll(self, student, subject):
        return await self._save(Enrollment(student_id=student.id, subject_id=subject.id))

    async def quiz(self, teacher, subject, **overrides):
        fields = {
            "title": "Arithmetic",
            "status": QuizStatus.PUBLISHED,
            "passing_score": 60,
            "show_results": True,
            "subject_id": subject.id,
            "teacher_id": teacher.id,
        }
        fields.update(overrides)
        return await self._save(Quiz(**fields))

    async def question(self, quiz, question_type=QuestionType.MULTIPLE_CHOICE, points=1,
                       options=None, order_index=None, prompt="2 + 2 = ?", explanation=None):
        if order_index is None:
            self._counter += 1
            order_index = self._counter
        if options is None and question_type == QuestionType.MULTIPLE_CHOICE:
            options = [dict(option) for option in MCQ_OPTIONS]
        if options is None and question_type == QuestionType.TRUE_FALSE:
            options = [dict(option) for option in TRUE_FALSE_OPTIONS]
        return await self._save(Question(
            quiz_id=quiz.id,
            order_index=order_index,
            question_type=question_type,
            prompt=prompt,
            explanation=explanation,
            points=points,
            options=options
        ))


@pytest.fixture
async def database():
    await init_database()
    yield
    await close_database_connections()


@pytest.fixture
async def session(database):
    async with get_async_session() as session:
        yield session


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
async def classroom(factory):
    """A teacher with a subject and one enrolled student"""
    teacher = await factory.user(UserRole.TEACHER, name="teacher")
    student = await factory.user(UserRole.STUDENT, name="student")
    subject = await factory.subject(teacher)
    await factory.enroll(student, subject)
    return {"teacher": teacher, "student": student, "subject": subject}


@pytest.fixture
async def client(database):
    app = create_app()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


def make_token(user_id, expires_in=timedelta(hours=1)):
    settings = get_settings()
    payload = {"sub": user_id, "exp": utcnow() + expires_in}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user):
    return {"Authorization": f"Bearer {make_token(user.id)}"}
