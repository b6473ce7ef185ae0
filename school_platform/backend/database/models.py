"""
School Platform Quiz Engine
SQLAlchemy Database Models
"""

import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, Text, Float,
    ForeignKey, JSON, Enum, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship, validates

from ..utils.helpers import new_id, utcnow

# Base class for all models
Base = declarative_base()


# Enums
class UserRole(enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"


class UserStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class QuizStatus(enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class QuestionType(enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"


class AttemptStatus(enum.Enum):
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    GRADED = "graded"


AUTO_GRADED_TYPES = frozenset({QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE})


# Base model with common fields
class BaseModel(Base):
    __abstract__ = True

    id = Column(String(36), primary_key=True, default=new_id, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# User Management Models (owned by the account service, read here)
class User(BaseModel):
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    role = Column(Enum(UserRole), nullable=False, index=True)
    status = Column(Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False)

    @validates('email')
    def validate_email(self, key, email):
        assert '@' in email, "Invalid email format"
        return email.lower()


class Subject(BaseModel):
    __tablename__ = "subjects"

    name = Column(String(255), nullable=False)
    code = Column(String(50))
    teacher_id = Column(String(36), ForeignKey('users.id'), nullable=False)


class Enrollment(BaseModel):
    __tablename__ = "enrollments"

    student_id = Column(String(36), ForeignKey('users.id', ondelete="CASCADE"), nullable=False)
    subject_id = Column(String(36), ForeignKey('subjects.id', ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint('student_id', 'subject_id', name='_student_subject_uc'),
    )


# Quiz and Assessment Models
class Quiz(BaseModel):
    __tablename__ = "quizzes"

    title = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(Enum(QuizStatus), default=QuizStatus.DRAFT, nullable=False)
    time_limit_minutes = Column(Integer)
    passing_score = Column(Integer, default=60, nullable=False)
    shuffle_questions = Column(Boolean, default=False, nullable=False)
    shuffle_answers = Column(Boolean, default=False, nullable=False)
    show_results = Column(Boolean, default=True, nullable=False)
    start_date = Column(DateTime)
    end_date = Column(DateTime)

    # Foreign Keys
    subject_id = Column(String(36), ForeignKey('subjects.id', ondelete="CASCADE"), nullable=False)
    teacher_id = Column(String(36), ForeignKey('users.id'), nullable=False)

    # Relationships
    questions = relationship(
        "Question", back_populates="quiz", cascade="all, delete-orphan",
        passive_deletes=True, order_by="Question.order_index"
    )
    attempts = relationship(
        "QuizAttempt", back_populates="quiz", cascade="all, delete-orphan",
        passive_deletes=True
    )

    # Constraints
    __table_args__ = (
        Index('idx_quiz_status_window', 'status', 'start_date', 'end_date'),
        CheckConstraint('passing_score >= 0 AND passing_score <= 100', name='valid_passing_score'),
        CheckConstraint(
            'start_date IS NULL OR end_date IS NULL OR start_date <= end_date',
            name='valid_availability_window'
        ),
    )


class Question(BaseModel):
    __tablename__ = "questions"

    quiz_id = Column(String(36), ForeignKey('quizzes.id', ondelete="CASCADE"), nullable=False)
    order_index = Column(Integer, nullable=False)
    question_type = Column(Enum(QuestionType), nullable=False)
    prompt = Column(Text, nullable=False)
    explanation = Column(Text)  # Shown with full results only
    points = Column(Integer, default=1, nullable=False)
    max_words = Column(Integer)  # Essay questions only
    options = Column(JSON)  # [{"id": ..., "text": ..., "is_correct": ...}]

    # Relationships
    quiz = relationship("Quiz", back_populates="questions")

    @property
    def is_auto_gradable(self) -> bool:
        return self.question_type in AUTO_GRADED_TYPES

    # Constraints
    __table_args__ = (
        UniqueConstraint('quiz_id', 'order_index', name='_quiz_question_order_uc'),
        CheckConstraint('points > 0', name='positive_points'),
        CheckConstraint('order_index >= 0', name='non_negative_order'),
    )


class QuizAttempt(BaseModel):
    __tablename__ = "quiz_attempts"

    quiz_id = Column(String(36), ForeignKey('quizzes.id', ondelete="CASCADE"), nullable=False)
    student_id = Column(String(36), ForeignKey('users.id', ondelete="CASCADE"), nullable=False)
    status = Column(Enum(AttemptStatus), default=AttemptStatus.IN_PROGRESS, nullable=False)
    started_at = Column(DateTime, default=utcnow, nullable=False)
    submitted_at = Column(DateTime)
    time_spent_seconds = Column(Integer)
    score = Column(Integer)  # Null until submitted
    percentage = Column(Float)
    is_passed = Column(Boolean)  # Null until fully graded

    # Relationships
    quiz = relationship("Quiz", back_populates="attempts")
    answers = relationship(
        "Answer", back_populates="attempt", cascade="all, delete-orphan",
        passive_deletes=True
    )

    # Constraints
    __table_args__ = (
        UniqueConstraint('quiz_id', 'student_id', name='_quiz_student_attempt_uc'),
        Index('idx_attempt_status_date', 'status', 'submitted_at'),
    )


class Answer(BaseModel):
    __tablename__ = "answers"

    attempt_id = Column(String(36), ForeignKey('quiz_attempts.id', ondelete="CASCADE"), nullable=False)
    question_id = Column(String(36), ForeignKey('questions.id', ondelete="CASCADE"), nullable=False)
    payload = Column(JSON(none_as_null=True))  # Null when the question was left unanswered
    is_correct = Column(Boolean)
    points_awarded = Column(Integer)  # Null while pending manual grading
    feedback = Column(Text)
    graded_by_id = Column(String(36), ForeignKey('users.id'))
    graded_at = Column(DateTime)

    # Relationships
    attempt = relationship("QuizAttempt", back_populates="answers")

    @property
    def is_pending(self) -> bool:
        return self.points_awarded is None

    # Constraints
    __table_args__ = (
        UniqueConstraint('attempt_id', 'question_id', name='_attempt_question_uc'),
    )


__all__ = [
    'Base', 'BaseModel',
    'User', 'Subject', 'Enrollment',
    'Quiz', 'Question', 'QuizAttempt', 'Answer',
    # Enums
    'UserRole', 'UserStatus', 'QuizStatus', 'QuestionType', 'AttemptStatus',
    'AUTO_GRADED_TYPES'
]
