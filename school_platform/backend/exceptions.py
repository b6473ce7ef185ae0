"""
School Platform Quiz Engine
Custom exception classes for structured error handling

Every error carries an HTTP status, a stable error code and a details dict;
the application's exception handler renders them as JSON.
"""

from typing import Optional, Dict, Any
from fastapi import status


class AppException(Exception):
    """Base application exception with structured error information"""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)


# Authentication (401)
class AuthenticationException(AppException):
    """Missing credentials or an unknown user"""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class TokenInvalidException(AuthenticationException):
    """Raised when the bearer token is invalid, expired or revoked"""

    def __init__(self, message: str = "Invalid access token"):
        super().__init__(message, details={"action": "login_required"})


# Authorization (403)
class AuthorizationException(AppException):
    """The caller is known but may not do this"""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "ACCESS_DENIED"


class ResourceOwnershipException(AuthorizationException):
    """Raised when the caller neither owns the resource nor is an admin"""

    def __init__(self, resource_type: str, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"You don't have access to this {resource_type}",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class EnrollmentRequiredException(AuthorizationException):
    """Raised when a student must be enrolled in the subject to access a quiz"""

    def __init__(self, subject_id: str):
        super().__init__(
            "You are not enrolled in this subject",
            details={"subject_id": subject_id, "rule": "enrollment_required"}
        )


class ResultsNotAvailableException(AuthorizationException):
    """Raised when a student asks for results the quiz does not release yet"""

    error_code = "RESULTS_NOT_AVAILABLE"

    def __init__(self, attempt_id: str):
        super().__init__("Results are not available yet", details={"attempt_id": attempt_id})


# Validation (422)
class ValidationException(AppException):
    """Raised when input validation fails"""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if field:
            details["field"] = field
        if value is not None:
            details["provided_value"] = str(value)
        super().__init__(message, details)


class InvalidQuestionException(ValidationException):
    """Raised when a submitted answer references a question outside the quiz"""

    error_code = "INVALID_QUESTION"

    def __init__(self, question_id: str, quiz_id: str):
        super().__init__(
            f"Invalid question ID: {question_id}",
            field="question_id",
            value=question_id,
            details={"quiz_id": quiz_id}
        )


class ValueRangeException(ValidationException):
    """A number outside its allowed bounds (either bound may be open)"""

    error_code = "OUT_OF_RANGE"

    def __init__(
        self,
        field: str,
        value: Any,
        min_value: Optional[Any] = None,
        max_value: Optional[Any] = None
    ):
        bounds = []
        if min_value is not None:
            bounds.append(f">= {min_value}")
        if max_value is not None:
            bounds.append(f"<= {max_value}")

        super().__init__(
            f"{field} must be {' and '.join(bounds)}" if bounds else f"{field} is out of range",
            field=field,
            value=value,
            details={"min_value": min_value, "max_value": max_value}
        )


# Missing resources (404)
class NotFoundException(AppException):
    """Raised when a referenced row does not exist"""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    resource_type = "resource"

    def __init__(self, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{self.resource_type.replace('_', ' ').capitalize()} not found",
            details={"resource_type": self.resource_type, "resource_id": resource_id}
        )


class SubjectNotFoundException(NotFoundException):
    resource_type = "subject"


class QuizNotFoundException(NotFoundException):
    resource_type = "quiz"


class QuestionNotFoundException(NotFoundException):
    resource_type = "question"


class AttemptNotFoundException(NotFoundException):
    resource_type = "quiz_attempt"


class AnswerNotFoundException(NotFoundException):
    resource_type = "answer"


# Conflicts and lifecycle (409)
class ConflictException(AppException):
    """Raised when an authoring change collides with existing rows"""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT"

    def __init__(
        self,
        message: str = "Conflict with current state",
        conflict_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if conflict_type:
            details["conflict_type"] = conflict_type
        super().__init__(message, details)


class InvalidStateException(AppException):
    """Raised when an operation does not fit the entity's lifecycle phase"""

    status_code = status.HTTP_409_CONFLICT
    error_code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        rule_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if rule_name:
            details["violated_rule"] = rule_name
        super().__init__(message, details)


class QuizNotAvailableException(InvalidStateException):
    """Quiz is unpublished or outside its start/end window"""

    def __init__(self, reason: str, quiz_id: str):
        super().__init__(
            f"Quiz not available: {reason}",
            rule_name="quiz_availability",
            details={"quiz_id": quiz_id, "reason": reason}
        )


class AttemptAlreadyCompletedException(InvalidStateException):
    """Raised when a student starts a quiz they have already submitted"""

    error_code = "ALREADY_COMPLETED"

    def __init__(self, attempt_id: str, quiz_id: str):
        super().__init__(
            "You have already completed this quiz",
            rule_name="single_attempt",
            details={"attempt_id": attempt_id, "quiz_id": quiz_id}
        )


# Timing (400)
class TimeLimitExceededException(AppException):
    """Raised when an attempt is submitted after its time limit"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "TIME_LIMIT_EXCEEDED"

    def __init__(self, attempt_id: str, elapsed_seconds: int, allowed_seconds: int):
        super().__init__(
            "Time limit exceeded",
            details={
                "attempt_id": attempt_id,
                "elapsed_seconds": elapsed_seconds,
                "allowed_seconds": allowed_seconds
            }
        )


# Rate limiting (429)
class RateLimitException(AppException):
    """Raised when rate limit is exceeded"""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[int] = None):
        super().__init__(message, details={"retry_after_seconds": retry_after} if retry_after else None)


__all__ = [
    # Base
    "AppException",

    # Authentication
    "AuthenticationException",
    "TokenInvalidException",

    # Authorization
    "AuthorizationException",
    "ResourceOwnershipException",
    "EnrollmentRequiredException",
    "ResultsNotAvailableException",

    # Validation
    "ValidationException",
    "InvalidQuestionException",
    "ValueRangeException",

    # Resources
    "NotFoundException",
    "SubjectNotFoundException",
    "QuizNotFoundException",
    "QuestionNotFoundException",
    "AttemptNotFoundException",
    "AnswerNotFoundException",

    # Conflicts and lifecycle
    "ConflictException",
    "InvalidStateException",
    "QuizNotAvailableException",
    "AttemptAlreadyCompletedException",
    "TimeLimitExceededException",

    # Rate Limiting
    "RateLimitException"
]
