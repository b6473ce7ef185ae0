"""
School Platform Quiz Engine
Caller identity as seen by the services, and ownership checks
"""

from dataclasses import dataclass

from ..database.models import Quiz, UserRole
from ..exceptions import AuthorizationException, ResourceOwnershipException


@dataclass(frozen=True)
class Actor:
    """The (actor id, role) pair resolved from a request's credentials"""

    actor_id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_teacher(self) -> bool:
        return self.role == UserRole.TEACHER

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT


class PermissionChecker:
    """Permission checking system"""

    @staticmethod
    def can_manage_quiz(actor: Actor, quiz: Quiz) -> bool:
        """Admins manage every quiz, teachers only the ones they created"""
        if actor.is_admin:
            return True
        return actor.is_teacher and quiz.teacher_id == actor.actor_id

    @staticmethod
    def require_quiz_manager(actor: Actor, quiz: Quiz, action: str = "manage") -> None:
        if not PermissionChecker.can_manage_quiz(actor, quiz):
            raise ResourceOwnershipException(
                "quiz", quiz.id,
                message=f"You can only {action} your own quizzes"
            )

    @staticmethod
    def require_role(actor: Actor, *roles: UserRole) -> None:
        if actor.role not in roles:
            raise AuthorizationException(
                f"Access denied. Required roles: {[role.value for role in roles]}"
            )


__all__ = ["Actor", "PermissionChecker"]
