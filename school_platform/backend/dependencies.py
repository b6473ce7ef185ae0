"""
School Platform Quiz Engine
Dependency injection: bearer authentication, role gates and rate limiting
"""

import logging
from typing import Optional, Dict, Any, List

import jwt
import redis.asyncio as redis
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from .database.connection import get_db
from .database.models import UserRole, UserStatus
from .database.store import EntityStore
from .exceptions import (
    AuthenticationException,
    AuthorizationException,
    RateLimitException,
    TokenInvalidException
)
from .services.access import Actor
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Security scheme
security = HTTPBearer(auto_error=False)

# Redis connection
_redis_client: Optional[redis.Redis] = None


async def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client instance, or None when Redis is not configured or down"""
    global _redis_client

    settings = get_settings()
    if not settings.REDIS_URL:
        return None

    if _redis_client is None:
        try:
            client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_keepalive=True,
                health_check_interval=30
            )
            # Test connection
            await client.ping()
            _redis_client = client
            logger.info("Redis connection established")
        except redis.RedisError as e:
            logger.warning(f"Redis connection failed: {e}")
            _redis_client = None

    return _redis_client


async def close_redis_client() -> None:
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """Verify and decode JWT token"""
    settings = get_settings()

    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except jwt.ExpiredSignatureError:
        raise TokenInvalidException("Token has expired")
    except jwt.InvalidTokenError:
        raise TokenInvalidException("Invalid token")


async def get_actor_from_token(token: str, db: AsyncSession) -> Actor:
    """Resolve a bearer token into the acting user's (id, role)"""
    payload = verify_jwt_token(token)
    user_id = payload.get("sub")

    if not user_id:
        raise TokenInvalidException("Invalid token payload")

    # Check token blacklist (if Redis is available)
    redis_client = await get_redis_client()
    if redis_client:
        is_blacklisted = await redis_client.get(f"blacklist:{token}")
        if is_blacklisted:
            raise TokenInvalidException("Token has been revoked")

    user = await EntityStore(db).find_user_by_id(str(user_id))

    if not user:
        raise AuthenticationException("User not found")

    if user.status != UserStatus.ACTIVE:
        raise AuthorizationException("User account is not active")

    return Actor(actor_id=user.id, role=user.role)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[Actor]:
    """Get current authenticated actor (optional)"""

    if not credentials:
        return None

    return await get_actor_from_token(credentials.credentials, db)


async def require_authentication(
    actor: Optional[Actor] = Depends(get_current_actor)
) -> Actor:
    """Require user authentication"""

    if not actor:
        raise AuthenticationException("Authentication required")

    return actor


def require_role(allowed_roles: List[UserRole]):
    """Factory function to create role-based dependencies"""

    async def check_role(actor: Actor = Depends(require_authentication)) -> Actor:
        if actor.role not in allowed_roles:
            raise AuthorizationException(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return check_role


# Pre-built role dependencies
require_student = require_role([UserRole.STUDENT])
require_teacher_or_admin = require_role([UserRole.TEACHER, UserRole.ADMIN])
require_any_role = require_role([UserRole.STUDENT, UserRole.TEACHER, UserRole.ADMIN])


class RateLimiter:
    """Fixed-window request limiter keyed on the authenticated actor"""

    def __init__(self, requests: Optional[int] = None, window: int = 60, scope: str = "user"):
        self.requests = requests
        self.window = window
        self.scope = scope

    async def __call__(
        self,
        request: Request,
        actor: Actor = Depends(require_authentication)
    ) -> bool:
        redis_client = await get_redis_client()

        if not redis_client:
            # If Redis is not available, allow all requests
            return True

        limit = self.requests or get_settings().RATE_LIMIT_PER_MINUTE
        key = f"rate_limit:{self.scope}:{actor.actor_id}"

        current_requests = await redis_client.incr(key)
        if current_requests == 1:
            # First request in window
            await redis_client.expire(key, self.window)

        if current_requests > limit:
            logger.warning(f"Rate limit exceeded for {actor.actor_id} on {request.url.path}")
            ttl = await redis_client.ttl(key)
            raise RateLimitException(
                "Rate limit exceeded. Please try again later.",
                retry_after=ttl if ttl and ttl > 0 else self.window
            )

        return True


# Common rate limiters
user_rate_limit = RateLimiter(window=60, scope="user")


__all__ = [
    "security",
    "get_redis_client",
    "close_redis_client",
    "verify_jwt_token",
    "get_actor_from_token",
    "get_current_actor",
    "require_authentication",
    "require_role",
    "require_student",
    "require_teacher_or_admin",
    "require_any_role",
    "RateLimiter",
    "user_rate_limit"
]
