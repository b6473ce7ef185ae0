"""
School Platform Quiz Engine
FastAPI application factory and configuration
"""

import logging
import time
import traceback

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import API routers
from .api import attempts, quizzes

from .database.connection import check_database_health
from .dependencies import get_redis_client
from .exceptions import AppException
from ..config import get_settings

# Configure logging
logger = logging.getLogger(__name__)


class RequestContextMiddleware:
    """Middleware to add request timing and an optional access log line"""

    def __init__(self, app, log_requests: bool = False):
        self.app = app
        self.log_requests = log_requests

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http":
            start_time = time.time()
            response_status = {}

            async def send_wrapper(message):
                if message["type"] == "http.response.start":
                    process_time = time.time() - start_time
                    response_status["code"] = message["status"]
                    message["headers"] = list(message.get("headers", []))
                    message["headers"].append(
                        (b"x-process-time", f"{process_time:.6f}".encode())
                    )
                await send(message)

            await self.app(scope, receive, send_wrapper)

            if self.log_requests:
                logger.info(
                    f"{scope['method']} {scope['path']} -> {response_status.get('code')} "
                    f"in {time.time() - start_time:.3f}s"
                )
        else:
            await self.app(scope, receive, send)


def error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "details": jsonable_encoder(details or {}),
            "timestamp": time.time()
        }
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""

    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Quiz authoring, attempt lifecycle and grading API",
        version=settings.VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        default_response_class=JSONResponse
    )

    # Add custom middleware
    app.add_middleware(RequestContextMiddleware, log_requests=settings.ENABLE_REQUEST_LOGGING)

    # Add security middleware
    if not settings.DEBUG and settings.allowed_hosts != ["*"]:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.allowed_hosts
        )

    # Add compression middleware
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=settings.allowed_hosts != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["x-process-time"]
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        """Handle custom application exceptions"""
        if exc.status_code >= 500:
            logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
        return error_response(exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors"""
        return error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"errors": exc.errors()}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions"""
        return error_response(exc.status_code, "HTTP_ERROR", str(exc.detail))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions"""
        logger.exception(f"Unexpected error: {exc}")

        if settings.DEBUG:
            return error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_ERROR",
                str(exc),
                {"traceback": traceback.format_exc()}
            )
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An internal server error occurred"
        )

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check():
        """API health check endpoint"""
        return {
            "status": "healthy",
            "api_version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "timestamp": time.time()
        }

    # API status endpoint
    @app.get("/status", tags=["System"])
    async def api_status():
        """Detailed API status information"""
        database = await check_database_health()
        redis_client = await get_redis_client()

        return {
            "api": settings.APP_NAME,
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "debug_mode": settings.DEBUG,
            "database": database,
            "cache": "connected" if redis_client else "disabled",
            "endpoints": {
                "attempts": "/attempts",
                "quizzes": "/quizzes"
            }
        }

    # Include API routers
    app.include_router(
        attempts.router,
        prefix="/attempts",
        tags=["Quiz Attempts"]
    )

    app.include_router(
        quizzes.router,
        prefix="/quizzes",
        tags=["Quizzes"]
    )

    logger.info("Backend API configured successfully")
    return app


# Export the app factory
__all__ = ["create_app"]
