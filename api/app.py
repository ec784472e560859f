"""FastAPI application setup with security middleware."""

import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.routes import auth as auth_routes
from api.routes import chat as chat_routes
from api.routes import health as health_routes
from api.routes import notifications as notification_routes
from api.routes import programmes as programme_routes
from api.routes import referral as referral_routes
from api.routes import stripe_webhook as stripe_webhook_routes
from api.routes import subscription as subscription_routes
from api.routes import whatsapp_webhook as whatsapp_webhook_routes
from core.config import settings
from core.exceptions import (
    AuthorizationError,
    ExternalAPIError,
    KineAIError,
    NotFoundError,
    ValidationError,
)
from core.logging import configure_logging
from core.rate_limit import InMemoryRateLimitStore, RateLimitExceededError
from schemas.auth import AuthError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan context manager."""
    logger.info(f"🚀 Starting {settings.app_name} v{settings.version}")

    from database.connection import close_database, init_database

    try:
        await init_database()
        logger.info("✅ Database initialized successfully")
    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise

    yield

    try:
        await close_database()
        logger.info("✅ Database connections closed")
    except Exception as e:
        logger.warning(f"⚠️ Error closing database: {e}")

    logger.info("🛑 Application shutdown complete")


def _error_response(
    request: Request, status_code: int, error: str, exc: KineAIError
) -> JSONResponse:
    content: dict[str, Any] = {
        "error": error,
        "description": exc.message,
        "request_id": getattr(request.state, "request_id", None),
    }
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=status_code, content=content)


def create_app(rate_limit_store: InMemoryRateLimitStore | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        rate_limit_store: Counter store for the rate limiter; a fresh
            in-memory store is used when omitted.
    """
    configure_logging()

    app = FastAPI(
        title=settings.app_name,
        description="KineAI backend: subscriptions, webhooks and patient messaging",
        version=settings.version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.rate_limit_store = rate_limit_store or InMemoryRateLimitStore()

    # Security Headers Middleware
    @app.middleware("http")
    async def security_headers_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Add security headers to responses."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=(), payment=()"
        )

        if not settings.debug:
            response.headers["Content-Security-Policy"] = (
                "default-src 'self'; frame-ancestors 'none'; base-uri 'self';"
            )

        return response

    # Request ID and timing middleware
    @app.middleware("http")
    async def request_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Add request ID, timing and rate limit headers."""
        start_time = time.time()

        request_id = f"{int(start_time * 1000000)}"
        request.state.request_id = request_id

        response = await call_next(request)

        process_time = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        if hasattr(request.state, "rate_limit_remaining"):
            response.headers["X-RateLimit-Remaining"] = str(
                request.state.rate_limit_remaining
            )
            response.headers["X-RateLimit-Limit"] = str(request.state.rate_limit_limit)
            response.headers["X-RateLimit-Reset"] = str(
                int(time.time()) + request.state.rate_limit_reset
            )

        return response

    # Trusted Host Middleware (security)
    if not settings.debug:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=settings.allowed_methods,
        allow_headers=settings.allowed_headers,
        expose_headers=[
            "X-Request-ID",
            "X-Process-Time",
            "X-RateLimit-Remaining",
            "Retry-After",
        ],
    )

    # Global exception handlers
    @app.exception_handler(RateLimitExceededError)
    async def rate_limit_handler(
        request: Request, exc: RateLimitExceededError
    ) -> JSONResponse:
        """Reject a request over its route's limit."""
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=exc.to_response_body(),
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Handle authentication errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.error,
                "description": exc.description,
                "request_id": getattr(request.state, "request_id", None),
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error_response(request, status.HTTP_404_NOT_FOUND, "not_found", exc)

    @app.exception_handler(AuthorizationError)
    async def authorization_handler(
        request: Request, exc: AuthorizationError
    ) -> JSONResponse:
        return _error_response(request, status.HTTP_403_FORBIDDEN, "forbidden", exc)

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(
            request, status.HTTP_400_BAD_REQUEST, "validation_error", exc
        )

    @app.exception_handler(ExternalAPIError)
    async def external_api_handler(
        request: Request, exc: ExternalAPIError
    ) -> JSONResponse:
        logger.error(f"External service failure ({exc.service}): {exc.message}")
        return _error_response(
            request, status.HTTP_502_BAD_GATEWAY, "external_service_error", exc
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        """Handle validation errors."""
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "validation_error",
                "description": str(exc),
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(500)
    async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle internal server errors."""
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_server_error",
                "description": "An internal server error occurred",
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    # Include routers
    app.include_router(health_routes.router, prefix="/api/v1", tags=["Health"])
    app.include_router(
        auth_routes.router, prefix="/api/v1/auth", tags=["Authentication"]
    )
    app.include_router(
        subscription_routes.router, prefix="/api/v1/subscription", tags=["Subscription"]
    )
    app.include_router(
        referral_routes.router, prefix="/api/v1/referral", tags=["Referral"]
    )
    app.include_router(chat_routes.router, prefix="/api/v1/chat/kine", tags=["Chat"])
    app.include_router(
        notification_routes.router,
        prefix="/api/v1/notifications",
        tags=["Notifications"],
    )
    app.include_router(
        programme_routes.router, prefix="/api/v1/programmes", tags=["Programmes"]
    )
    app.include_router(stripe_webhook_routes.router, prefix="/webhook", tags=["Webhooks"])
    app.include_router(
        whatsapp_webhook_routes.router, prefix="/webhook", tags=["Webhooks"]
    )

    return app


# Create the app instance
app = create_app()
