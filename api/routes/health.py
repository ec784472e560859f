"""Service status routes used by the load balancer and the ops dashboard."""

import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from core.config import settings
from core.rate_limit import RateLimited
from database.connection import check_database_health
from schemas.common import HealthResponse

router = APIRouter()


def integration_status() -> dict[str, bool]:
    """Which third-party credentials are present. Missing ones do not block readiness."""
    return {
        "stripe": bool(settings.stripe_api_key and settings.stripe_webhook_secret),
        "whatsapp": bool(settings.whatsapp_access_token and settings.whatsapp_phone_id),
        "whatsapp_webhook": bool(settings.whatsapp_webhook_token),
        "openai": bool(settings.openai_api_key),
    }


@router.get("/health", response_model=HealthResponse)
async def health_check(_: RateLimited = None) -> HealthResponse:
    return HealthResponse(
        status="healthy", version=settings.version, timestamp=int(time.time())
    )


@router.get("/health/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(_: RateLimited = None) -> dict[str, Any]:
    """503 until the database answers."""
    database = await check_database_health()
    if database["status"] != "healthy":
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "database": database},
        )
    return {
        "status": "ready",
        "database": database,
        "integrations": integration_status(),
        "timestamp": int(time.time()),
    }


@router.get("/health/detailed")
async def detailed_health_check(request: Request) -> dict[str, Any]:
    """Configuration overview for local debugging; 404 outside debug mode."""
    if not settings.debug:
        raise HTTPException(
            status_code=404,
            detail={"error": "not_found", "description": "Endpoint not available"},
        )

    return {
        "status": "healthy",
        "version": settings.version,
        "environment": settings.environment.value,
        "request_id": getattr(request.state, "request_id", None),
        "firebase_project_id": settings.firebase_project_id,
        "allowed_origins": settings.allowed_origins,
        "trust_proxy_headers": settings.trust_proxy_headers,
        "integrations": integration_status(),
        "rate_limit": {
            "requests": settings.rate_limit_requests,
            "window": settings.rate_limit_window,
        },
    }
