"""System-level routes such as health checks."""

from __future__ import annotations

import httpx
from fastapi import APIRouter

from src.api.dependencies import RedisDependency
from src.config import settings

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(client: RedisDependency) -> dict[str, str]:
    """Health check endpoint with Redis and content backend connectivity checks."""

    try:
        redis_status = "connected" if await client.ping() else "disconnected"
    except Exception:
        redis_status = "disconnected"

    try:
        async with httpx.AsyncClient() as http_client:
            response = await http_client.get(
                f"{settings.CONTENT_BACKEND_URL.rstrip('/')}/_health",
                timeout=5.0,
            )
            content_status = "connected" if response.is_success else "disconnected"
    except Exception:
        content_status = "disconnected"

    return {
        "status": "healthy",
        "redis": redis_status,
        "content_backend": content_status,
        "payments": "enabled" if settings.payments_enabled else "disabled",
        "environment": settings.ENVIRONMENT,
    }
