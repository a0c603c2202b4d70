"""FastAPI application factory and bootstrap helpers."""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.routes import include_api_routes
from src.config import settings
from src.services.clients.content_client import close_content_backend
from src.services.clients.geocoder_client import close_geocoder
from src.services.queue.order_retry_queue import OrderRetryQueue
from src.services.storage.redis_client import close_redis_client, get_redis_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup and shutdown events."""
    try:
        # The retry stream must accept entries before the first failure happens
        await OrderRetryQueue(get_redis_client()).ensure_group()
    except Exception:
        logger.exception("Failed preparing the order retry stream on startup")

    if not settings.payments_enabled:
        logger.warning("STRIPE_SECRET_KEY not set, checkout endpoints are disabled")
    if not settings.content_backend_configured:
        logger.warning("CONTENT_BACKEND_TOKEN not set, catalog requests are unauthenticated")

    yield

    await close_content_backend()
    await close_geocoder()
    await close_redis_client()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Artisan Storefront Checkout",
        description="Cart, address resolution and hosted payment checkout service",
        version="1.0.0",
        lifespan=lifespan,
    )

    _configure_cors(app)
    include_api_routes(app)

    return app


def _configure_cors(app: FastAPI) -> None:
    """Allow broad access in non-production environments."""

    if settings.is_production:
        return

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
