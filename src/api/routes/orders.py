"""Operational routes for orders whose persistence was deferred."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query

from src.api.dependencies import OrderPersisterDependency
from src.api.errors import to_http_exception
from src.services.checkout.errors import CheckoutError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/retry", summary="Replay queued order persistence attempts")
async def retry_pending_orders(
    persister: OrderPersisterDependency,
    count: int | None = Query(default=None, ge=1, le=500),
) -> dict[str, int]:
    try:
        recorded = await persister.replay_pending(count)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc
    logger.info("Replayed pending orders", extra={"recorded": recorded})
    return {"recorded": recorded}
