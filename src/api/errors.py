"""Translation of checkout errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from src.services.checkout.errors import (
    CheckoutError,
    NotFound,
    PaymentNotConfirmed,
    PersistenceError,
    ProviderUnavailable,
    UnresolvedAddressError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_BY_ERROR: list[tuple[type[CheckoutError], int]] = [
    (PersistenceError, status.HTTP_502_BAD_GATEWAY),
    (PaymentNotConfirmed, status.HTTP_402_PAYMENT_REQUIRED),
    (ProviderUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (UnresolvedAddressError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
]


def status_for(exc: CheckoutError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: CheckoutError) -> HTTPException:
    """Build the HTTPException returned to the browser for a checkout error."""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("Request failed: %s", exc, extra={"code": exc.code})
    return HTTPException(status_code=status_code, detail=exc.to_detail())


def payments_disabled() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "payments_disabled", "message": "Payments are not configured"},
    )
