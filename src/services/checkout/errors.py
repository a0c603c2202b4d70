"""Error taxonomy shared by the pricing and checkout pipeline.

Provider and network errors are converted into these classes inside the
client adapters, so nothing above the component boundary ever sees a raw
Stripe, httpx or Redis exception.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for every error surfaced to the checkout UI."""

    code = "checkout_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ValidationError(CheckoutError):
    """Recovered locally and shown inline, no retry needed."""

    code = "validation_error"


class EmptyCart(ValidationError):
    code = "empty_cart"

    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message)


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


class PromoCodeRejected(ValidationError):
    """Raised with ``code`` set to the rejection reason."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message, code=reason)
        self.reason = reason


class UnresolvedAddressError(CheckoutError):
    """The address was never geocoded or changed since its last resolution."""

    code = "unresolved_address"


class NotFound(CheckoutError):
    code = "not_found"


class ProviderUnavailable(CheckoutError):
    """A geocoding, payment or content provider failed; safe to retry."""

    code = "provider_unavailable"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(message)
        self.provider = provider


class PaymentNotConfirmed(CheckoutError):
    code = "payment_not_confirmed"

    def __init__(self, status: str, message: str | None = None) -> None:
        super().__init__(message or f"Payment not confirmed (status={status})")
        self.status = status


class PersistenceError(CheckoutError):
    """Payment succeeded but the order could not be recorded."""

    code = "order_persistence_failed"

    def __init__(
        self,
        message: str,
        *,
        session_id: str,
        retry_queued: bool = False,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.retry_queued = retry_queued

    def to_detail(self) -> dict[str, str]:
        detail = super().to_detail()
        detail["session_id"] = self.session_id
        detail["retry_queued"] = "true" if self.retry_queued else "false"
        return detail
