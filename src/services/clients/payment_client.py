"""Payment provider client abstractions and implementations."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Annotated, Any

import stripe
from fastapi import Depends

from src.config import settings
from src.services.checkout.errors import NotFound, ProviderUnavailable

logger = logging.getLogger(__name__)


class PaymentProvider(ABC):
    """Abstract payment provider covering customers, sessions and intents.

    Implementations return plain dictionaries and raise only
    :class:`ProviderUnavailable` or :class:`NotFound`.
    """

    @abstractmethod
    async def find_customer_by_email(self, email: str) -> str | None:
        """Return the id of the first customer registered with this email."""

    @abstractmethod
    async def create_customer(self, params: dict[str, Any]) -> str:
        """Create a customer and return its id."""

    @abstractmethod
    async def update_customer(self, customer_id: str, params: dict[str, Any]) -> None:
        """Update name and addresses of an existing customer."""

    @abstractmethod
    async def create_coupon(
        self,
        *,
        amount_off: int,
        currency: str,
        name: str,
        idempotency_key: str | None = None,
    ) -> str:
        """Create a single-use fixed-amount coupon and return its id."""

    @abstractmethod
    async def create_checkout_session(
        self,
        params: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a checkout session and return it."""

    @abstractmethod
    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        """Return the session with its payment intent expanded."""

    @abstractmethod
    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        """Return a payment intent."""


class StripePaymentProvider(PaymentProvider):
    """Payment provider backed by the Stripe SDK."""

    def __init__(self, client: stripe.StripeClient) -> None:
        self._client = client

    async def find_customer_by_email(self, email: str) -> str | None:
        customers = await self._call(
            self._client.v1.customers.list,
            params={"email": email, "limit": 1},
        )
        data = customers.get("data") or []
        return data[0]["id"] if data else None

    async def create_customer(self, params: dict[str, Any]) -> str:
        customer = await self._call(self._client.v1.customers.create, params=params)
        return customer["id"]

    async def update_customer(self, customer_id: str, params: dict[str, Any]) -> None:
        await self._call(self._client.v1.customers.update, customer_id, params=params)

    async def create_coupon(
        self,
        *,
        amount_off: int,
        currency: str,
        name: str,
        idempotency_key: str | None = None,
    ) -> str:
        coupon = await self._call(
            self._client.v1.coupons.create,
            params={
                "amount_off": amount_off,
                "currency": currency,
                "duration": "once",
                "max_redemptions": 1,
                "name": name,
            },
            options=_request_options(idempotency_key),
        )
        return coupon["id"]

    async def create_checkout_session(
        self,
        params: dict[str, Any],
        *,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        return await self._call(
            self._client.v1.checkout.sessions.create,
            params=params,
            options=_request_options(idempotency_key),
        )

    async def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        return await self._call(
            self._client.v1.checkout.sessions.retrieve,
            session_id,
            params={"expand": ["payment_intent"]},
        )

    async def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any]:
        return await self._call(self._client.v1.payment_intents.retrieve, payment_intent_id)

    async def _call(self, method: Callable[..., Any], *args: Any, **kwargs: Any) -> dict:
        try:
            result = await asyncio.to_thread(method, *args, **kwargs)
        except stripe.InvalidRequestError as exc:
            if getattr(exc, "code", None) == "resource_missing":
                raise NotFound("Payment session not found") from exc
            logger.error("Stripe rejected request: %s", exc, exc_info=True)
            raise ProviderUnavailable("payment", "Payment provider rejected the request") from exc
        except stripe.StripeError as exc:
            logger.error("Stripe request failed: %s", exc, exc_info=True)
            raise ProviderUnavailable("payment", "Payment provider unavailable") from exc
        return _as_dict(result)


def _request_options(idempotency_key: str | None) -> dict[str, Any]:
    return {"idempotency_key": idempotency_key} if idempotency_key else {}


def _as_dict(value: Any) -> Any:
    """Recursively convert SDK objects into plain containers.

    ``StripeObject`` stopped subclassing ``dict`` in recent SDK releases, so it
    goes through ``to_dict()`` before the container walk.
    """
    if isinstance(value, stripe.StripeObject):
        value = value.to_dict()
    if isinstance(value, dict):
        return {key: _as_dict(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_as_dict(item) for item in value]
    return value


_payment_provider: PaymentProvider | None = None


def _initialize_payment_provider() -> PaymentProvider | None:
    if not settings.payments_enabled:
        return None

    client = stripe.StripeClient(
        settings.STRIPE_SECRET_KEY,
        max_network_retries=settings.STRIPE_MAX_NETWORK_RETRIES,
        http_client=stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS),
    )
    return StripePaymentProvider(client)


def get_payment_provider() -> PaymentProvider | None:
    """FastAPI dependency returning the configured payment provider if any."""

    global _payment_provider
    if _payment_provider is None:
        _payment_provider = _initialize_payment_provider()
    return _payment_provider


PaymentProviderDependency = Annotated[
    PaymentProvider | None,
    Depends(get_payment_provider),
]
