"""Confirms payment status with the provider after the checkout redirect."""

from __future__ import annotations

import logging
from typing import Any

from src.models.checkout import PaymentStatus, PaymentVerification, SessionDetails
from src.services.clients.payment_client import PaymentProvider

logger = logging.getLogger(__name__)


class PaymentVerifier:
    """Read-only verification of a checkout session; safe to repeat."""

    def __init__(self, payment_provider: PaymentProvider) -> None:
        self._provider = payment_provider

    async def verify(self, session_id: str) -> PaymentVerification:
        """Fetch the authoritative session and map it to a payment status."""
        session = await self._provider.retrieve_checkout_session(session_id)
        intent = await self._payment_intent(session)
        status = _status_of(session, intent)

        logger.info(
            "Payment verified",
            extra={
                "session_id": session_id,
                "status": status.value,
                "payment_status": session.get("payment_status"),
            },
        )
        return PaymentVerification(status=status, session=_details(session, intent))

    async def session_details(self, session_id: str) -> SessionDetails:
        session = await self._provider.retrieve_checkout_session(session_id)
        intent = session.get("payment_intent")
        return _details(session, intent if isinstance(intent, dict) else None)

    async def _payment_intent(self, session: dict[str, Any]) -> dict[str, Any] | None:
        intent = session.get("payment_intent")
        if isinstance(intent, dict) or intent is None:
            return intent
        # Not expanded by the provider: fetch it separately
        return await self._provider.retrieve_payment_intent(intent)


def _status_of(session: dict[str, Any], intent: dict[str, Any] | None) -> PaymentStatus:
    if session.get("payment_status") == "paid":
        return PaymentStatus.PAID
    if session.get("status") == "expired":
        return PaymentStatus.EXPIRED
    if intent is not None and intent.get("status") == "canceled":
        return PaymentStatus.CANCELED
    return PaymentStatus.UNPAID


def _details(session: dict[str, Any], intent: dict[str, Any] | None) -> SessionDetails:
    customer_details = session.get("customer_details") or {}
    metadata = session.get("metadata") or {}
    return SessionDetails(
        id=session["id"],
        amount_total=session.get("amount_total"),
        currency=session.get("currency"),
        customer_email=session.get("customer_email") or customer_details.get("email"),
        payment_status=session.get("payment_status"),
        status=session.get("status"),
        metadata={str(key): str(value) for key, value in metadata.items()},
        created=session.get("created"),
        payment_intent_status=intent.get("status") if intent else None,
    )
