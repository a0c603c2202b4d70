"""Tests for payment verification."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.models.checkout import PaymentStatus
from src.services.checkout.errors import NotFound
from src.services.checkout.payment_verifier import PaymentVerifier
from src.services.clients.payment_client import PaymentProvider


def _provider(session, intent=None):
    provider = AsyncMock(spec=PaymentProvider)
    provider.retrieve_checkout_session.return_value = session
    provider.retrieve_payment_intent.return_value = intent
    return provider


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("session", "expected"),
    [
        ({"id": "cs", "payment_status": "paid", "status": "complete"}, PaymentStatus.PAID),
        ({"id": "cs", "payment_status": "unpaid", "status": "expired"}, PaymentStatus.EXPIRED),
        (
            {
                "id": "cs",
                "payment_status": "unpaid",
                "status": "open",
                "payment_intent": {"id": "pi", "status": "canceled"},
            },
            PaymentStatus.CANCELED,
        ),
        ({"id": "cs", "payment_status": "unpaid", "status": "open"}, PaymentStatus.UNPAID),
    ],
)
async def test_status_mapping(session, expected):
    verification = await PaymentVerifier(_provider(session)).verify("cs")

    assert verification.status is expected
    assert verification.is_paid is (expected is PaymentStatus.PAID)


@pytest.mark.asyncio
async def test_unexpanded_intent_is_fetched_separately():
    provider = _provider(
        {"id": "cs", "payment_status": "unpaid", "status": "open", "payment_intent": "pi_1"},
        intent={"id": "pi_1", "status": "canceled"},
    )

    verification = await PaymentVerifier(provider).verify("cs")

    provider.retrieve_payment_intent.assert_awaited_once_with("pi_1")
    assert verification.status is PaymentStatus.CANCELED
    assert verification.session.payment_intent_status == "canceled"


@pytest.mark.asyncio
async def test_verification_is_read_only_and_repeatable():
    session = {
        "id": "cs",
        "payment_status": "paid",
        "status": "complete",
        "amount_total": 2490,
        "currency": "eur",
        "customer_details": {"email": "camille@example.com"},
        "metadata": {"pending_order_id": "p-1", "total": "24.90"},
    }
    provider = _provider(session)
    verifier = PaymentVerifier(provider)

    first = await verifier.verify("cs")
    second = await verifier.verify("cs")

    assert first == second
    assert first.session.customer_email == "camille@example.com"
    assert first.session.metadata["pending_order_id"] == "p-1"
    provider.create_checkout_session.assert_not_called()


@pytest.mark.asyncio
async def test_unknown_session_propagates_not_found():
    provider = AsyncMock(spec=PaymentProvider)
    provider.retrieve_checkout_session.side_effect = NotFound("Payment session not found")

    with pytest.raises(NotFound):
        await PaymentVerifier(provider).verify("cs_missing")


@pytest.mark.asyncio
async def test_verify_endpoint(client, payment_provider, client_payload):
    response = await client.post(
        "/checkout/session",
        json={
            "order": {
                "client": client_payload,
                "orderedProducts": [{"quantity": 1, "productId": "prod-bonnet"}],
            },
            "successUrl": "https://shop.example.test/success",
            "cancelUrl": "https://shop.example.test/cart",
        },
    )
    session_id = response.json()["sessionId"]

    response = await client.post("/checkout/verify", json={"sessionId": session_id})
    assert response.json()["status"] == "unpaid"

    payment_provider.complete_payment(session_id)
    response = await client.post("/checkout/verify", json={"sessionId": session_id})
    assert response.json()["status"] == "paid"

    response = await client.post("/checkout/session-details", json={"sessionId": session_id})
    body = response.json()
    assert body["amount_total"] == 2490
    assert body["metadata"]["total"] == "24.90"

    response = await client.post("/checkout/verify", json={"sessionId": "cs_unknown"})
    assert response.status_code == 404
