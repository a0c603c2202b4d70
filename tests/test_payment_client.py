"""Tests for the Stripe payment provider adapter."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import stripe

from src.models.checkout import PaymentStatus
from src.services.checkout.errors import NotFound, ProviderUnavailable
from src.services.checkout.payment_verifier import PaymentVerifier
from src.services.clients.payment_client import StripePaymentProvider


@pytest.fixture
def stripe_client():
    return MagicMock(spec_set=["v1"])


@pytest.mark.asyncio
async def test_customer_lookup_by_email(stripe_client):
    stripe_client.v1.customers.list.return_value = {"data": [{"id": "cus_42"}]}
    provider = StripePaymentProvider(stripe_client)

    assert await provider.find_customer_by_email("camille@example.com") == "cus_42"
    stripe_client.v1.customers.list.assert_called_once_with(
        params={"email": "camille@example.com", "limit": 1}
    )

    stripe_client.v1.customers.list.return_value = {"data": []}
    assert await provider.find_customer_by_email("new@example.com") is None


@pytest.mark.asyncio
async def test_session_creation_forwards_idempotency_key(stripe_client):
    stripe_client.v1.checkout.sessions.create.return_value = {"id": "cs_1", "url": "https://pay"}
    provider = StripePaymentProvider(stripe_client)

    session = await provider.create_checkout_session({"mode": "payment"}, idempotency_key="checkout-p1")

    assert session == {"id": "cs_1", "url": "https://pay"}
    stripe_client.v1.checkout.sessions.create.assert_called_once_with(
        params={"mode": "payment"},
        options={"idempotency_key": "checkout-p1"},
    )


@pytest.mark.asyncio
async def test_session_retrieval_expands_payment_intent(stripe_client):
    stripe_client.v1.checkout.sessions.retrieve.return_value = {
        "id": "cs_1",
        "payment_intent": {"id": "pi_1", "status": "succeeded"},
    }
    provider = StripePaymentProvider(stripe_client)

    session = await provider.retrieve_checkout_session("cs_1")

    assert session["payment_intent"]["status"] == "succeeded"
    stripe_client.v1.checkout.sessions.retrieve.assert_called_once_with(
        "cs_1", params={"expand": ["payment_intent"]}
    )


@pytest.mark.asyncio
async def test_coupon_is_single_use(stripe_client):
    stripe_client.v1.coupons.create.return_value = {"id": "coupon_1"}
    provider = StripePaymentProvider(stripe_client)

    coupon_id = await provider.create_coupon(amount_off=1000, currency="eur", name="SOLDE10")

    assert coupon_id == "coupon_1"
    params = stripe_client.v1.coupons.create.call_args.kwargs["params"]
    assert stripe_client.v1.coupons.create.call_args.kwargs["options"] == {}
    assert params["duration"] == "once"
    assert params["max_redemptions"] == 1
    assert params["amount_off"] == 1000

    await provider.create_coupon(
        amount_off=1000, currency="eur", name="SOLDE10", idempotency_key="coupon-p1"
    )
    assert stripe_client.v1.coupons.create.call_args.kwargs["options"] == {
        "idempotency_key": "coupon-p1"
    }


@pytest.mark.asyncio
async def test_missing_resource_becomes_not_found(stripe_client):
    stripe_client.v1.checkout.sessions.retrieve.side_effect = stripe.InvalidRequestError(
        "No such checkout session", "id", code="resource_missing"
    )
    provider = StripePaymentProvider(stripe_client)

    with pytest.raises(NotFound):
        await provider.retrieve_checkout_session("cs_missing")


@pytest.mark.asyncio
async def test_sdk_errors_become_provider_unavailable(stripe_client):
    stripe_client.v1.customers.create.side_effect = stripe.APIConnectionError("network down")
    provider = StripePaymentProvider(stripe_client)

    with pytest.raises(ProviderUnavailable) as excinfo:
        await provider.create_customer({"email": "camille@example.com"})

    assert excinfo.value.provider == "payment"


@pytest.mark.asyncio
async def test_sdk_objects_are_converted_to_plain_dicts(stripe_client):
    stripe_client.v1.customers.list.return_value = stripe.ListObject.construct_from(
        {"object": "list", "data": [{"id": "cus_42", "object": "customer"}]},
        "sk_test_123",
    )
    paid_session = stripe.checkout.Session.construct_from(
        {
            "id": "cs_1",
            "object": "checkout.session",
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 2490,
            "currency": "eur",
            "customer_details": {"email": "camille@example.com"},
            "metadata": {"pending_order_id": "p1", "total": "24.90"},
            "payment_intent": {"id": "pi_1", "object": "payment_intent", "status": "succeeded"},
        },
        "sk_test_123",
    )
    stripe_client.v1.checkout.sessions.retrieve.return_value = paid_session
    provider = StripePaymentProvider(stripe_client)

    assert await provider.find_customer_by_email("camille@example.com") == "cus_42"

    session = await provider.retrieve_checkout_session("cs_1")
    assert type(session) is dict
    assert type(session["payment_intent"]) is dict

    verification = await PaymentVerifier(provider).verify("cs_1")
    assert verification.status is PaymentStatus.PAID
    assert verification.session.customer_email == "camille@example.com"
    assert verification.session.metadata["pending_order_id"] == "p1"
    assert verification.session.payment_intent_status == "succeeded"
