"""End-to-end tests of the checkout HTTP API."""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.config import settings
from src.main import app
from src.services.clients.payment_client import get_payment_provider

SUCCESS_URL = "https://shop.example.test/checkout/success"
CANCEL_URL = "https://shop.example.test/checkout"


async def _open_session(client, client_payload, lines, promo_code=None):
    return await client.post(
        "/checkout/session",
        json={
            "order": {
                "client": client_payload,
                "orderedProducts": lines,
                "promoCode": promo_code,
                "cartId": "cart-web",
            },
            "successUrl": SUCCESS_URL,
            "cancelUrl": CANCEL_URL,
        },
    )


@pytest.mark.asyncio
async def test_health_reports_dependencies(client):
    response = await client.get("/health")
    body = response.json()
    assert body["status"] == "healthy"
    assert body["redis"] == "connected"
    assert set(body) == {"status", "redis", "content_backend", "payments", "environment"}
    assert body["environment"] == settings.ENVIRONMENT

    assert (await client.get("/")).status_code == 404


@pytest.mark.asyncio
async def test_happy_path_from_cart_to_order(client, payment_provider, content_backend):
    await client.post("/cart/cart-web/items", json={"productId": "prod-bonnet"})
    address = await client.post(
        "/address/resolve",
        json={"street": "12 rue de Rivoli", "postalCode": "75001", "city": "Paris"},
    )
    client_payload = {
        "firstname": "Camille",
        "lastname": "Durand",
        "email": "camille@example.com",
        "deliveryAddress": {
            "input": {"street": "12 rue de Rivoli", "postalCode": "75001", "city": "Paris"},
            "resolved": address.json(),
        },
    }

    response = await _open_session(
        client, client_payload, [{"quantity": 1, "productId": "prod-bonnet", "price": 1}]
    )
    assert response.status_code == 201
    body = response.json()
    assert set(body) == {"sessionId", "redirectUrl", "pendingOrderId"}
    assert payment_provider.created_params[0]["line_items"][0]["price_data"]["unit_amount"] == 2490

    payment_provider.complete_payment(body["sessionId"])
    response = await client.post("/checkout/confirm", json={"sessionId": body["sessionId"]})

    assert response.status_code == 200
    confirmation = response.json()
    assert confirmation["status"] == "paid"
    assert Decimal(confirmation["order"]["total"]) == Decimal("24.90")
    assert len(content_backend.orders) == 1

    cart = await client.get("/cart/cart-web")
    assert cart.json()["lines"] == []


@pytest.mark.asyncio
async def test_reloading_success_page_keeps_one_order(
    client, payment_provider, content_backend, client_payload
):
    response = await _open_session(client, client_payload, [{"quantity": 2, "productId": "prod-echarpe"}])
    session_id = response.json()["sessionId"]
    payment_provider.complete_payment(session_id)

    first = await client.post("/checkout/confirm", json={"sessionId": session_id})
    second = await client.post("/checkout/confirm", json={"session_id": session_id})

    assert first.status_code == second.status_code == 200
    assert first.json()["order"]["document_id"] == second.json()["order"]["document_id"]
    assert len(content_backend.orders) == 1


@pytest.mark.asyncio
async def test_confirm_before_payment_is_refused(client, client_payload, content_backend):
    response = await _open_session(client, client_payload, [{"quantity": 1, "productId": "prod-badge"}])

    response = await client.post(
        "/checkout/confirm", json={"sessionId": response.json()["sessionId"]}
    )

    assert response.status_code == 402
    assert response.json()["detail"]["code"] == "payment_not_confirmed"
    assert content_backend.orders == []


@pytest.mark.asyncio
async def test_checkout_errors_map_to_status_codes(client, client_payload, payment_provider):
    response = await _open_session(client, client_payload, [])
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "empty_cart"

    response = await _open_session(
        client, client_payload, [{"quantity": 1, "productId": "prod-badge"}], promo_code="SOLDE10"
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_amount"

    unresolved = dict(client_payload)
    unresolved["deliveryAddress"] = {"input": client_payload["deliveryAddress"]["input"]}
    response = await _open_session(client, unresolved, [{"quantity": 1, "productId": "prod-badge"}])
    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "unresolved_address"

    assert payment_provider.created_params == []


@pytest.mark.asyncio
async def test_persistence_failure_is_reported_distinctly(
    client, client_payload, payment_provider, content_backend, redis_client
):
    await client.post("/cart/cart-web/items", json={"productId": "prod-badge"})
    response = await _open_session(client, client_payload, [{"quantity": 1, "productId": "prod-badge"}])
    session_id = response.json()["sessionId"]
    payment_provider.complete_payment(session_id)
    content_backend.failures_remaining = 1

    response = await client.post("/checkout/confirm", json={"sessionId": session_id})

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["code"] == "order_persistence_failed"
    assert detail["retry_queued"] == "true"
    assert "contact support" in detail["message"]
    assert (await client.get("/cart/cart-web")).json()["count"] == 1

    response = await client.post("/orders/retry")
    assert response.json() == {"recorded": 1}
    assert len(content_backend.orders) == 1
    assert (await client.get("/cart/cart-web")).json()["count"] == 0


@pytest.mark.asyncio
async def test_checkout_disabled_without_payment_provider(client, client_payload):
    app.dependency_overrides[get_payment_provider] = lambda: None

    response = await _open_session(client, client_payload, [{"quantity": 1, "productId": "prod-badge"}])

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "payments_disabled"
