"""Pytest configuration and fixtures for the checkout service."""

import asyncio
import copy
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from fakeredis import aioredis as fakeredis
from httpx import ASGITransport, AsyncClient

from src.models.address import AddressInput, GeocodeCandidate, ResolvedAddress
from src.models.checkout import CheckoutClient
from src.models.order import Order
from src.models.product import Discount, Option, Product
from src.services.checkout.errors import NotFound, ProviderUnavailable
from src.services.clients.content_client import ContentBackend, get_content_backend
from src.services.clients.geocoder_client import get_geocoder
from src.services.clients.payment_client import PaymentProvider, get_payment_provider
from src.services.geo import geohash
from src.services.geo.address_format import format_address
from src.services.geo.resolution_store import ResolvedAddressStore
from src.services.storage.redis_client import get_redis_client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "asyncio: marks tests as async tests")


class FakeContentBackend(ContentBackend):
    """In-memory catalog, client and order store."""

    def __init__(self) -> None:
        self.products: dict[str, Product] = {}
        self.discounts: list[Discount] = []
        self.clients: dict[str, dict] = {}
        self.orders: list[Order] = []
        self.create_order_calls = 0
        self.failures_remaining = 0

    async def get_product(self, product_id):
        await asyncio.sleep(0)
        return self.products.get(product_id)

    async def find_discounts_by_code(self, code):
        wanted = code.strip().casefold()
        return [d for d in self.discounts if d.code and d.code.casefold() == wanted]

    async def save_client(self, client, delivery, billing):
        client_id = client.document_id
        if client_id is None:
            client_id = next(
                (key for key, value in self.clients.items() if value["email"] == client.email),
                f"client-{len(self.clients) + 1}",
            )
        self.clients[client_id] = {
            "email": client.email,
            "delivery": delivery,
            "billing": billing,
        }
        return client_id

    async def find_order_by_session(self, session_id):
        for order in self.orders:
            if order.payment_session_id == session_id:
                return order
        return None

    async def create_order(self, order):
        self.create_order_calls += 1
        await asyncio.sleep(0)
        if self.failures_remaining:
            self.failures_remaining -= 1
            raise ProviderUnavailable("content", "Content backend error (503)")
        stored = order.model_copy(update={"document_id": f"order-{len(self.orders) + 1}"})
        self.orders.append(stored)
        return stored


class FakePaymentProvider(PaymentProvider):
    """In-memory payment provider mimicking hosted checkout sessions."""

    def __init__(self) -> None:
        self.customers: dict[str, dict] = {}
        self.coupons: dict[str, dict] = {}
        self.sessions: dict[str, dict] = {}
        self.created_params: list[dict] = []
        self.idempotency_keys: dict[str, str] = {}
        self.intents: dict[str, dict] = {}
        self.customers_down = False

    async def find_customer_by_email(self, email):
        if self.customers_down:
            raise ProviderUnavailable("payment", "Payment provider unavailable")
        for customer_id, customer in self.customers.items():
            if customer.get("email") == email:
                return customer_id
        return None

    async def create_customer(self, params):
        customer_id = f"cus_{len(self.customers) + 1}"
        self.customers[customer_id] = dict(params)
        return customer_id

    async def update_customer(self, customer_id, params):
        self.customers[customer_id].update(params)

    async def create_coupon(self, *, amount_off, currency, name, idempotency_key=None):
        if idempotency_key in self.idempotency_keys:
            return self.idempotency_keys[idempotency_key]
        coupon_id = f"coupon_{len(self.coupons) + 1}"
        self.coupons[coupon_id] = {"amount_off": amount_off, "currency": currency, "name": name}
        if idempotency_key:
            self.idempotency_keys[idempotency_key] = coupon_id
        return coupon_id

    async def create_checkout_session(self, params, *, idempotency_key=None):
        if idempotency_key in self.idempotency_keys:
            return copy.deepcopy(self.sessions[self.idempotency_keys[idempotency_key]])

        self.created_params.append(params)
        session_id = f"cs_test_{len(self.sessions) + 1}"
        amount = sum(
            item["price_data"]["unit_amount"] * item["quantity"] for item in params["line_items"]
        )
        for discount in params.get("discounts", []):
            amount -= self.coupons[discount["coupon"]]["amount_off"]

        self.sessions[session_id] = {
            "id": session_id,
            "url": f"https://checkout.example.test/pay/{session_id}",
            "status": "open",
            "payment_status": "unpaid",
            "amount_total": amount,
            "currency": params["line_items"][0]["price_data"]["currency"],
            "customer": params.get("customer"),
            "customer_email": params.get("customer_email"),
            "metadata": dict(params["metadata"]),
            "payment_intent": None,
            "created": 1760000000,
        }
        if idempotency_key:
            self.idempotency_keys[idempotency_key] = session_id
        return copy.deepcopy(self.sessions[session_id])

    async def retrieve_checkout_session(self, session_id):
        if session_id not in self.sessions:
            raise NotFound("Payment session not found")
        return copy.deepcopy(self.sessions[session_id])

    async def retrieve_payment_intent(self, payment_intent_id):
        return self.intents.get(payment_intent_id, {"id": payment_intent_id, "status": "processing"})

    def complete_payment(self, session_id):
        session = self.sessions[session_id]
        session["status"] = "complete"
        session["payment_status"] = "paid"
        session["payment_intent"] = {"id": f"pi_{session_id}", "status": "succeeded"}
        if session["customer_email"] is None:
            session["customer_details"] = {"email": session["metadata"]["client_email"]}

    def expire(self, session_id):
        self.sessions[session_id]["status"] = "expired"


class StubGeocoder:
    """Geocoder returning one fixed match for any query."""

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def search(self, query, limit=1):
        self.queries.append(query)
        if "introuvable" in query.lower():
            return []
        return [GeocodeCandidate(lat=48.8606, lng=2.3376, display_name=query, importance=0.8)]


def _window(days_before=1, days_after=30):
    now = datetime.now(UTC)
    return now - timedelta(days=days_before), now + timedelta(days=days_after)


def make_address(
    street="12 rue de Rivoli",
    postal_code="75001",
    city="Paris",
    lat=48.8606,
    lng=2.3376,
):
    components = AddressInput(street=street, postal_code=postal_code, city=city)
    resolved = ResolvedAddress(
        address=format_address(components),
        street=street,
        postal_code=postal_code,
        city=city,
        lat=lat,
        lng=lng,
        geohash=geohash.encode(lat, lng),
    )
    return {
        "input": components.model_dump(),
        "resolved": resolved.model_dump(),
    }


@pytest.fixture
def address_factory():
    """Build an address payload that was never recorded by the resolver."""
    return make_address


@pytest.fixture
def resolution_store(redis_client):
    return ResolvedAddressStore(redis_client)


@pytest.fixture
def geocoded_address(resolution_store):
    """Build an address payload and record its resolution as the resolver would."""

    async def _make(**kwargs):
        address = make_address(**kwargs)
        await resolution_store.save(ResolvedAddress.model_validate(address["resolved"]))
        return address

    return _make


@pytest_asyncio.fixture()
async def client_payload(geocoded_address):
    """Checkout form data with a freshly geocoded delivery address."""
    return {
        "firstname": "Camille",
        "lastname": "Durand",
        "email": "camille@example.com",
        "deliveryAddress": await geocoded_address(),
        "billingSameAsDelivery": True,
    }


@pytest.fixture
def checkout_client(client_payload):
    return CheckoutClient.model_validate(client_payload)


@pytest.fixture
def content_backend():
    """Catalog with a few products and promo codes."""
    backend = FakeContentBackend()
    start, end = _window()
    backend.products["prod-bonnet"] = Product(
        document_id="prod-bonnet",
        name="Bonnet",
        description="Bonnet en laine tricoté main",
        price=Decimal("24.90"),
        image="https://cdn.example.test/bonnet.jpg",
        options=[
            Option(document_id="opt-rouge", name="Rouge", price_modifier=Decimal("0")),
            Option(document_id="opt-xl", name="XL", price_modifier=Decimal("2.00")),
        ],
    )
    backend.products["prod-echarpe"] = Product(
        document_id="prod-echarpe",
        name="Echarpe",
        price=Decimal("25.00"),
    )
    backend.products["prod-badge"] = Product(
        document_id="prod-badge",
        name="Badge",
        price=Decimal("5.00"),
    )
    backend.discounts = [
        Discount(
            document_id="disc-solde10",
            type="fixed",
            value=Decimal("10.00"),
            start_date=start,
            end_date=end,
            code="SOLDE10",
        ),
        Discount(
            document_id="disc-hiver",
            type="percentage",
            value=Decimal("20"),
            start_date=start,
            end_date=end,
            code="HIVER20",
        ),
        Discount(
            document_id="disc-old",
            type="fixed",
            value=Decimal("3.00"),
            start_date=start - timedelta(days=60),
            end_date=start - timedelta(days=30),
            code="ETE2024",
        ),
    ]
    return backend


@pytest.fixture
def payment_provider():
    return FakePaymentProvider()


@pytest.fixture
def geocoder():
    return StubGeocoder()


@pytest_asyncio.fixture()
async def redis_client():
    """Provide a fake Redis client for each test."""
    from src.main import app

    client = fakeredis.FakeRedis(decode_responses=True)
    app.dependency_overrides[get_redis_client] = lambda: client
    try:
        yield client
    finally:
        await client.flushdb()
        await client.aclose()
        app.dependency_overrides.pop(get_redis_client, None)


@pytest_asyncio.fixture()
async def client(redis_client, content_backend, payment_provider, geocoder):
    """Return an HTTPX async client pointing at the FastAPI app."""
    from src.main import app

    app.dependency_overrides[get_content_backend] = lambda: content_backend
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_geocoder] = lambda: geocoder
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://testserver",
        ) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_content_backend, None)
        app.dependency_overrides.pop(get_payment_provider, None)
        app.dependency_overrides.pop(get_geocoder, None)
