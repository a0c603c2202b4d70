"""Builds payment-provider checkout sessions from server-side prices.

One call walks a checkout attempt through ``draft -> customer_resolved ->
session_created``. Prices are re-derived from the catalog, the priced
snapshot is stored under a pending order id, and only that id (plus the
totals needed to cross-check it) travels in the session metadata.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from src.config import settings
from src.models.cart import OrderedProduct
from src.models.checkout import (
    AddressSelection,
    CheckoutClient,
    CheckoutOrder,
    CheckoutSessionResult,
    CheckoutSnapshot,
    CheckoutState,
)
from src.models.order import OrderLine
from src.models.product import Product
from src.services import pricing
from src.services.checkout.errors import (
    CheckoutError,
    EmptyCart,
    InvalidAmount,
    NotFound,
    PromoCodeRejected,
    ProviderUnavailable,
    UnresolvedAddressError,
    ValidationError,
)
from src.services.checkout.snapshot_store import CheckoutSnapshotStore
from src.services.clients.content_client import ContentBackend
from src.services.clients.payment_client import PaymentProvider
from src.services.geo.address_format import to_provider_address
from src.services.geo.address_resolver import ensure_geocoded
from src.services.geo.resolution_store import ResolvedAddressStore

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_NAME = "Produit"
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


class CheckoutSessionBuilder:
    """Assemble and create one provider checkout session per attempt."""

    def __init__(
        self,
        *,
        payment_provider: PaymentProvider,
        content_backend: ContentBackend,
        snapshot_store: CheckoutSnapshotStore,
        resolution_store: ResolvedAddressStore,
        currency: str | None = None,
        allowed_countries: list[str] | None = None,
    ) -> None:
        self._provider = payment_provider
        self._catalog = content_backend
        self._snapshots = snapshot_store
        self._resolutions = resolution_store
        self._currency = currency or settings.STRIPE_CURRENCY
        self._allowed_countries = allowed_countries or settings.STRIPE_ALLOWED_COUNTRIES

    async def build_session(
        self,
        order: CheckoutOrder,
        success_url: str,
        cancel_url: str,
        *,
        now: datetime | None = None,
    ) -> CheckoutSessionResult:
        """Validate, price and create the provider session for an order."""
        current = now or datetime.now(UTC)

        if not order.ordered_products:
            raise EmptyCart()

        client = await self._with_resolved_addresses(order.client)
        cart_lines = await self._load_cart_lines(order)
        lines = [_price_line(line, current) for line in cart_lines]
        subtotal = sum((line.line_total for line in lines), pricing.ZERO)

        discount_amount = pricing.ZERO
        promo_code = None
        if order.promo_code and order.promo_code.strip():
            promo_code = order.promo_code.strip()
            discount_amount = min(
                await self._promo_discount(cart_lines, promo_code, current),
                subtotal,
            )

        total = pricing.payable_total(subtotal, discount_amount)
        if total <= 0:
            raise InvalidAmount(f"Total amount must be positive, got {total}")

        fingerprint = checkout_fingerprint(
            client, order.cart_id, lines, promo_code, total, success_url, cancel_url
        )
        previous = await self._snapshots.fetch_by_fingerprint(fingerprint)
        reused = await self._reuse_open_session(previous)
        if reused is not None:
            return reused

        snapshot = CheckoutSnapshot(
            pending_order_id=_resumable_order_id(previous),
            fingerprint=fingerprint,
            cart_id=order.cart_id,
            client=client,
            lines=lines,
            subtotal=subtotal,
            discount_amount=discount_amount,
            total=total,
            promo_code=promo_code,
        )
        await self._snapshots.save(snapshot)
        self._log_transition(snapshot)

        snapshot.customer_id = await self._reconcile_customer(client)
        snapshot.state = CheckoutState.CUSTOMER_RESOLVED
        await self._snapshots.save(snapshot)
        self._log_transition(snapshot)

        params = await self._session_params(snapshot, success_url, cancel_url)
        session = await self._provider.create_checkout_session(
            params,
            idempotency_key=f"checkout-{snapshot.pending_order_id}",
        )

        snapshot.session_id = session["id"]
        snapshot.redirect_url = session.get("url")
        snapshot.state = CheckoutState.SESSION_CREATED
        await self._snapshots.save(snapshot)
        self._log_transition(snapshot)

        return CheckoutSessionResult(
            session_id=snapshot.session_id,
            redirect_url=snapshot.redirect_url,
            pending_order_id=snapshot.pending_order_id,
        )

    async def _with_resolved_addresses(self, client: CheckoutClient) -> CheckoutClient:
        """Swap in recorded resolutions for both addresses; default billing to delivery."""
        delivery = client.delivery_address
        delivery = AddressSelection(
            input=delivery.input,
            resolved=await ensure_geocoded(
                delivery.input, delivery.resolved, self._resolutions, label="delivery"
            ),
        )

        if client.billing_same_as_delivery:
            billing = delivery
        elif client.billing_address is None:
            raise UnresolvedAddressError("A billing address is required")
        else:
            billing = AddressSelection(
                input=client.billing_address.input,
                resolved=await ensure_geocoded(
                    client.billing_address.input,
                    client.billing_address.resolved,
                    self._resolutions,
                    label="billing",
                ),
            )

        return client.model_copy(
            update={"delivery_address": delivery, "billing_address": billing}
        )

    async def _load_cart_lines(self, order: CheckoutOrder) -> list[OrderedProduct]:
        """Re-read every referenced product so client prices are never trusted."""
        products: dict[str, Product] = {}
        merged: dict[tuple[str, str | None], OrderedProduct] = {}

        for requested in order.ordered_products:
            product = products.get(requested.product_id)
            if product is None:
                product = await self._catalog.get_product(requested.product_id)
                if product is None:
                    raise ValidationError(
                        f"Unknown product {requested.product_id}",
                        code="unknown_product",
                    )
                products[requested.product_id] = product
            try:
                option = product.find_option(requested.option_id)
            except LookupError as exc:
                raise ValidationError(str(exc), code="unknown_option") from exc

            line = OrderedProduct(quantity=requested.quantity, product=product, option=option)
            if line.key in merged:
                existing = merged[line.key]
                line = existing.model_copy(
                    update={"quantity": existing.quantity + line.quantity}
                )
            merged[line.key] = line

        return list(merged.values())

    async def _promo_discount(
        self,
        cart_lines: list[OrderedProduct],
        code: str,
        now: datetime,
    ) -> Decimal:
        discounts = await self._catalog.find_discounts_by_code(code)
        result = pricing.apply_promo_code(cart_lines, code, discounts, now)
        if not result.accepted:
            raise PromoCodeRejected(
                result.error,
                pricing.PROMO_REJECTION_MESSAGES[result.error],
            )
        return result.discount_amount

    async def _reuse_open_session(
        self, previous: CheckoutSnapshot | None
    ) -> CheckoutSessionResult | None:
        if previous is None or previous.session_id is None:
            return None

        try:
            session = await self._provider.retrieve_checkout_session(previous.session_id)
        except (NotFound, ProviderUnavailable) as exc:
            logger.info(
                "Previous checkout session not reusable: %s",
                exc,
                extra={"pending_order_id": previous.pending_order_id},
            )
            return None

        if session.get("status") != "open":
            return None

        logger.info(
            "Reusing open checkout session",
            extra={
                "session_id": previous.session_id,
                "pending_order_id": previous.pending_order_id,
            },
        )
        return CheckoutSessionResult(
            session_id=previous.session_id,
            redirect_url=session.get("url") or previous.redirect_url,
            pending_order_id=previous.pending_order_id,
        )

    async def _reconcile_customer(self, client: CheckoutClient) -> str | None:
        """Look up the provider customer by email, update it or create it."""
        name = client.full_name
        shipping = to_provider_address(client.delivery_address.input).model_dump()
        billing = to_provider_address(client.billing_address.input).model_dump()
        profile = {
            "name": name,
            "shipping": {"name": name, "address": shipping},
            "address": billing,
        }

        try:
            customer_id = await self._provider.find_customer_by_email(client.email)
            if customer_id:
                await self._provider.update_customer(customer_id, profile)
                return customer_id
            return await self._provider.create_customer(
                {
                    **profile,
                    "email": client.email,
                    "metadata": {
                        "clientId": client.document_id or "",
                        "firstname": client.firstname,
                        "lastname": client.lastname,
                    },
                }
            )
        except CheckoutError as exc:
            # Session falls back to a bare customer email
            logger.warning(
                "Customer reconciliation failed: %s",
                exc,
                extra={"email": client.email},
            )
            return None

    async def _session_params(
        self,
        snapshot: CheckoutSnapshot,
        success_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        client = snapshot.client
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [self._line_item(line) for line in snapshot.lines],
            "success_url": _with_session_placeholder(success_url),
            "cancel_url": cancel_url,
            "client_reference_id": snapshot.pending_order_id,
            "metadata": {
                "pending_order_id": snapshot.pending_order_id,
                "client_id": client.document_id or "",
                "client_email": client.email,
                "client_firstname": client.firstname,
                "client_lastname": client.lastname,
                "total": str(snapshot.total),
                "fingerprint": snapshot.fingerprint,
            },
            "shipping_address_collection": {
                "allowed_countries": self._allowed_countries,
            },
            "billing_address_collection": "required",
            "shipping_options": [
                {
                    "shipping_rate_data": {
                        "type": "fixed_amount",
                        "fixed_amount": {"amount": 0, "currency": self._currency},
                        "display_name": settings.SHIPPING_DISPLAY_NAME,
                        "delivery_estimate": {
                            "minimum": {"unit": "business_day", "value": 2},
                            "maximum": {"unit": "business_day", "value": 5},
                        },
                    }
                }
            ],
            "invoice_creation": {
                "enabled": True,
                "invoice_data": {
                    "description": f"Commande #{snapshot.pending_order_id}",
                    "metadata": {"pending_order_id": snapshot.pending_order_id},
                },
            },
        }

        # customer and customer_email are mutually exclusive for the provider
        if snapshot.customer_id:
            params["customer"] = snapshot.customer_id
        else:
            params["customer_email"] = client.email

        if snapshot.discount_amount > 0:
            coupon_id = await self._provider.create_coupon(
                amount_off=pricing.to_minor_units(snapshot.discount_amount),
                currency=self._currency,
                name=snapshot.promo_code or "Promo",
                idempotency_key=f"coupon-{snapshot.pending_order_id}",
            )
            params["discounts"] = [{"coupon": coupon_id}]

        return params

    def _line_item(self, line: OrderLine) -> dict[str, Any]:
        name = line.product_name or DEFAULT_PRODUCT_NAME
        if line.option_name:
            name = f"{name} - {line.option_name}"

        product_data: dict[str, Any] = {
            "name": name,
            "images": [line.product_image] if line.product_image else [],
        }
        if line.product_description:
            product_data["description"] = line.product_description

        return {
            "price_data": {
                "currency": self._currency,
                "product_data": product_data,
                "unit_amount": pricing.to_minor_units(line.unit_price),
            },
            "quantity": line.quantity,
        }

    @staticmethod
    def _log_transition(snapshot: CheckoutSnapshot) -> None:
        logger.info(
            "Checkout attempt %s",
            snapshot.state.value,
            extra={
                "pending_order_id": snapshot.pending_order_id,
                "session_id": snapshot.session_id,
                "total": str(snapshot.total),
            },
        )


def _resumable_order_id(previous: CheckoutSnapshot | None) -> str:
    """Keep the id of an attempt that never got a session so provider keys repeat."""
    if previous is not None and previous.session_id is None:
        return previous.pending_order_id
    return str(uuid.uuid4())


def _price_line(line: OrderedProduct, now: datetime) -> OrderLine:
    unit = pricing.round_display(pricing.effective_unit_price(line, now))
    return OrderLine(
        product_id=line.product.document_id,
        product_name=line.product.name,
        product_description=line.product.description,
        product_image=line.product.image,
        option_id=line.option.document_id if line.option else None,
        option_name=line.option.name if line.option else None,
        unit_price=unit,
        quantity=line.quantity,
        line_total=unit * line.quantity,
    )


def _with_session_placeholder(success_url: str) -> str:
    separator = "&" if "?" in success_url else "?"
    return f"{success_url}{separator}session_id={SESSION_ID_PLACEHOLDER}"


def _address_key(selection: AddressSelection | None) -> list[str]:
    if selection is None or selection.resolved is None:
        return []
    return [selection.resolved.address, selection.resolved.geohash]


def checkout_fingerprint(
    client: CheckoutClient,
    cart_id: str | None,
    lines: list[OrderLine],
    promo_code: str | None,
    total: Decimal,
    success_url: str,
    cancel_url: str,
) -> str:
    """Stable key identifying identical checkout submissions.

    Anything that ends up on the order (customer identity, both resolved
    addresses, cart) is part of the key, so an edited form opens a new session.
    """
    payload = {
        "email": client.email.strip().lower(),
        "client_id": client.document_id or "",
        "name": [client.firstname.strip(), client.lastname.strip()],
        "delivery": _address_key(client.delivery_address),
        "billing": _address_key(client.billing_address),
        "cart_id": cart_id or "",
        "lines": sorted(
            [line.product_id, line.option_id or "", line.quantity, str(line.unit_price)]
            for line in lines
        ),
        "promo_code": (promo_code or "").casefold(),
        "total": str(total),
        "success_url": success_url,
        "cancel_url": cancel_url,
    }
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
