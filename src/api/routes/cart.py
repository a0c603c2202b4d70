"""Routes for the browser cart stored in Redis."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Query, status

from src.api.dependencies import RedisDependency
from src.api.errors import to_http_exception
from src.models.cart import (
    CartItemRequest,
    CartLineView,
    CartView,
    OrderedProduct,
    PromoCodeRequest,
    PromoCodeView,
)
from src.models.product import Option, Product
from src.services import pricing
from src.services.cart.store import get_cart_store
from src.services.checkout.errors import CheckoutError, EmptyCart, NotFound
from src.services.clients.content_client import ContentBackend, ContentBackendDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cart", tags=["cart"])


def _line_view(line: OrderedProduct, now: datetime) -> CartLineView:
    unit = pricing.round_display(pricing.effective_unit_price(line, now))
    return CartLineView(
        product_id=line.product.document_id,
        product_name=line.product.name,
        option_id=line.option.document_id if line.option else None,
        option_name=line.option.name if line.option else None,
        quantity=line.quantity,
        unit_price=unit,
        line_total=unit * line.quantity,
    )


def _cart_view(cart_id: str, lines: list[OrderedProduct]) -> CartView:
    now = datetime.now(UTC)
    views = [_line_view(line, now) for line in lines]
    return CartView(
        cart_id=cart_id,
        lines=views,
        count=sum(line.quantity for line in lines),
        total=sum((view.line_total for view in views), pricing.ZERO),
    )


async def _catalog_item(
    content_backend: ContentBackend,
    product_id: str,
    option_id: str | None,
) -> tuple[Product, Option | None]:
    product = await content_backend.get_product(product_id)
    if product is None:
        raise NotFound(f"Unknown product {product_id}")
    try:
        option = product.find_option(option_id)
    except LookupError as exc:
        raise NotFound(str(exc)) from exc
    return product, option


@router.get("/{cart_id}", response_model=CartView, summary="Read a cart")
async def read_cart(cart_id: str, client: RedisDependency) -> CartView:
    store = get_cart_store(client, cart_id)
    return _cart_view(cart_id, await store.list())


@router.post(
    "/{cart_id}/items",
    response_model=CartView,
    summary="Add a catalog item to the cart",
)
async def add_item(
    cart_id: str,
    payload: CartItemRequest,
    client: RedisDependency,
    content_backend: ContentBackendDependency,
) -> CartView:
    """Add a line, merging it with an identical product/option line."""
    store = get_cart_store(client, cart_id)
    try:
        product, option = await _catalog_item(
            content_backend, payload.product_id, payload.option_id
        )
        lines = await store.add(product, option, payload.quantity)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

    logger.info(
        "Cart item added",
        extra={"cart_id": cart_id, "product_id": payload.product_id},
    )
    return _cart_view(cart_id, lines)


@router.patch(
    "/{cart_id}/items",
    response_model=CartView,
    summary="Change the quantity of a cart line",
)
async def update_item(
    cart_id: str,
    payload: CartItemRequest,
    client: RedisDependency,
) -> CartView:
    store = get_cart_store(client, cart_id)
    try:
        lines = await store.set_quantity(
            payload.product_id, payload.option_id, payload.quantity
        )
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc
    return _cart_view(cart_id, lines)


@router.delete(
    "/{cart_id}/items",
    response_model=CartView,
    summary="Remove a cart line",
)
async def remove_item(
    cart_id: str,
    client: RedisDependency,
    product_id: str = Query(..., alias="productId", min_length=1),
    option_id: str | None = Query(default=None, alias="optionId"),
) -> CartView:
    store = get_cart_store(client, cart_id)
    lines = await store.remove(product_id, option_id)
    return _cart_view(cart_id, lines)


@router.delete(
    "/{cart_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Empty the cart",
)
async def clear_cart(cart_id: str, client: RedisDependency) -> None:
    await get_cart_store(client, cart_id).clear()


@router.post(
    "/{cart_id}/promo",
    response_model=PromoCodeView,
    summary="Preview a promo code against the cart",
)
async def preview_promo_code(
    cart_id: str,
    payload: PromoCodeRequest,
    client: RedisDependency,
    content_backend: ContentBackendDependency,
) -> PromoCodeView:
    """Validate a code without reserving it; checkout re-validates it."""
    lines = await get_cart_store(client, cart_id).list()
    if not lines:
        raise to_http_exception(EmptyCart())

    try:
        discounts = await content_backend.find_discounts_by_code(payload.code)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

    now = datetime.now(UTC)
    result = pricing.apply_promo_code(lines, payload.code, discounts, now)
    subtotal = _cart_view(cart_id, lines).total
    if not result.accepted:
        return PromoCodeView(
            code=payload.code,
            accepted=False,
            payable_total=subtotal,
            error=pricing.PROMO_REJECTION_MESSAGES[result.error],
        )

    discount_amount = min(result.discount_amount, subtotal)
    return PromoCodeView(
        code=payload.code,
        accepted=True,
        discount_amount=discount_amount,
        payable_total=pricing.payable_total(subtotal, discount_amount),
    )
