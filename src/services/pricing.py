"""Pricing engine: line totals, automatic discounts and promo codes.

Every function here is pure: results depend only on the arguments, and the
only time input is the explicit ``now`` (defaulting to the current UTC time).
Amounts are ``Decimal`` in the currency unit; conversion to the provider's
minor unit happens through :func:`to_minor_units` only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from pydantic import BaseModel

from src.models.cart import OrderedProduct
from src.models.product import Discount

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

PromoRejection = Literal["invalid_code", "expired", "not_applicable"]


class PromoResult(BaseModel):
    """Outcome of :func:`apply_promo_code`; ``error`` is set on rejection."""

    discount_amount: Decimal = ZERO
    error: PromoRejection | None = None
    discount: Discount | None = None

    @property
    def accepted(self) -> bool:
        return self.error is None


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(UTC)


def round_display(amount: Decimal | int | float) -> Decimal:
    """Standard two-decimal rounding used for displayed totals."""
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal | int | float) -> int:
    """Convert an amount to cents, i.e. ``round(amount * 100)``."""
    cents = Decimal(str(amount)) * HUNDRED
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def apply_discount(price: Decimal, discount: Discount) -> Decimal:
    """Monetary effect of one discount on a price, never below zero."""
    if discount.type == "fixed":
        reduced = price - discount.value
    else:
        reduced = price * (1 - discount.value / HUNDRED)
    return max(reduced, ZERO)


def active_automatic_discount(
    discounts: Iterable[Discount],
    now: datetime | None = None,
) -> Discount | None:
    """Return the first active discount that is not gated by a promo code."""
    current = _now(now)
    for discount in discounts:
        if not discount.is_promo_code and discount.is_active(current):
            return discount
    return None


def discounted_price(
    price: Decimal,
    discounts: Iterable[Discount],
    now: datetime | None = None,
) -> Decimal:
    """Price after the active automatic discount, if any."""
    discount = active_automatic_discount(discounts, now)
    if discount is None:
        return price
    return apply_discount(price, discount)


def unit_price(line: OrderedProduct) -> Decimal:
    """Base price plus the selected option's modifier."""
    modifier = line.option.price_modifier if line.option else ZERO
    return line.product.price + modifier


def effective_unit_price(line: OrderedProduct, now: datetime | None = None) -> Decimal:
    """Unit price after automatic discounts, clamped at zero."""
    base = unit_price(line)
    if base < ZERO:
        logger.warning(
            "Negative unit price clamped to zero",
            extra={
                "product_id": line.product.document_id,
                "option_id": line.option.document_id if line.option else None,
                "unit_price": str(base),
            },
        )
        return ZERO
    return discounted_price(base, line.product.discounts, now)


def compute_line_total(line: OrderedProduct, now: datetime | None = None) -> Decimal:
    return effective_unit_price(line, now) * line.quantity


def compute_cart_total(
    lines: Iterable[OrderedProduct],
    now: datetime | None = None,
) -> Decimal:
    """Sum of :func:`compute_line_total` over the cart."""
    current = _now(now)
    return sum((compute_line_total(line, current) for line in lines), ZERO)


def payable_total(subtotal: Decimal, discount_amount: Decimal) -> Decimal:
    return max(subtotal - discount_amount, ZERO)


def apply_promo_code(
    lines: Sequence[OrderedProduct],
    code: str,
    catalog_discounts: Iterable[Discount],
    now: datetime | None = None,
) -> PromoResult:
    """Validate a promo code against the catalog and compute its amount.

    A code is accepted only when a discount carries it, ``now`` falls in its
    validity window and, for a product-scoped discount, the cart contains that
    product. Fixed amounts are capped at the cart subtotal so the payable
    total never goes negative.
    """
    current = _now(now)
    wanted = code.strip().casefold()
    candidates = [
        discount
        for discount in catalog_discounts
        if discount.code and discount.code.strip().casefold() == wanted
    ]
    if not wanted or not candidates:
        return PromoResult(error="invalid_code")

    active = [discount for discount in candidates if discount.is_active(current)]
    if not active:
        return PromoResult(error="expired", discount=candidates[0])
    discount = active[0]

    if discount.product_id is not None:
        product_ids = {line.product.document_id for line in lines}
        if discount.product_id not in product_ids:
            return PromoResult(error="not_applicable", discount=discount)

    subtotal = compute_cart_total(lines, current)
    if discount.type == "fixed":
        amount = min(discount.value, subtotal)
    else:
        amount = min(subtotal * discount.value / HUNDRED, subtotal)

    return PromoResult(discount_amount=round_display(amount), discount=discount)


PROMO_REJECTION_MESSAGES: dict[str, str] = {
    "invalid_code": "This promo code does not exist",
    "expired": "This promo code is not valid at this date",
    "not_applicable": "This promo code does not apply to the products in your cart",
}
