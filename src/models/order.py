"""Order models persisted to the content backend."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class OrderLine(BaseModel):
    """Line item snapshot; prices are captured when the checkout is priced."""

    product_id: str
    product_name: str
    product_description: str | None = None
    product_image: str | None = None
    option_id: str | None = None
    option_name: str | None = None
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., gt=0)
    line_total: Decimal = Field(..., ge=0)


class Order(BaseModel):
    """Confirmed order, written only after the payment has been verified."""

    document_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed: bool = False
    client_id: str | None = None
    client_email: str
    lines: list[OrderLine] = Field(..., min_length=1)
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    total: Decimal
    promo_code: str | None = None
    payment_session_id: str
    pending_order_id: str | None = None
