"""Schemas used by the checkout, verification and confirmation APIs."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from src.models.address import AddressInput, ResolvedAddress
from src.models.order import Order, OrderLine


class CheckoutState(StrEnum):
    """Local states of one checkout attempt."""

    DRAFT = "draft"
    CUSTOMER_RESOLVED = "customer_resolved"
    SESSION_CREATED = "session_created"


class PaymentStatus(StrEnum):
    """Payment outcome as reported by the provider."""

    PAID = "paid"
    UNPAID = "unpaid"
    EXPIRED = "expired"
    CANCELED = "canceled"


class AddressSelection(BaseModel):
    """Address components typed by the customer and their latest resolution."""

    input: AddressInput
    resolved: ResolvedAddress | None = None


class CheckoutClient(BaseModel):
    """Customer details submitted with the checkout form."""

    model_config = ConfigDict(populate_by_name=True)

    document_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("document_id", "documentId"),
    )
    firstname: str = Field(..., min_length=1)
    lastname: str = Field(..., min_length=1)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    delivery_address: AddressSelection = Field(
        ...,
        validation_alias=AliasChoices("delivery_address", "deliveryAddress"),
    )
    billing_address: AddressSelection | None = Field(
        default=None,
        validation_alias=AliasChoices("billing_address", "billingAddress"),
    )
    billing_same_as_delivery: bool = Field(
        default=True,
        validation_alias=AliasChoices("billing_same_as_delivery", "billingSameAsDelivery"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.firstname} {self.lastname}".strip()


class CheckoutLineRequest(BaseModel):
    """Reference to a catalog item; any client-side price is ignored."""

    model_config = ConfigDict(populate_by_name=True)

    quantity: int = Field(..., gt=0)
    product_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("product_id", "productId"),
    )
    option_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("option_id", "optionId"),
    )

    @model_validator(mode="before")
    @classmethod
    def _flatten_nested_refs(cls, data: Any) -> Any:
        # Browser carts store whole product/option documents
        if not isinstance(data, dict):
            return data
        flattened = dict(data)
        product = flattened.pop("product", None)
        if isinstance(product, dict) and "product_id" not in flattened:
            flattened["product_id"] = product.get("documentId") or product.get("document_id")
        option = flattened.pop("option", None)
        if isinstance(option, dict) and "option_id" not in flattened:
            flattened["option_id"] = option.get("documentId") or option.get("document_id")
        return flattened


class CheckoutOrder(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client: CheckoutClient
    ordered_products: list[CheckoutLineRequest] = Field(
        default_factory=list,
        validation_alias=AliasChoices("ordered_products", "orderedProducts", "lines"),
    )
    promo_code: str | None = Field(
        default=None,
        validation_alias=AliasChoices("promo_code", "promoCode"),
    )
    cart_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("cart_id", "cartId"),
    )


class CheckoutSessionRequest(BaseModel):
    """Incoming payload for POST /checkout/session."""

    model_config = ConfigDict(populate_by_name=True)

    order: CheckoutOrder
    success_url: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("success_url", "successUrl"),
    )
    cancel_url: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("cancel_url", "cancelUrl"),
    )


class CheckoutSessionResult(BaseModel):
    """Response returned once the provider session exists."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., serialization_alias="sessionId")
    redirect_url: str | None = Field(default=None, serialization_alias="redirectUrl")
    pending_order_id: str = Field(..., serialization_alias="pendingOrderId")


class CheckoutSnapshot(BaseModel):
    """Server-side record of a priced checkout attempt."""

    pending_order_id: str
    fingerprint: str
    cart_id: str | None = None
    client: CheckoutClient
    lines: list[OrderLine]
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    total: Decimal
    promo_code: str | None = None
    state: CheckoutState = CheckoutState.DRAFT
    session_id: str | None = None
    redirect_url: str | None = None
    customer_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SessionIdRequest(BaseModel):
    """Body shared by the verification, details and confirmation endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )


class SessionDetails(BaseModel):
    """Canonical session fields exposed to the success page."""

    id: str
    amount_total: int | None = None
    currency: str | None = None
    customer_email: str | None = None
    payment_status: str | None = None
    status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    created: int | None = None
    payment_intent_status: str | None = None


class PaymentVerification(BaseModel):
    status: PaymentStatus
    session: SessionDetails

    @property
    def is_paid(self) -> bool:
        return self.status is PaymentStatus.PAID


class ConfirmationResponse(BaseModel):
    """Response of POST /checkout/confirm."""

    status: PaymentStatus
    order: Order
