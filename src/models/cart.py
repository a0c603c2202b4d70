"""Cart line models and cart API schemas."""

from __future__ import annotations

from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from src.models.product import Option, Product


class OrderedProduct(BaseModel):
    """One cart line: a product, an optional option and a positive quantity."""

    quantity: int = Field(..., gt=0)
    product: Product
    option: Option | None = None

    @property
    def key(self) -> tuple[str, str | None]:
        """Identity used to deduplicate cart lines."""
        option_id = self.option.document_id if self.option else None
        return (self.product.document_id, option_id)


CartLine = OrderedProduct


class CartItemRequest(BaseModel):
    """Body for adding or updating a cart line."""

    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("product_id", "productId"),
    )
    option_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("option_id", "optionId"),
    )
    quantity: int = Field(default=1)


class PromoCodeRequest(BaseModel):
    code: str = Field(..., min_length=1)


class CartLineView(BaseModel):
    """Cart line enriched with the prices shown to the customer."""

    product_id: str
    product_name: str
    option_id: str | None = None
    option_name: str | None = None
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class CartView(BaseModel):
    """Response returned by the cart endpoints."""

    cart_id: str
    lines: list[CartLineView] = Field(default_factory=list)
    count: int = 0
    total: Decimal = Decimal("0.00")


class PromoCodeView(BaseModel):
    """Outcome of applying a promo code to a cart."""

    code: str
    accepted: bool
    discount_amount: Decimal = Decimal("0.00")
    payable_total: Decimal = Decimal("0.00")
    error: str | None = None
