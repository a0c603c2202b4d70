"""Catalog domain models read from the content backend."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Vocabulary used by the content backend for discount types
_DISCOUNT_TYPE_ALIASES = {
    "prix": "fixed",
    "price": "fixed",
    "fixed_amount": "fixed",
    "pourcentage": "percentage",
    "percent": "percentage",
}


class CatalogModel(BaseModel):
    """Base for documents coming from the content backend."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    document_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("document_id", "documentId"),
        description="Stable identifier assigned by the content backend",
    )


class Option(CatalogModel):
    """A product variant with a signed price delta."""

    name: str
    price_modifier: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("price_modifier", "priceModifier"),
    )


class Discount(CatalogModel):
    """A time-bounded price reduction, automatic or gated by a promo code."""

    type: Literal["fixed", "percentage"]
    value: Decimal = Field(..., ge=0)
    start_date: datetime = Field(
        ...,
        validation_alias=AliasChoices("start_date", "startDate"),
    )
    end_date: datetime = Field(
        ...,
        validation_alias=AliasChoices("end_date", "endDate"),
    )
    product_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("product_id", "productId"),
        description="Restricts the discount to a single product when set",
    )
    code: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _DISCOUNT_TYPE_ALIASES.get(lowered, lowered)
        return value

    @field_validator("code", mode="before")
    @classmethod
    def _blank_code_is_none(cls, value: str | None) -> str | None:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def is_promo_code(self) -> bool:
        return self.code is not None

    def is_active(self, now: datetime) -> bool:
        """A discount is active iff ``start_date <= now < end_date``."""
        return self.start_date <= now < self.end_date


class Feedback(CatalogModel):
    grade: int = Field(..., ge=0, le=5)
    content: str = ""


class Product(CatalogModel):
    """Product as exposed by the catalog, read-only for the checkout pipeline."""

    name: str
    description: str | None = None
    price: Decimal = Field(..., description="Base price in the currency unit")
    image: str | None = None
    options: list[Option] = Field(default_factory=list)
    discounts: list[Discount] = Field(default_factory=list)
    feedbacks: list[Feedback] = Field(default_factory=list)

    def find_option(self, option_id: str | None) -> Option | None:
        """Return the option with the given id, ``None`` when no id is given."""
        if option_id is None:
            return None
        for option in self.options:
            if option.document_id == option_id:
                return option
        raise LookupError(f"Option {option_id} does not belong to product {self.document_id}")
