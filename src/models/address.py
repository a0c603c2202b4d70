"""Address models used by geocoding and checkout."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AddressInput(BaseModel):
    """Free-text address split in the components the checkout form collects."""

    model_config = ConfigDict(populate_by_name=True)

    street: str = Field(..., min_length=1)
    postal_code: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("postal_code", "postalCode"),
    )
    city: str = Field(..., min_length=1)
    country: str = Field(default="FR", min_length=2, max_length=2)


class GeocodeCandidate(BaseModel):
    """Single match returned by the geocoding provider."""

    lat: float
    lng: float
    display_name: str | None = None
    importance: float | None = None


class ResolvedAddress(BaseModel):
    """Address that went through a successful geocoding call."""

    address: str = Field(..., description="Normalized text that was geocoded")
    street: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str = "FR"
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    geohash: str


class ProviderAddress(BaseModel):
    """Address in the shape the payment provider expects."""

    line1: str
    postal_code: str
    city: str
    country: str
