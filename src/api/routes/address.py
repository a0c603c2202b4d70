"""Routes resolving checkout addresses through the geocoder."""

from __future__ import annotations

from fastapi import APIRouter

from src.api.dependencies import AddressResolverDependency
from src.api.errors import to_http_exception
from src.models.address import AddressInput, ResolvedAddress
from src.services.checkout.errors import CheckoutError, ValidationError
from src.services.geo.address_format import is_valid_address

router = APIRouter(prefix="/address", tags=["address"])


@router.post(
    "/resolve",
    response_model=ResolvedAddress,
    summary="Geocode an address typed in the checkout form",
)
async def resolve_address(
    payload: AddressInput,
    resolver: AddressResolverDependency,
) -> ResolvedAddress:
    """Resolve the address; the result must be sent back with the checkout."""
    try:
        if not is_valid_address(payload):
            raise ValidationError(
                "Street, postal code and city are required",
                code="invalid_address",
            )
        return await resolver.resolve_input(payload)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc
