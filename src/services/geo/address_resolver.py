"""Turns free-text addresses into geocoded, hash-keyed addresses."""

from __future__ import annotations

import logging

from src.config import settings
from src.models.address import AddressInput, GeocodeCandidate, ResolvedAddress
from src.services.checkout.errors import NotFound, UnresolvedAddressError
from src.services.clients.geocoder_client import Geocoder
from src.services.geo import geohash
from src.services.geo.address_format import format_address, normalize_address
from src.services.geo.resolution_store import ResolvedAddressStore

logger = logging.getLogger(__name__)


class AddressResolver:
    """Resolve addresses through the injected geocoder."""

    def __init__(
        self,
        geocoder: Geocoder,
        *,
        store: ResolvedAddressStore | None = None,
        candidates: int | None = None,
    ) -> None:
        self._geocoder = geocoder
        self._store = store
        self._candidates = candidates or settings.GEOCODER_CANDIDATES

    async def resolve(self, free_text: str) -> ResolvedAddress:
        """Geocode a free-text address.

        Raises:
            NotFound: the provider returned no match.
            ProviderUnavailable: the provider could not be reached.
        """
        query = normalize_address(free_text)
        if not query:
            raise NotFound("Address is empty")

        matches = await self._geocoder.search(query, limit=self._candidates)
        if not matches:
            logger.info("Address not found", extra={"query": query})
            raise NotFound("Address not found, please check it")

        best = _best_candidate(matches)
        return ResolvedAddress(
            address=query,
            lat=best.lat,
            lng=best.lng,
            geohash=geohash.encode(best.lat, best.lng),
        )

    async def resolve_input(self, components: AddressInput) -> ResolvedAddress:
        """Geocode form components and record the result for checkout."""
        resolved = await self.resolve(format_address(components))
        resolved = resolved.model_copy(
            update={
                "street": components.street.strip(),
                "postal_code": components.postal_code.strip(),
                "city": components.city.strip(),
                "country": components.country.strip().upper(),
            }
        )
        if self._store is not None:
            await self._store.save(resolved)
        return resolved


def _best_candidate(matches: list[GeocodeCandidate]) -> GeocodeCandidate:
    # Provider order is its ranking and has no ties
    return matches[0]


def is_fresh(components: AddressInput, resolved: ResolvedAddress | None) -> bool:
    """True when ``resolved`` was computed for exactly these components."""
    if resolved is None:
        return False
    return resolved.address == format_address(components)


def ensure_fresh(
    components: AddressInput,
    resolved: ResolvedAddress | None,
    *,
    label: str = "delivery",
) -> ResolvedAddress:
    if resolved is None:
        raise UnresolvedAddressError(f"The {label} address must be geocoded before checkout")
    if not is_fresh(components, resolved):
        raise UnresolvedAddressError(
            f"The {label} address changed since it was geocoded, please geocode it again"
        )
    return resolved


async def ensure_geocoded(
    components: AddressInput,
    resolved: ResolvedAddress | None,
    store: ResolvedAddressStore,
    *,
    label: str = "delivery",
) -> ResolvedAddress:
    """Return the server-side resolution matching the submitted one.

    Raises:
        UnresolvedAddressError: the submission is missing, stale, or was not
            produced by ``resolve_input``.
    """
    submitted = ensure_fresh(components, resolved, label=label)
    recorded = await store.fetch(submitted.address)
    if recorded is None or (recorded.lat, recorded.lng, recorded.geohash) != (
        submitted.lat,
        submitted.lng,
        submitted.geohash,
    ):
        logger.warning(
            "Submitted %s address does not match a recorded resolution",
            label,
            extra={"address": submitted.address},
        )
        raise UnresolvedAddressError(
            f"The {label} address must be geocoded again before checkout"
        )
    return recorded
