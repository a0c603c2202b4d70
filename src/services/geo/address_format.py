"""Helpers for French postal addresses."""

from __future__ import annotations

import re

from src.models.address import AddressInput, ProviderAddress

_POSTAL_CODE = re.compile(r"(\d{5})")
_LEADING_POSTAL_CODE = re.compile(r"^\d{5}\s*")
_WHITESPACE = re.compile(r"\s+")


def normalize_address(address: str) -> str:
    """Collapse repeated whitespace and trim."""
    return _WHITESPACE.sub(" ", address).strip()


def format_address(components: AddressInput) -> str:
    """Render components as ``"<street>, <postal code> <city>"``."""
    return normalize_address(
        f"{components.street}, {components.postal_code} {components.city}"
    )


def parse_address(address: str) -> AddressInput | None:
    """Split ``"12 rue X, 75001 Paris"`` into components, ``None`` if unparsable."""
    if not address or not isinstance(address, str):
        return None

    parts = address.split(", ")
    if len(parts) < 2:
        return None

    street = parts[0].strip()
    city_part = parts[1].strip()
    match = _POSTAL_CODE.search(city_part)
    if not match:
        return None

    postal_code = match.group(1)
    city = _LEADING_POSTAL_CODE.sub("", city_part).strip()
    if not street or not city:
        return None

    return AddressInput(street=street, postal_code=postal_code, city=city, country="FR")


def is_valid_address(components: AddressInput) -> bool:
    return bool(
        components.street.strip()
        and components.city.strip()
        and components.country.strip()
        and re.fullmatch(r"\d{5}", components.postal_code.strip())
    )


def to_provider_address(components: AddressInput) -> ProviderAddress:
    """Convert components to the payment provider's address format."""
    return ProviderAddress(
        line1=components.street.strip(),
        postal_code=components.postal_code.strip(),
        city=components.city.strip(),
        country=components.country.strip().upper(),
    )
