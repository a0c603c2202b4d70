"""Geocoder client abstractions and implementations."""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Annotated, Any

import httpx
from fastapi import Depends

from src.config import settings
from src.models.address import GeocodeCandidate
from src.services.checkout.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class Geocoder(ABC):
    """Abstract geocoder turning free text into ranked coordinates."""

    @abstractmethod
    async def search(self, query: str, limit: int = 1) -> list[GeocodeCandidate]:
        """Return candidates in provider rank order, best first."""


class NominatimGeocoder(Geocoder):
    """Geocoder backed by an OpenStreetMap Nominatim search endpoint."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        url: str,
        user_agent: str,
        min_interval: float = 1.0,
    ) -> None:
        if not user_agent:
            raise ValueError("A descriptive User-Agent is required by the geocoder")

        self._http = http_client
        self._url = url
        self._user_agent = user_agent
        self._min_interval = min_interval
        self._lock = asyncio.Lock()
        self._last_call = 0.0

    async def aclose(self) -> None:
        await self._http.aclose()

    async def search(self, query: str, limit: int = 1) -> list[GeocodeCandidate]:
        params = {"format": "json", "q": query, "limit": str(limit)}
        headers = {"User-Agent": self._user_agent, "Accept-Language": "fr"}

        async with self._lock:
            await self._respect_rate_limit()
            try:
                response = await self._http.get(self._url, params=params, headers=headers)
                response.raise_for_status()
                rows = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("Geocoding request failed: %s", exc, exc_info=True)
                raise ProviderUnavailable("geocoding", "Geocoding service unavailable") from exc
            finally:
                self._last_call = time.monotonic()

        if not isinstance(rows, list):
            raise ProviderUnavailable("geocoding", "Unexpected geocoding response")
        return [self._to_candidate(row) for row in rows if self._has_coordinates(row)]

    async def _respect_rate_limit(self) -> None:
        elapsed = time.monotonic() - self._last_call
        if elapsed < self._min_interval:
            await asyncio.sleep(self._min_interval - elapsed)

    @staticmethod
    def _has_coordinates(row: Any) -> bool:
        return isinstance(row, dict) and "lat" in row and "lon" in row

    @staticmethod
    def _to_candidate(row: dict[str, Any]) -> GeocodeCandidate:
        importance = row.get("importance")
        return GeocodeCandidate(
            lat=float(row["lat"]),
            lng=float(row["lon"]),
            display_name=row.get("display_name"),
            importance=float(importance) if importance is not None else None,
        )


_geocoder: Geocoder | None = None


def _initialize_geocoder() -> Geocoder:
    http_client = httpx.AsyncClient(timeout=settings.GEOCODER_TIMEOUT_SECONDS)
    return NominatimGeocoder(
        http_client=http_client,
        url=settings.GEOCODER_URL,
        user_agent=settings.GEOCODER_USER_AGENT,
        min_interval=settings.GEOCODER_MIN_INTERVAL_SECONDS,
    )


def get_geocoder() -> Geocoder:
    """FastAPI dependency returning the process-wide geocoder."""

    global _geocoder
    if _geocoder is None:
        _geocoder = _initialize_geocoder()
    return _geocoder


GeocoderDependency = Annotated[Geocoder, Depends(get_geocoder)]


async def close_geocoder() -> None:
    global _geocoder
    if isinstance(_geocoder, NominatimGeocoder):
        await _geocoder.aclose()
    _geocoder = None
