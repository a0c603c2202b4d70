"""Redis record of the addresses this service geocoded itself."""

from __future__ import annotations

import hashlib

import redis.asyncio as redis

from src.config import settings
from src.models.address import ResolvedAddress


class ResolvedAddressStore:
    """Keeps resolutions keyed by the normalized text that was geocoded."""

    def __init__(self, client: redis.Redis, *, ttl_seconds: int | None = None):
        self._client = client
        self._prefix = settings.ADDRESS_RESOLUTION_PREFIX
        self._ttl = ttl_seconds or settings.ADDRESS_RESOLUTION_TTL_SECONDS

    def _key(self, address: str) -> str:
        digest = hashlib.sha256(address.encode("utf-8")).hexdigest()
        return f"{self._prefix}{digest}"

    async def save(self, resolved: ResolvedAddress) -> None:
        await self._client.set(self._key(resolved.address), resolved.model_dump_json(), ex=self._ttl)

    async def fetch(self, address: str) -> ResolvedAddress | None:
        raw = await self._client.get(self._key(address))
        if not raw:
            return None
        return ResolvedAddress.model_validate_json(raw)
