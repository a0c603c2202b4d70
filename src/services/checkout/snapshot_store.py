"""Redis-backed persistence for priced checkout snapshots."""

from __future__ import annotations

import redis.asyncio as redis

from src.config import settings
from src.models.checkout import CheckoutSnapshot


class CheckoutSnapshotStore:
    """Stores snapshots by pending order id and indexes them by fingerprint."""

    def __init__(self, client: redis.Redis):
        self._client = client
        self._prefix = settings.CHECKOUT_SNAPSHOT_PREFIX
        self._fingerprint_prefix = settings.CHECKOUT_FINGERPRINT_PREFIX
        self._ttl = settings.CHECKOUT_SNAPSHOT_TTL_SECONDS

    def _key(self, pending_order_id: str) -> str:
        return f"{self._prefix}{pending_order_id}"

    def _fingerprint_key(self, fingerprint: str) -> str:
        return f"{self._fingerprint_prefix}{fingerprint}"

    async def save(self, snapshot: CheckoutSnapshot) -> None:
        await self._client.set(
            self._key(snapshot.pending_order_id),
            snapshot.model_dump_json(),
            ex=self._ttl,
        )
        await self._client.set(
            self._fingerprint_key(snapshot.fingerprint),
            snapshot.pending_order_id,
            ex=self._ttl,
        )

    async def fetch(self, pending_order_id: str) -> CheckoutSnapshot | None:
        raw = await self._client.get(self._key(pending_order_id))
        if not raw:
            return None
        return CheckoutSnapshot.model_validate_json(raw)

    async def fetch_by_fingerprint(self, fingerprint: str) -> CheckoutSnapshot | None:
        pending_order_id = await self._client.get(self._fingerprint_key(fingerprint))
        if not pending_order_id:
            return None
        if isinstance(pending_order_id, bytes):
            pending_order_id = pending_order_id.decode("utf-8")
        return await self.fetch(pending_order_id)
