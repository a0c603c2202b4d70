"""Queue of paid orders that could not be written to the content backend."""

from __future__ import annotations

import logging
from collections.abc import Sequence

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import ResponseError

from src.config import settings
from src.models.checkout import CheckoutSnapshot

logger = logging.getLogger(__name__)

StreamEntries = list[tuple[str, Sequence[tuple[str, dict[str, str] | None]]]]


class PendingOrder(BaseModel):
    """Everything needed to replay a persistence attempt."""

    entry_id: str
    session_id: str
    client_email: str
    snapshot: CheckoutSnapshot
    attempts: int = 1


class OrderRetryQueue:
    """Redis stream of orders whose payment succeeded but persistence failed.

    Entries are read through one consumer group under a fixed consumer name.
    An entry stays in that consumer's pending list until :meth:`complete` is
    called, and every read starts with that pending list, so a replay that
    died half way is picked up again by the next one.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        stream_key: str | None = None,
        group_name: str | None = None,
        consumer_name: str | None = None,
    ):
        self.client = client
        self.stream_key = stream_key or settings.ORDER_RETRY_STREAM_KEY
        self.group_name = group_name or settings.ORDER_RETRY_CONSUMER_GROUP
        self.consumer_name = consumer_name or settings.ORDER_RETRY_CONSUMER_NAME

    async def ensure_group(self) -> None:
        try:
            await self.client.xgroup_create(
                name=self.stream_key,
                groupname=self.group_name,
                id="0",
                mkstream=True,
            )
            logger.info("Created order retry consumer group", extra={"group": self.group_name})
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def enqueue(
        self,
        session_id: str,
        snapshot: CheckoutSnapshot,
        client_email: str,
        error: Exception,
        attempts: int = 1,
    ) -> bool:
        """Append the order to the retry stream; returns False if Redis failed."""
        try:
            entry_id = await self.client.xadd(
                self.stream_key,
                {
                    "session_id": session_id,
                    "client_email": client_email,
                    "payload": snapshot.model_dump_json(),
                    "error": str(error),
                    "attempts": str(attempts),
                },
            )
        except Exception as queue_error:  # pylint: disable=broad-exception-caught
            logger.error(
                "Failed to queue order for retry: %s",
                queue_error,
                extra={"session_id": session_id, "original_error": str(error)},
                exc_info=True,
            )
            return False

        logger.warning(
            "Order queued for persistence retry",
            extra={
                "entry_id": entry_id,
                "session_id": session_id,
                "stream": self.stream_key,
                "attempts": attempts,
                "error": str(error),
            },
        )
        return True

    async def read_pending(self, count: int) -> list[PendingOrder]:
        """Return unfinished entries first, then new ones, up to ``count``."""
        await self.ensure_group()
        unfinished = await self._read("0", count)
        pending, deleted = _parse(unfinished)
        if deleted:
            # Deleted while still unacknowledged; nothing left to replay
            await self.client.xack(self.stream_key, self.group_name, *deleted)
        if len(pending) < count:
            fresh = await self._read(">", count - len(pending))
            pending.extend(_parse(fresh)[0])
        if pending:
            logger.info(
                "Read orders to replay",
                extra={"count": len(pending), "stream": self.stream_key},
            )
        return pending

    async def complete(self, entry_ids: list[str]) -> None:
        if not entry_ids:
            return
        await self.client.xack(self.stream_key, self.group_name, *entry_ids)
        await self.client.xdel(self.stream_key, *entry_ids)

    async def _read(self, last_id: str, count: int) -> StreamEntries:
        entries = await self.client.xreadgroup(
            groupname=self.group_name,
            consumername=self.consumer_name,
            streams={self.stream_key: last_id},
            count=count,
        )
        return entries or []


def _parse(entries: StreamEntries) -> tuple[list[PendingOrder], list[str]]:
    pending: list[PendingOrder] = []
    deleted: list[str] = []
    for _stream, messages in entries:
        for entry_id, fields in messages:
            if not fields:
                deleted.append(entry_id)
                continue
            pending.append(
                PendingOrder(
                    entry_id=entry_id,
                    session_id=fields["session_id"],
                    client_email=fields["client_email"],
                    snapshot=CheckoutSnapshot.model_validate_json(fields["payload"]),
                    attempts=int(fields.get("attempts", "1")),
                )
            )
    return pending, deleted
