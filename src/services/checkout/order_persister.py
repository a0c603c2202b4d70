"""Writes confirmed orders exactly once per payment session."""

from __future__ import annotations

import asyncio
import logging
import uuid

import redis.asyncio as redis
from redis.exceptions import RedisError

from src.config import settings
from src.models.checkout import CheckoutSnapshot, PaymentVerification
from src.models.order import Order
from src.services import pricing
from src.services.cart.store import CartStore
from src.services.checkout.errors import CheckoutError, PaymentNotConfirmed, PersistenceError
from src.services.checkout.snapshot_store import CheckoutSnapshotStore
from src.services.clients.content_client import ContentBackend
from src.services.queue.order_retry_queue import OrderRetryQueue

logger = logging.getLogger(__name__)

_LOCK_POLL_SECONDS = 0.1


class OrderPersister:
    """Persist paid orders idempotently, keyed by the payment session id.

    A Redis index maps each session to its order; the content backend is
    queried as a second source of truth, and a short ``SET NX`` lock keeps two
    concurrent confirmations of the same session from both writing.
    """

    def __init__(
        self,
        *,
        content_backend: ContentBackend,
        redis_client: redis.Redis,
        snapshot_store: CheckoutSnapshotStore,
        retry_queue: OrderRetryQueue,
        lock_wait_seconds: float | None = None,
    ) -> None:
        self._backend = content_backend
        self._redis = redis_client
        self._snapshots = snapshot_store
        self._retry_queue = retry_queue
        self._lock_wait = (
            settings.ORDER_LOCK_WAIT_SECONDS if lock_wait_seconds is None else lock_wait_seconds
        )

    async def confirm(self, verification: PaymentVerification) -> Order:
        """Persist the order behind a verified session.

        Only the server-side snapshot referenced by the session metadata is
        trusted; its total must match what the provider charged.
        """
        session = verification.session
        if not verification.is_paid:
            raise PaymentNotConfirmed(verification.status.value)

        pending_order_id = session.metadata.get("pending_order_id")
        if not pending_order_id:
            raise PersistenceError(
                "Paid session carries no pending order reference",
                session_id=session.id,
            )

        try:
            snapshot = await self._snapshots.fetch(pending_order_id)
        except RedisError as exc:
            logger.error("Failed to load checkout snapshot", exc_info=True)
            raise PersistenceError(
                "Checkout snapshot unavailable",
                session_id=session.id,
            ) from exc

        if snapshot is None:
            raise PersistenceError(
                f"No checkout snapshot for pending order {pending_order_id}",
                session_id=session.id,
            )
        _check_consistency(snapshot, verification)

        email = session.customer_email or session.metadata.get("client_email") or snapshot.client.email
        return await self.persist(snapshot, email, session_id=session.id)

    async def persist(
        self,
        cart_snapshot: CheckoutSnapshot,
        resolved_client_email: str,
        *,
        session_id: str,
        queue_on_failure: bool = True,
    ) -> Order:
        """Write the order once; later calls for the same session return it."""
        lock_key = f"{settings.ORDER_LOCK_PREFIX}{session_id}"
        token = uuid.uuid4().hex
        acquired = False

        try:
            existing = await self._existing_order(session_id)
            if existing is not None:
                logger.info("Order already recorded", extra={"session_id": session_id})
                return existing

            acquired = bool(
                await self._redis.set(
                    lock_key,
                    token,
                    nx=True,
                    ex=settings.ORDER_LOCK_TTL_SECONDS,
                )
            )
            if not acquired:
                return await self._wait_for_concurrent_write(session_id)

            # Re-check now that this caller owns the session
            existing = await self._existing_order(session_id)
            if existing is not None:
                return existing

            order = await self._write(cart_snapshot, resolved_client_email, session_id)
            await self._index(session_id, order)
        except (CheckoutError, RedisError) as exc:
            if isinstance(exc, PersistenceError):
                raise
            await self._fail(cart_snapshot, resolved_client_email, session_id, exc, queue_on_failure)
        finally:
            if acquired:
                await self._release_lock(lock_key, token)

        await self._clear_cart(cart_snapshot)
        logger.info(
            "Order recorded",
            extra={
                "session_id": session_id,
                "order_id": order.document_id,
                "total": str(order.total),
            },
        )
        return order

    async def replay_pending(self, count: int | None = None) -> int:
        """Retry queued persistence attempts; returns the number recorded.

        An entry is completed only once its order is recorded or a follow-up
        entry replaced it. Anything else leaves it pending for the next call.
        """
        batch = await self._retry_queue.read_pending(count or settings.ORDER_RETRY_BATCH_SIZE)
        recorded = 0
        for pending in batch:
            try:
                await self.persist(
                    pending.snapshot,
                    pending.client_email,
                    session_id=pending.session_id,
                    queue_on_failure=False,
                )
            except PersistenceError as exc:
                requeued = await self._retry_queue.enqueue(
                    pending.session_id,
                    pending.snapshot,
                    pending.client_email,
                    exc,
                    attempts=pending.attempts + 1,
                )
                if not requeued:
                    logger.error(
                        "Replay failed and could not be re-queued, entry left pending",
                        extra={"entry_id": pending.entry_id, "session_id": pending.session_id},
                    )
                    continue
            else:
                recorded += 1
            await self._retry_queue.complete([pending.entry_id])
        return recorded

    async def _existing_order(self, session_id: str) -> Order | None:
        raw = await self._redis.get(f"{settings.ORDER_INDEX_PREFIX}{session_id}")
        if raw:
            return Order.model_validate_json(raw)
        return await self._backend.find_order_by_session(session_id)

    async def _write(
        self,
        snapshot: CheckoutSnapshot,
        email: str,
        session_id: str,
    ) -> Order:
        client = snapshot.client
        billing = client.billing_address or client.delivery_address
        client_id = await self._backend.save_client(
            client,
            client.delivery_address.resolved,
            billing.resolved,
        )
        order = Order(
            client_id=client_id,
            client_email=email,
            lines=snapshot.lines,
            subtotal=snapshot.subtotal,
            discount_amount=snapshot.discount_amount,
            total=snapshot.total,
            promo_code=snapshot.promo_code,
            payment_session_id=session_id,
            pending_order_id=snapshot.pending_order_id,
        )
        return await self._backend.create_order(order)

    async def _index(self, session_id: str, order: Order) -> None:
        await self._redis.set(
            f"{settings.ORDER_INDEX_PREFIX}{session_id}",
            order.model_dump_json(),
            ex=settings.CHECKOUT_SNAPSHOT_TTL_SECONDS,
        )

    async def _wait_for_concurrent_write(self, session_id: str) -> Order:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._lock_wait
        while loop.time() < deadline:
            await asyncio.sleep(_LOCK_POLL_SECONDS)
            existing = await self._existing_order(session_id)
            if existing is not None:
                return existing
        raise PersistenceError(
            "Your order is still being recorded, please refresh in a moment",
            session_id=session_id,
        )

    async def _fail(
        self,
        snapshot: CheckoutSnapshot,
        email: str,
        session_id: str,
        error: Exception,
        queue_on_failure: bool,
    ) -> None:
        logger.error(
            "Order persistence failed after confirmed payment: %s",
            error,
            extra={"session_id": session_id, "pending_order_id": snapshot.pending_order_id},
        )
        queued = False
        if queue_on_failure:
            queued = await self._retry_queue.enqueue(session_id, snapshot, email, error)
        raise PersistenceError(
            "Your payment was accepted but your order could not be recorded. "
            "Please contact support with your payment reference.",
            session_id=session_id,
            retry_queued=queued,
        ) from error

    async def _release_lock(self, lock_key: str, token: str) -> None:
        try:
            if await self._redis.get(lock_key) == token:
                await self._redis.delete(lock_key)
        except RedisError:
            logger.warning("Failed to release order lock %s", lock_key, exc_info=True)

    async def _clear_cart(self, snapshot: CheckoutSnapshot) -> None:
        if not snapshot.cart_id:
            return
        try:
            await CartStore(self._redis, snapshot.cart_id).clear()
        except RedisError:
            logger.error(
                "Order recorded but cart could not be cleared",
                extra={"cart_id": snapshot.cart_id},
                exc_info=True,
            )


def _check_consistency(snapshot: CheckoutSnapshot, verification: PaymentVerification) -> None:
    session = verification.session
    if snapshot.session_id and snapshot.session_id != session.id:
        raise PersistenceError(
            "Checkout snapshot belongs to another payment session",
            session_id=session.id,
        )
    if session.metadata.get("total") != str(snapshot.total):
        raise PersistenceError(
            "Session total does not match the priced checkout",
            session_id=session.id,
        )
    if session.amount_total is not None and session.amount_total != pricing.to_minor_units(
        snapshot.total
    ):
        raise PersistenceError(
            "Charged amount does not match the priced checkout",
            session_id=session.id,
        )
