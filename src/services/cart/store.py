"""Redis-backed cart storage with change notifications."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from decimal import Decimal

import redis.asyncio as redis
from pydantic import TypeAdapter

from src.config import settings
from src.models.cart import OrderedProduct
from src.models.product import Option, Product
from src.services import pricing
from src.services.checkout.errors import InvalidQuantity, NotFound

logger = logging.getLogger(__name__)

_LINES_ADAPTER = TypeAdapter(list[OrderedProduct])


def _line_key(product: Product, option: Option | None) -> tuple[str, str | None]:
    return (product.document_id, option.document_id if option else None)


class CartStore:
    """Cart of one browser session, stored as a single JSON list.

    Every write replaces the whole list and publishes the cart id on the
    cart channel so listeners can re-render.
    """

    def __init__(self, client: redis.Redis, cart_id: str) -> None:
        self._client = client
        self.cart_id = cart_id
        self._ttl = settings.CART_TTL_SECONDS

    @property
    def key(self) -> str:
        return f"{settings.CART_KEY_PREFIX}{self.cart_id}"

    @property
    def channel(self) -> str:
        return f"{settings.CART_CHANNEL_PREFIX}{self.cart_id}"

    async def list(self) -> list[OrderedProduct]:
        raw = await self._client.get(self.key)
        if not raw:
            return []
        return _LINES_ADAPTER.validate_json(raw)

    async def add(
        self,
        product: Product,
        option: Option | None = None,
        qty: int = 1,
    ) -> list[OrderedProduct]:
        """Add a line, or increase the quantity of the matching line."""
        if qty <= 0:
            raise InvalidQuantity(f"Quantity must be positive, got {qty}")

        lines = await self.list()
        key = _line_key(product, option)
        for index, line in enumerate(lines):
            if line.key == key:
                lines[index] = line.model_copy(update={"quantity": line.quantity + qty})
                break
        else:
            lines.append(OrderedProduct(quantity=qty, product=product, option=option))

        await self._save(lines)
        return lines

    async def remove(
        self,
        product: Product | str,
        option: Option | str | None = None,
    ) -> list[OrderedProduct]:
        key = self._ref_key(product, option)
        lines = [line for line in await self.list() if line.key != key]
        await self._save(lines)
        return lines

    async def set_quantity(
        self,
        product: Product | str,
        option: Option | str | None,
        qty: int,
    ) -> list[OrderedProduct]:
        """Replace the quantity of an existing line; use :meth:`remove` to delete."""
        if qty <= 0:
            raise InvalidQuantity(
                f"Quantity must be positive, got {qty}; remove the line instead"
            )

        key = self._ref_key(product, option)
        lines = await self.list()
        for index, line in enumerate(lines):
            if line.key == key:
                lines[index] = line.model_copy(update={"quantity": qty})
                break
        else:
            raise NotFound(f"Cart line {key} not found")

        await self._save(lines)
        return lines

    async def clear(self) -> None:
        """Empty the cart. Safe to call any number of times."""
        await self._client.delete(self.key)
        await self._notify(0)
        logger.info("Cart cleared", extra={"cart_id": self.cart_id})

    async def count(self) -> int:
        return sum(line.quantity for line in await self.list())

    async def total(self, now: datetime | None = None) -> Decimal:
        return pricing.compute_cart_total(await self.list(), now)

    async def _save(self, lines: list[OrderedProduct]) -> None:
        payload = _LINES_ADAPTER.dump_json(lines).decode("utf-8")
        await self._client.set(self.key, payload, ex=self._ttl)
        await self._notify(sum(line.quantity for line in lines))

    async def _notify(self, count: int) -> None:
        message = json.dumps({"cart_id": self.cart_id, "count": count})
        await self._client.publish(self.channel, message)

    @staticmethod
    def _ref_key(
        product: Product | str,
        option: Option | str | None,
    ) -> tuple[str, str | None]:
        product_id = product if isinstance(product, str) else product.document_id
        if option is None or isinstance(option, str):
            return (product_id, option)
        return (product_id, option.document_id)


def get_cart_store(client: redis.Redis, cart_id: str) -> CartStore:
    """Factory function to create a cart store."""
    return CartStore(client, cart_id)
