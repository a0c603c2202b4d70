"""Content backend client abstractions and implementations.

The content backend owns products, discounts, clients and orders. The
checkout pipeline only reads the catalog and writes clients and orders.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Annotated, Any

import httpx
from fastapi import Depends

from src.config import settings
from src.models.address import ResolvedAddress
from src.models.checkout import CheckoutClient
from src.models.order import Order, OrderLine
from src.models.product import Discount, Product
from src.services.checkout.errors import ProviderUnavailable, ValidationError

logger = logging.getLogger(__name__)


class ContentBackend(ABC):
    """Abstract interface of the content-management backend."""

    @abstractmethod
    async def get_product(self, product_id: str) -> Product | None:
        """Return the product with options and discounts, ``None`` if unknown."""

    @abstractmethod
    async def find_discounts_by_code(self, code: str) -> list[Discount]:
        """Return every discount carrying the given promo code."""

    @abstractmethod
    async def save_client(
        self,
        client: CheckoutClient,
        delivery: ResolvedAddress,
        billing: ResolvedAddress,
    ) -> str:
        """Create or update the client record and return its identifier."""

    @abstractmethod
    async def find_order_by_session(self, session_id: str) -> Order | None:
        """Return the order recorded for a payment session, if any."""

    @abstractmethod
    async def create_order(self, order: Order) -> Order:
        """Persist a new order and return it with its identifier."""


class StrapiContentBackend(ContentBackend):
    """Content backend reached through Strapi's REST API."""

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient,
        base_url: str,
        token: str | None = None,
        media_base_url: str | None = None,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._media_base_url = (media_base_url or base_url).rstrip("/")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_product(self, product_id: str) -> Product | None:
        payload = await self._request(
            "GET",
            f"/api/products/{product_id}",
            params={"populate": "*"},
        )
        if payload is None:
            return None
        return self._to_product(_flatten(payload.get("data")))

    async def find_discounts_by_code(self, code: str) -> list[Discount]:
        payload = await self._request(
            "GET",
            "/api/discounts",
            params={"filters[code][$eqi]": code.strip(), "populate": "product"},
        )
        rows = (payload or {}).get("data") or []
        discounts = []
        for row in rows:
            document = _flatten(row)
            product = _flatten(document.pop("product", None))
            if product and "product_id" not in document:
                document["product_id"] = product.get("documentId")
            discounts.append(Discount.model_validate(document))
        return discounts

    async def save_client(
        self,
        client: CheckoutClient,
        delivery: ResolvedAddress,
        billing: ResolvedAddress,
    ) -> str:
        data = {
            "firstname": client.firstname,
            "lastname": client.lastname,
            "email": client.email,
            "deliveryAddress": _location(delivery),
            "billingAddress": _location(billing),
        }

        document_id = client.document_id or await self._find_client_id(client.email)
        if document_id:
            await self._request("PUT", f"/api/clients/{document_id}", json={"data": data})
            return document_id

        payload = await self._request("POST", "/api/clients", json={"data": data})
        created = _flatten((payload or {}).get("data"))
        return str(created.get("documentId"))

    async def find_order_by_session(self, session_id: str) -> Order | None:
        payload = await self._request(
            "GET",
            "/api/orders",
            params={
                "filters[paymentSessionId][$eq]": session_id,
                "populate": "*",
            },
        )
        rows = (payload or {}).get("data") or []
        if not rows:
            return None
        return self._to_order(_flatten(rows[0]))

    async def create_order(self, order: Order) -> Order:
        data = {
            "client": order.client_id,
            "clientEmail": order.client_email,
            "completed": order.completed,
            "paymentSessionId": order.payment_session_id,
            "pendingOrderId": order.pending_order_id,
            "subtotal": _number(order.subtotal),
            "discountAmount": _number(order.discount_amount),
            "total": _number(order.total),
            "promoCode": order.promo_code,
            "lines": [
                {
                    "product": line.product_id,
                    "productName": line.product_name,
                    "option": line.option_id,
                    "optionName": line.option_name,
                    "unitPrice": _number(line.unit_price),
                    "quantity": line.quantity,
                    "lineTotal": _number(line.line_total),
                }
                for line in order.lines
            ],
        }
        payload = await self._request("POST", "/api/orders", json={"data": data})
        created = _flatten((payload or {}).get("data"))
        stored = order.model_dump()
        stored["document_id"] = str(created.get("documentId"))
        if created.get("createdAt"):
            stored["created_at"] = created["createdAt"]
        return Order.model_validate(stored)

    async def _find_client_id(self, email: str) -> str | None:
        payload = await self._request(
            "GET",
            "/api/clients",
            params={"filters[email][$eqi]": email},
        )
        rows = (payload or {}).get("data") or []
        if not rows:
            return None
        return _flatten(rows[0]).get("documentId")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            response = await self._http.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.error("Content backend unreachable: %s", exc, exc_info=True)
            raise ProviderUnavailable("content", "Content backend unreachable") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 500:
            logger.error(
                "Content backend error",
                extra={"path": path, "status": response.status_code},
            )
            raise ProviderUnavailable(
                "content",
                f"Content backend error ({response.status_code})",
            )
        if response.status_code >= 400:
            logger.warning(
                "Content backend rejected request",
                extra={"path": path, "status": response.status_code},
            )
            raise ValidationError(
                f"Content backend rejected the request ({response.status_code})",
                code="content_rejected",
            )
        if not response.content:
            return {}
        return response.json()

    def _to_product(self, document: dict[str, Any]) -> Product:
        product_id = document.get("documentId")
        discounts = []
        for raw in document.get("discounts") or []:
            discount = _flatten(raw)
            discount.setdefault("product_id", product_id)
            discounts.append(discount)

        return Product.model_validate(
            {
                **document,
                "image": self._image_url(document.get("image")),
                "options": [_flatten(raw) for raw in document.get("options") or []],
                "discounts": discounts,
                "feedbacks": [_flatten(raw) for raw in document.get("feedbacks") or []],
            }
        )

    def _image_url(self, image: Any) -> str | None:
        if isinstance(image, list):
            image = image[0] if image else None
        image = _flatten(image) if isinstance(image, dict) else image
        if isinstance(image, dict):
            image = image.get("url")
        if not image:
            return None
        if str(image).startswith(("http://", "https://")):
            return str(image)
        if str(image).startswith("/"):
            return f"{self._media_base_url}{image}"
        return f"{self._media_base_url}/uploads/{image}"

    @staticmethod
    def _to_order(document: dict[str, Any]) -> Order:
        client = _flatten(document.get("client"))
        lines = [
            OrderLine(
                product_id=_relation_id(line.get("product")),
                product_name=line.get("productName") or "",
                option_id=_relation_id(line.get("option")) or None,
                option_name=line.get("optionName"),
                unit_price=Decimal(str(line.get("unitPrice", 0))),
                quantity=int(line.get("quantity", 1)),
                line_total=Decimal(str(line.get("lineTotal", 0))),
            )
            for line in (_flatten(raw) for raw in document.get("lines") or [])
        ]
        extra = {"created_at": document["createdAt"]} if document.get("createdAt") else {}
        return Order(
            **extra,
            document_id=document.get("documentId"),
            completed=bool(document.get("completed", False)),
            client_id=client.get("documentId") if client else None,
            client_email=document.get("clientEmail") or "",
            lines=lines,
            subtotal=Decimal(str(document.get("subtotal", 0))),
            discount_amount=Decimal(str(document.get("discountAmount") or 0)),
            total=Decimal(str(document.get("total", 0))),
            promo_code=document.get("promoCode"),
            payment_session_id=document.get("paymentSessionId") or "",
            pending_order_id=document.get("pendingOrderId"),
        )


def _flatten(document: Any) -> dict[str, Any]:
    """Unwrap Strapi ``{"data": ...}`` relations and v4 ``attributes`` blocks."""
    if document is None:
        return {}
    if isinstance(document, dict) and set(document) == {"data"}:
        return _flatten(document["data"])
    if not isinstance(document, dict):
        return {}
    if "attributes" in document:
        merged = dict(document["attributes"])
        merged.setdefault("id", document.get("id"))
        return merged
    return dict(document)


def _relation_id(value: Any) -> str:
    if isinstance(value, dict):
        return str(_flatten(value).get("documentId") or "")
    return str(value or "")


def _location(address: ResolvedAddress) -> dict[str, Any]:
    return {
        "address": address.address,
        "lat": address.lat,
        "lng": address.lng,
        "geohash": address.geohash,
    }


def _number(amount: Decimal) -> float:
    return float(amount)


_content_backend: ContentBackend | None = None


def _initialize_content_backend() -> ContentBackend:
    http_client = httpx.AsyncClient(timeout=settings.CONTENT_BACKEND_TIMEOUT_SECONDS)
    return StrapiContentBackend(
        http_client=http_client,
        base_url=settings.CONTENT_BACKEND_URL,
        token=settings.CONTENT_BACKEND_TOKEN,
        media_base_url=settings.MEDIA_BASE_URL,
    )


def get_content_backend() -> ContentBackend:
    """FastAPI dependency returning the configured content backend client."""

    global _content_backend
    if _content_backend is None:
        _content_backend = _initialize_content_backend()
    return _content_backend


ContentBackendDependency = Annotated[ContentBackend, Depends(get_content_backend)]


async def close_content_backend() -> None:
    global _content_backend
    if isinstance(_content_backend, StrapiContentBackend):
        await _content_backend.aclose()
    _content_backend = None
