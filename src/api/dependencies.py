"""FastAPI dependencies assembling the checkout components per request."""

from __future__ import annotations

from typing import Annotated

import redis.asyncio as redis
from fastapi import Depends

from src.services.checkout.order_persister import OrderPersister
from src.services.checkout.snapshot_store import CheckoutSnapshotStore
from src.services.clients.content_client import ContentBackendDependency
from src.services.clients.geocoder_client import GeocoderDependency
from src.services.geo.address_resolver import AddressResolver
from src.services.geo.resolution_store import ResolvedAddressStore
from src.services.queue.order_retry_queue import OrderRetryQueue
from src.services.storage.redis_client import get_redis_client

RedisDependency = Annotated[redis.Redis, Depends(get_redis_client)]


def _get_snapshot_store(client: RedisDependency) -> CheckoutSnapshotStore:
    return CheckoutSnapshotStore(client)


def _get_retry_queue(client: RedisDependency) -> OrderRetryQueue:
    return OrderRetryQueue(client)


def _get_resolution_store(client: RedisDependency) -> ResolvedAddressStore:
    return ResolvedAddressStore(client)


SnapshotStoreDependency = Annotated[CheckoutSnapshotStore, Depends(_get_snapshot_store)]
RetryQueueDependency = Annotated[OrderRetryQueue, Depends(_get_retry_queue)]
ResolutionStoreDependency = Annotated[ResolvedAddressStore, Depends(_get_resolution_store)]


def _get_address_resolver(
    geocoder: GeocoderDependency,
    resolution_store: ResolutionStoreDependency,
) -> AddressResolver:
    return AddressResolver(geocoder, store=resolution_store)


def _get_order_persister(
    client: RedisDependency,
    content_backend: ContentBackendDependency,
    snapshot_store: SnapshotStoreDependency,
    retry_queue: RetryQueueDependency,
) -> OrderPersister:
    return OrderPersister(
        content_backend=content_backend,
        redis_client=client,
        snapshot_store=snapshot_store,
        retry_queue=retry_queue,
    )


AddressResolverDependency = Annotated[AddressResolver, Depends(_get_address_resolver)]
OrderPersisterDependency = Annotated[OrderPersister, Depends(_get_order_persister)]
