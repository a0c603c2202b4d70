"""Routes driving the hosted payment checkout."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status

from src.api.dependencies import (
    OrderPersisterDependency,
    ResolutionStoreDependency,
    SnapshotStoreDependency,
)
from src.api.errors import payments_disabled, to_http_exception
from src.models.checkout import (
    CheckoutSessionRequest,
    CheckoutSessionResult,
    ConfirmationResponse,
    PaymentVerification,
    SessionDetails,
    SessionIdRequest,
)
from src.services.checkout.errors import CheckoutError
from src.services.checkout.payment_verifier import PaymentVerifier
from src.services.checkout.session_builder import CheckoutSessionBuilder
from src.services.clients.content_client import ContentBackendDependency
from src.services.clients.payment_client import PaymentProviderDependency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _get_session_builder(
    payment_provider: PaymentProviderDependency,
    content_backend: ContentBackendDependency,
    snapshot_store: SnapshotStoreDependency,
    resolution_store: ResolutionStoreDependency,
) -> CheckoutSessionBuilder:
    if payment_provider is None:
        raise payments_disabled()
    return CheckoutSessionBuilder(
        payment_provider=payment_provider,
        content_backend=content_backend,
        snapshot_store=snapshot_store,
        resolution_store=resolution_store,
    )


def _get_payment_verifier(payment_provider: PaymentProviderDependency) -> PaymentVerifier:
    if payment_provider is None:
        raise payments_disabled()
    return PaymentVerifier(payment_provider)


SessionBuilderDependency = Annotated[CheckoutSessionBuilder, Depends(_get_session_builder)]
VerifierDependency = Annotated[PaymentVerifier, Depends(_get_payment_verifier)]


@router.post(
    "/session",
    response_model=CheckoutSessionResult,
    status_code=status.HTTP_201_CREATED,
    summary="Price the order and open a hosted payment session",
)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    builder: SessionBuilderDependency,
) -> CheckoutSessionResult:
    try:
        result = await builder.build_session(
            payload.order,
            payload.success_url,
            payload.cancel_url,
        )
    except CheckoutError as exc:
        logger.info(
            "Checkout session refused: %s",
            exc,
            extra={"code": exc.code, "cart_id": payload.order.cart_id},
        )
        raise to_http_exception(exc) from exc
    return result


@router.post(
    "/verify",
    response_model=PaymentVerification,
    summary="Check the payment status of a session",
)
async def verify_payment(
    payload: SessionIdRequest,
    verifier: VerifierDependency,
) -> PaymentVerification:
    try:
        return await verifier.verify(payload.session_id)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/session-details",
    response_model=SessionDetails,
    summary="Fetch the session fields shown on the success page",
)
async def read_session_details(
    payload: SessionIdRequest,
    verifier: VerifierDependency,
) -> SessionDetails:
    try:
        return await verifier.session_details(payload.session_id)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/confirm",
    response_model=ConfirmationResponse,
    summary="Record the order of a paid session",
)
async def confirm_order(
    payload: SessionIdRequest,
    verifier: VerifierDependency,
    persister: OrderPersisterDependency,
) -> ConfirmationResponse:
    """Verify the session and persist its order.

    Safe to call on every load of the success page: the order is written at
    most once per session and later calls return the recorded order.
    """
    try:
        verification = await verifier.verify(payload.session_id)
        order = await persister.confirm(verification)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc
    return ConfirmationResponse(status=verification.status, order=order)
