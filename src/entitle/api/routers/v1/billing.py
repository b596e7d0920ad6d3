"""Billing endpoints.

- POST /v1/billing/webhook - Signed provider webhook
- POST /v1/billing/checkout - Hosted checkout for the caller's tenant
- POST /v1/billing/sync - Out-of-band reconciliation (API key)
"""

from datetime import UTC, datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from entitle.api.dependencies import (
    get_app_settings,
    get_checkout_service,
    get_current_user,
    get_request_id,
    get_sync_service,
    require_service,
)
from entitle.api.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    SyncResponse,
    WebhookAck,
)
from entitle.api.schemas.errors import ErrorCode
from entitle.billing import (
    BillingEventReconciler,
    CheckoutService,
    ReconcileOutcome,
    SubscriptionSyncService,
    get_webhook_adapter,
)
from entitle.billing.webhooks import decode_payload, describe_event
from entitle.config.settings import Settings
from entitle.core.exceptions import AccessDeniedError, ConcurrentUpdateError, ValidationError
from entitle.db.config import get_db
from entitle.db.models import User
from entitle.observability.metrics import record_webhook_event

logger = structlog.get_logger()

router = APIRouter(prefix="/billing", tags=["billing"])


def _webhook_error(status_code: int, error_code: ErrorCode, message: str, request_id: str):
    return HTTPException(
        status_code=status_code,
        detail={
            "error_code": error_code.value,
            "message": message,
            "request_id": request_id,
            "timestamp": datetime.now(UTC).isoformat(),
        },
    )


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Receive billing provider webhook",
    responses={
        200: {"description": "Event handled (including unresolvable and stale events)"},
        400: {"description": "Malformed payload"},
        401: {"description": "Invalid or missing signature"},
        503: {"description": "Store unavailable or webhook secret not configured"},
    },
)
async def receive_billing_webhook(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    request_id: Annotated[str, Depends(get_request_id)],
) -> WebhookAck:
    """Verify, parse and reconcile one provider delivery.

    Only a signature failure, a malformed body or a store outage is
    reported as an error; the provider retries those. Everything else is
    acknowledged so it is not redelivered forever.
    """
    if settings.billing_webhook_secret is None:
        logger.error("billing_webhook_secret_missing", request_id=request_id)
        raise _webhook_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.SERVICE_UNAVAILABLE,
            "Webhook verification is not configured",
            request_id,
        )

    raw_body = await request.body()
    adapter = get_webhook_adapter(
        settings.billing_webhook_format, settings.billing_webhook_tolerance_seconds
    )
    headers = {k.lower(): v for k, v in request.headers.items()}
    validation = adapter.validate_signature(
        headers, raw_body, settings.billing_webhook_secret.get_secret_value()
    )
    if not validation.valid:
        logger.warning(
            "billing_webhook_signature_failed",
            error=validation.error,
            webhook_format=adapter.format_id.value,
            request_id=request_id,
        )
        raise _webhook_error(
            status.HTTP_401_UNAUTHORIZED,
            ErrorCode.INVALID_SIGNATURE,
            "Webhook signature validation failed",
            request_id,
        )

    try:
        payload = decode_payload(raw_body)
        event = adapter.parse_event(payload)
    except ValidationError as exc:
        logger.warning("billing_webhook_malformed", error=str(exc), request_id=request_id)
        raise _webhook_error(
            status.HTTP_400_BAD_REQUEST,
            ErrorCode.INVALID_PAYLOAD,
            "Malformed webhook payload",
            request_id,
        ) from exc

    if event is None:
        event_name = describe_event(payload)
        record_webhook_event(event_name, ReconcileOutcome.IGNORED.value)
        logger.info("billing_webhook_ignored", event_name=event_name, request_id=request_id)
        return WebhookAck(outcome=ReconcileOutcome.IGNORED.value)

    try:
        result = await BillingEventReconciler(db, settings).apply_event(event)
    except SQLAlchemyError as exc:
        logger.error(
            "billing_webhook_store_unavailable",
            error=type(exc).__name__,
            event_type=event.event_type.value,
            request_id=request_id,
        )
        raise _webhook_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.SERVICE_UNAVAILABLE,
            "Entitlement store unavailable",
            request_id,
        ) from exc
    except ConcurrentUpdateError as exc:
        # Not applied; a 5xx makes the provider redeliver
        logger.warning(
            "billing_webhook_contended",
            error=str(exc),
            event_type=event.event_type.value,
            request_id=request_id,
        )
        raise _webhook_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.SERVICE_UNAVAILABLE,
            "Subscription is being updated concurrently, retry later",
            request_id,
        ) from exc

    return WebhookAck(outcome=result.outcome.value, subscription_id=result.subscription_id)


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a checkout session for the caller's tenant",
)
async def create_checkout(
    body: CheckoutRequest,
    user: Annotated[User, Depends(get_current_user)],
    checkout: Annotated[CheckoutService, Depends(get_checkout_service)],
) -> CheckoutResponse:
    if not user.is_admin:
        raise AccessDeniedError("Only tenant admins can buy a plan", reason="not_tenant_admin")
    session = await checkout.create_checkout(user.tenant_id, body.plan, body.quantity, user=user)
    return CheckoutResponse(session_ref=session.session_ref, url=session.url)


@router.post(
    "/sync",
    response_model=SyncResponse,
    dependencies=[Depends(require_service)],
    summary="Reconcile subscriptions against the billing provider",
)
async def sync_subscriptions(
    sync: Annotated[SubscriptionSyncService, Depends(get_sync_service)],
    subscription_ref: str | None = None,
) -> SyncResponse:
    """Sync one subscription when ``subscription_ref`` is given, otherwise all of them."""
    if subscription_ref:
        outcome = await sync.sync_one(subscription_ref)
        return SyncResponse(
            checked=1,
            failed=0 if outcome else 1,
            outcomes={outcome.value: 1} if outcome else {},
        )
    report = await sync.sync_all()
    return SyncResponse(
        checked=report.checked, failed=report.failed, outcomes=dict(report.outcomes)
    )
