"""Billing webhook adapters: signature verification and payload parsing.

Each provider wire format gets an adapter that turns a signed HTTP
delivery into a ``BillingEvent``. The router never trusts a payload whose
signature did not verify.
"""

import hashlib
import hmac
import json
import time
from datetime import UTC, datetime
from typing import Any, Protocol

from entitle.billing.events import BillingEvent, BillingEventType, EventCorrelation
from entitle.config.settings import WebhookFormat
from entitle.core.exceptions import ValidationError


class WebhookValidationResult:
    """Result of webhook signature validation."""

    def __init__(self, valid: bool, error: str | None = None) -> None:
        self.valid = valid
        self.error = error

    @classmethod
    def success(cls) -> "WebhookValidationResult":
        """Create a successful validation result."""
        return cls(valid=True)

    @classmethod
    def failure(cls, error: str) -> "WebhookValidationResult":
        """Create a failed validation result."""
        return cls(valid=False, error=error)


class BillingWebhookAdapter(Protocol):
    """Protocol for provider-specific webhook formats."""

    @property
    def format_id(self) -> WebhookFormat:
        """Return the wire format identifier."""
        ...

    def validate_signature(
        self,
        headers: dict[str, str],
        payload: bytes,
        secret: str,
    ) -> WebhookValidationResult:
        """Verify that the raw body was signed with the shared secret.

        Args:
            headers: HTTP headers from the webhook request (lower-cased keys)
            payload: Raw request body bytes, exactly as received
            secret: Webhook signing secret
        """
        ...

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        """Parse a verified payload. Returns None for event types we ignore.

        Raises:
            ValidationError: If the payload is missing required fields
        """
        ...


def compute_signature(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 hex digest of ``payload`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def decode_payload(payload: bytes) -> dict[str, Any]:
    """Decode a JSON webhook body.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValidationError(f"Webhook body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return data


class StripeWebhookAdapter:
    """Adapter for Stripe-formatted webhook deliveries.

    Signature header: ``Stripe-Signature: t=<unix>,v1=<hex>[,v1=<hex>]``
    where each ``v1`` is the HMAC of ``"<t>.<body>"``.
    """

    EVENT_TYPES: dict[str, BillingEventType] = {
        "checkout.session.completed": BillingEventType.CHECKOUT_COMPLETED,
        "customer.subscription.created": BillingEventType.SUBSCRIPTION_CREATED,
        "customer.subscription.updated": BillingEventType.SUBSCRIPTION_UPDATED,
        "customer.subscription.deleted": BillingEventType.SUBSCRIPTION_CANCELLED,
        "invoice.payment_succeeded": BillingEventType.PAYMENT_SUCCEEDED,
        "invoice.paid": BillingEventType.PAYMENT_SUCCEEDED,
        "invoice.payment_failed": BillingEventType.PAYMENT_FAILED,
    }

    def __init__(self, tolerance_seconds: int = 300) -> None:
        self.tolerance_seconds = tolerance_seconds

    @property
    def format_id(self) -> WebhookFormat:
        return WebhookFormat.STRIPE

    def validate_signature(
        self,
        headers: dict[str, str],
        payload: bytes,
        secret: str,
    ) -> WebhookValidationResult:
        header = headers.get("stripe-signature")
        if not header:
            return WebhookValidationResult.failure("Missing Stripe-Signature header")

        timestamp: str | None = None
        signatures: list[str] = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                signatures.append(value)

        if timestamp is None or not signatures:
            return WebhookValidationResult.failure("Malformed Stripe-Signature header")
        try:
            signed_at = int(timestamp)
        except ValueError:
            return WebhookValidationResult.failure("Malformed signature timestamp")
        if self.tolerance_seconds and abs(time.time() - signed_at) > self.tolerance_seconds:
            return WebhookValidationResult.failure("Signature timestamp outside tolerance")

        expected = compute_signature(secret, timestamp.encode("utf-8") + b"." + payload)
        if any(hmac.compare_digest(expected, candidate) for candidate in signatures):
            return WebhookValidationResult.success()
        return WebhookValidationResult.failure("Signature mismatch")

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        event_type = self.EVENT_TYPES.get(_name(payload.get("type"), "type"))
        if event_type is None:
            return None

        obj = _mapping(payload.get("data"), "data").get("object")
        if not isinstance(obj, dict):
            raise ValidationError("Stripe event is missing data.object", field="data.object")

        occurred_at = _from_epoch(payload.get("created"))
        event_id = payload.get("id")

        if event_type == BillingEventType.CHECKOUT_COMPLETED:
            details = _mapping(obj.get("customer_details"), "customer_details")
            return BillingEvent(
                event_type=event_type,
                provider_subscription_ref=_ref(obj.get("subscription")),
                provider_customer_ref=_ref(obj.get("customer")),
                correlation=EventCorrelation.from_mapping(
                    _mapping(obj.get("metadata"), "metadata"),
                    client_reference_id=obj.get("client_reference_id"),
                    email=details.get("email") or obj.get("customer_email"),
                ),
                event_id=event_id,
                occurred_at=occurred_at,
                raw_payload=payload,
            )

        if event_type in (BillingEventType.PAYMENT_SUCCEEDED, BillingEventType.PAYMENT_FAILED):
            # Invoice status is not a subscription status; the event type implies it
            return BillingEvent(
                event_type=event_type,
                provider_subscription_ref=_invoice_subscription_ref(obj),
                provider_customer_ref=_ref(obj.get("customer")),
                correlation=EventCorrelation.from_mapping(
                    _mapping(obj.get("metadata"), "metadata")
                ),
                event_id=event_id,
                occurred_at=occurred_at,
                raw_payload=payload,
            )

        item = _first_item(obj)
        return BillingEvent(
            event_type=event_type,
            provider_subscription_ref=_ref(obj.get("id")),
            provider_customer_ref=_ref(obj.get("customer")),
            provider_status=obj.get("status"),
            period_start=_from_epoch(
                obj.get("current_period_start") or item.get("current_period_start")
            ),
            period_end=_from_epoch(obj.get("current_period_end") or item.get("current_period_end")),
            quantity=item.get("quantity") or obj.get("quantity"),
            price_id=_mapping(item.get("price"), "price").get("id"),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end")),
            correlation=EventCorrelation.from_mapping(
                _mapping(obj.get("metadata"), "metadata")
            ),
            event_id=event_id,
            occurred_at=occurred_at,
            raw_payload=payload,
        )


class LemonSqueezyWebhookAdapter:
    """Adapter for Lemon Squeezy webhook deliveries.

    Signature header: ``X-Signature: <hex>``, the HMAC of the raw body.
    """

    EVENT_TYPES: dict[str, BillingEventType] = {
        "subscription_created": BillingEventType.SUBSCRIPTION_CREATED,
        "subscription_updated": BillingEventType.SUBSCRIPTION_UPDATED,
        "subscription_resumed": BillingEventType.SUBSCRIPTION_UPDATED,
        "subscription_unpaused": BillingEventType.SUBSCRIPTION_UPDATED,
        "subscription_paused": BillingEventType.SUBSCRIPTION_UPDATED,
        "subscription_cancelled": BillingEventType.SUBSCRIPTION_CANCELLED,
        "subscription_expired": BillingEventType.SUBSCRIPTION_EXPIRED,
        "subscription_payment_success": BillingEventType.PAYMENT_SUCCEEDED,
        "subscription_payment_recovered": BillingEventType.PAYMENT_SUCCEEDED,
        "subscription_payment_failed": BillingEventType.PAYMENT_FAILED,
    }

    @property
    def format_id(self) -> WebhookFormat:
        return WebhookFormat.LEMON_SQUEEZY

    def validate_signature(
        self,
        headers: dict[str, str],
        payload: bytes,
        secret: str,
    ) -> WebhookValidationResult:
        signature = headers.get("x-signature")
        if not signature:
            return WebhookValidationResult.failure("Missing X-Signature header")
        if hmac.compare_digest(compute_signature(secret, payload), signature.strip()):
            return WebhookValidationResult.success()
        return WebhookValidationResult.failure("Signature mismatch")

    def parse_event(self, payload: dict[str, Any]) -> BillingEvent | None:
        meta = _mapping(payload.get("meta"), "meta")
        event_type = self.EVENT_TYPES.get(_name(meta.get("event_name"), "meta.event_name"))
        if event_type is None:
            return None

        data = _mapping(payload.get("data"), "data")
        attributes = data.get("attributes")
        if not isinstance(attributes, dict):
            raise ValidationError("Webhook is missing data.attributes", field="data.attributes")

        correlation = EventCorrelation.from_mapping(
            _mapping(meta.get("custom_data"), "meta.custom_data"),
            email=attributes.get("user_email"),
        )
        occurred_at = _from_iso(attributes.get("updated_at") or attributes.get("created_at"))

        if event_type in (BillingEventType.PAYMENT_SUCCEEDED, BillingEventType.PAYMENT_FAILED):
            return BillingEvent(
                event_type=event_type,
                provider_subscription_ref=_ref(attributes.get("subscription_id")),
                provider_customer_ref=_ref(attributes.get("customer_id")),
                correlation=correlation,
                event_id=_ref(data.get("id")),
                occurred_at=occurred_at,
                raw_payload=payload,
            )

        item = _mapping(attributes.get("first_subscription_item"), "first_subscription_item")
        return BillingEvent(
            event_type=event_type,
            provider_subscription_ref=_ref(data.get("id")),
            provider_customer_ref=_ref(attributes.get("customer_id")),
            provider_status=attributes.get("status"),
            period_end=_from_iso(attributes.get("renews_at") or attributes.get("ends_at")),
            quantity=item.get("quantity"),
            price_id=_ref(attributes.get("variant_id")),
            cancel_at_period_end=bool(attributes.get("cancelled")),
            correlation=correlation,
            occurred_at=occurred_at,
            raw_payload=payload,
        )


def get_webhook_adapter(
    webhook_format: WebhookFormat, tolerance_seconds: int = 300
) -> BillingWebhookAdapter:
    """Get the adapter for a configured wire format."""
    match webhook_format:
        case WebhookFormat.LEMON_SQUEEZY:
            return LemonSqueezyWebhookAdapter()
        case _:
            return StripeWebhookAdapter(tolerance_seconds=tolerance_seconds)


def describe_event(payload: dict[str, Any]) -> str:
    """Provider event name of a delivery, for logs and metrics."""
    meta = payload.get("meta")
    name = payload.get("type") or (meta.get("event_name") if isinstance(meta, dict) else None)
    return str(name or "unknown")


def _mapping(value: Any, field: str) -> dict[str, Any]:
    """An optional JSON object; anything but an object or null is malformed."""
    if value is None or value == "":
        return {}
    if not isinstance(value, dict):
        raise ValidationError(f"Expected an object for {field}", field=field)
    return value


def _name(value: Any, field: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError(f"Expected a string for {field}", field=field)
    return value


def _ref(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        return _ref(value.get("id"))
    return str(value)


def _first_item(obj: dict[str, Any]) -> dict[str, Any]:
    items = _mapping(obj.get("items"), "items").get("data") or []
    if not isinstance(items, list):
        raise ValidationError("Expected a list", field="items.data")
    return _mapping(items[0], "items.data") if items else {}


def _invoice_subscription_ref(invoice: dict[str, Any]) -> str | None:
    ref = _ref(invoice.get("subscription"))
    if ref is None:
        parent = _mapping(invoice.get("parent"), "parent")
        details = _mapping(parent.get("subscription_details"), "subscription_details")
        ref = _ref(details.get("subscription"))
    return ref


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid timestamp: {value!r}") from exc


def _from_iso(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid datetime: {value!r}") from exc
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
