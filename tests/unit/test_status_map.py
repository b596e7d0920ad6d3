"""Unit tests for provider status translation."""

import pytest

from entitle.billing import BillingEventType, map_provider_status, resolve_event_status
from entitle.db.models import ACCESS_GRANTING_STATUSES, SubscriptionStatus


class TestMapProviderStatus:
    """Tests for map_provider_status."""

    @pytest.mark.parametrize(
        ("provider_status", "expected"),
        [
            ("active", SubscriptionStatus.ACTIVE),
            ("trialing", SubscriptionStatus.TRIALING),
            ("on_trial", SubscriptionStatus.TRIALING),
            ("canceled", SubscriptionStatus.CANCELLED),
            ("cancelled", SubscriptionStatus.CANCELLED),
            ("past_due", SubscriptionStatus.PAST_DUE),
            ("unpaid", SubscriptionStatus.UNPAID),
            ("incomplete_expired", SubscriptionStatus.EXPIRED),
            ("expired", SubscriptionStatus.EXPIRED),
            ("paused", SubscriptionStatus.PAUSED),
        ],
    )
    def test_known_statuses(self, provider_status, expected):
        """Test both providers' vocabularies map to internal statuses."""
        assert map_provider_status(provider_status) == expected

    def test_case_and_whitespace_insensitive(self):
        """Test provider strings are normalized before lookup."""
        assert map_provider_status("  Active ") == SubscriptionStatus.ACTIVE

    @pytest.mark.parametrize("provider_status", ["", None, "something_new", "ACTIVE_ISH"])
    def test_unknown_fails_closed(self, provider_status):
        """Test unknown statuses never grant access."""
        mapped = map_provider_status(provider_status)
        assert mapped == SubscriptionStatus.INCOMPLETE
        assert mapped.value not in ACCESS_GRANTING_STATUSES


class TestResolveEventStatus:
    """Tests for resolve_event_status."""

    def test_cancellation_wins_over_active_status(self):
        """Test a cancellation event cannot re-grant access with a stale status."""
        status = resolve_event_status(BillingEventType.SUBSCRIPTION_CANCELLED, "active")
        assert status == SubscriptionStatus.CANCELLED

    def test_expiry_keeps_explicit_terminal_status(self):
        """Test an expiry event carrying a cancelled status stays cancelled."""
        status = resolve_event_status(BillingEventType.SUBSCRIPTION_EXPIRED, "cancelled")
        assert status == SubscriptionStatus.CANCELLED

    def test_expiry_without_status(self):
        """Test expiry implies the expired status."""
        status = resolve_event_status(BillingEventType.SUBSCRIPTION_EXPIRED, None)
        assert status == SubscriptionStatus.EXPIRED

    def test_payment_failed_implies_past_due(self):
        """Test invoice failures put the subscription past due."""
        status = resolve_event_status(BillingEventType.PAYMENT_FAILED, None)
        assert status == SubscriptionStatus.PAST_DUE

    @pytest.mark.parametrize(
        "event_type",
        [BillingEventType.PAYMENT_SUCCEEDED, BillingEventType.CHECKOUT_COMPLETED],
    )
    def test_success_events_imply_active(self, event_type):
        """Test payment and checkout success imply active."""
        assert resolve_event_status(event_type, None) == SubscriptionStatus.ACTIVE

    def test_update_uses_payload_status(self):
        """Test an update event follows the status it carries."""
        status = resolve_event_status(BillingEventType.SUBSCRIPTION_UPDATED, "past_due")
        assert status == SubscriptionStatus.PAST_DUE

    def test_update_without_status_fails_closed(self):
        """Test an update with no status is not treated as active."""
        status = resolve_event_status(BillingEventType.SUBSCRIPTION_UPDATED, None)
        assert status == SubscriptionStatus.INCOMPLETE
