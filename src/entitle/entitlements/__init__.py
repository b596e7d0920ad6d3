"""Entitlement store and ownership rules."""

from entitle.entitlements.ownership import ensure_subscription_admin, is_subscription_admin
from entitle.entitlements.store import EntitlementStore

__all__ = ["EntitlementStore", "ensure_subscription_admin", "is_subscription_admin"]
