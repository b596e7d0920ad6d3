"""Who may administer a subscription."""

from entitle.core.exceptions import AccessDeniedError
from entitle.db.models import OwnerType, Subscription, User


def is_subscription_admin(subscription: Subscription, user: User) -> bool:
    """A user subscription is run by its owner, a tenant subscription by tenant admins.

    Organization subscriptions are only managed with the service API key.
    """
    match subscription.owner_type:
        case OwnerType.USER.value:
            return subscription.user_id == user.user_id
        case OwnerType.TENANT.value:
            return subscription.tenant_id == user.tenant_id and user.is_admin
        case _:
            return False


def ensure_subscription_admin(subscription: Subscription, actor: User | None) -> None:
    """Raise unless ``actor`` administers ``subscription``. None is a service caller.

    Raises:
        AccessDeniedError: The actor does not administer the subscription
    """
    if actor is None or is_subscription_admin(subscription, actor):
        return
    raise AccessDeniedError(
        "Not an administrator of this subscription", reason="not_subscription_admin"
    )
