"""SSO identity provider integration."""

from .provider import (
    IdentityProfile,
    IdentityProviderClient,
    MockIdentityProvider,
    WorkOSIdentityProvider,
    create_identity_provider,
    profile_from_workos,
)

__all__ = [
    "IdentityProfile",
    "IdentityProviderClient",
    "MockIdentityProvider",
    "WorkOSIdentityProvider",
    "create_identity_provider",
    "profile_from_workos",
]
