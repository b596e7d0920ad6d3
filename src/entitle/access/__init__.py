"""Access evaluation for users, team members and license keys."""

from entitle.access.evaluator import (
    ACCOUNT_SUSPENDED,
    MEMBERSHIP_SUSPENDED,
    NO_SUBSCRIPTION,
    TENANT_INACTIVE,
    AccessContext,
    AccessEvaluator,
    AccessSource,
    Verdict,
    VerdictKind,
)

__all__ = [
    "ACCOUNT_SUSPENDED",
    "MEMBERSHIP_SUSPENDED",
    "NO_SUBSCRIPTION",
    "TENANT_INACTIVE",
    "AccessContext",
    "AccessEvaluator",
    "AccessSource",
    "Verdict",
    "VerdictKind",
]
