"""API schemas for request/response validation."""

from .access import AccessResponse, ValidateAccessRequest, access_response_from_verdict
from .auth import (
    HandoffRedeemRequest,
    HandoffResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SSOCallbackRequest,
    TokenResponse,
    UserResponse,
)
from .billing import CheckoutRequest, CheckoutResponse, SyncResponse, WebhookAck
from .errors import APIError, ErrorCode
from .health import HealthDetailResponse, HealthResponse, HealthStatus
from .license import LicenseRequest, LicenseResetRequest, LicenseResponse
from .seats import AddSeatRequest, SeatListResponse, SeatResponse
from .team import (
    CancelSubscriptionRequest,
    InviteMemberRequest,
    RemoveMemberRequest,
    SubscriptionResponse,
    TeamMemberListResponse,
    TeamMemberResponse,
)

__all__ = [
    # Error schemas
    "APIError",
    "ErrorCode",
    # Health schemas
    "HealthStatus",
    "HealthResponse",
    "HealthDetailResponse",
    # Access
    "AccessResponse",
    "ValidateAccessRequest",
    "access_response_from_verdict",
    # Auth
    "HandoffRedeemRequest",
    "HandoffResponse",
    "LoginRequest",
    "MeResponse",
    "RegisterRequest",
    "SSOCallbackRequest",
    "TokenResponse",
    "UserResponse",
    # Billing
    "CheckoutRequest",
    "CheckoutResponse",
    "SyncResponse",
    "WebhookAck",
    # License
    "LicenseRequest",
    "LicenseResetRequest",
    "LicenseResponse",
    # Seats
    "AddSeatRequest",
    "SeatListResponse",
    "SeatResponse",
    # Team
    "CancelSubscriptionRequest",
    "InviteMemberRequest",
    "RemoveMemberRequest",
    "SubscriptionResponse",
    "TeamMemberListResponse",
    "TeamMemberResponse",
]
