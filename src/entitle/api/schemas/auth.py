"""API schemas for account and session endpoints."""

from uuid import UUID

from pydantic import BaseModel, Field

from entitle.api.schemas.access import AccessResponse


class RegisterRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=1, max_length=256)
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    desktop: bool = Field(default=False, description="Also mint a desktop handoff token")


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=256)
    desktop: bool = Field(default=False, description="Also mint a desktop handoff token")


class HandoffRedeemRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256)


class SSOCallbackRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=512)
    desktop: bool = False


class UserResponse(BaseModel):
    user_id: UUID
    tenant_id: UUID
    email: str
    name: str
    role: str
    status: str

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """A session token, plus a handoff token when the desktop app asked for one."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse
    handoff_token: str | None = None
    created: bool = False


class MeResponse(BaseModel):
    user: UserResponse
    access: AccessResponse


class HandoffResponse(BaseModel):
    """A one-time token the desktop app redeems for its own session."""

    handoff_token: str
    expires_in: int
