"""Password hashing and user session tokens.

Passwords are hashed with bcrypt. Dashboard and desktop sessions carry a
signed JWT whose ``sub`` is the user id; the token only identifies the
user, entitlement is always re-evaluated from the store.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

import bcrypt
from jose import JWTError, jwt

from entitle.config.settings import Settings
from entitle.core.exceptions import AuthenticationError

TOKEN_ISSUER = "entitle"
ACCESS_TOKEN_TYPE = "access"

# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, credential_hash: str | None) -> bool:
    """Check a password against a stored bcrypt hash.

    A missing or malformed hash never verifies.
    """
    if not credential_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), credential_hash.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(
    user_id: UUID,
    tenant_id: UUID,
    role: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session token for a user."""
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "tenant_id": str(tenant_id),
        "role": role,
        "exp": expire,
        "iat": now,
        "iss": TOKEN_ISSUER,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(
        claims,
        settings.JWT_SECRET_KEY.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a session token and return its claims.

    Raises:
        AuthenticationError: Bad signature, expired, wrong issuer or type
    """
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY.get_secret_value(),
            algorithms=[settings.JWT_ALGORITHM],
            issuer=TOKEN_ISSUER,
        )
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired session token") from exc

    if claims.get("type") != ACCESS_TOKEN_TYPE or "sub" not in claims:
        raise AuthenticationError("Invalid session token")
    try:
        claims["sub"] = UUID(claims["sub"])
        if claims.get("tenant_id"):
            claims["tenant_id"] = UUID(claims["tenant_id"])
    except (TypeError, ValueError) as exc:
        raise AuthenticationError("Invalid session token") from exc
    return claims
