from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Depends, HTTPException, Request

from storefront.core.config import settings

ADMIN_ROLE = "admin"


@dataclass
class AuthenticatedUser:
    """Identity carried by a storefront access token."""

    id: str
    role: str = "customer"
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(
    user_id: str,
    role: str = "customer",
    email: str | None = None,
    expires_in: timedelta | None = None,
) -> str:
    """Issue a signed access token for a storefront user."""
    ttl = expires_in if expires_in is not None else timedelta(hours=settings.ACCESS_TOKEN_TTL_HOURS)
    payload = {
        "sub": user_id,
        "role": role,
        "email": email,
        "type": "access",
        "exp": datetime.now(UTC) + ttl,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> AuthenticatedUser:
    """Decode and validate an access token.

    Raises jwt.ExpiredSignatureError or jwt.InvalidTokenError on failure.
    """
    payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    if payload.get("type") != "access":
        raise jwt.InvalidTokenError("Invalid token type")
    subject = payload.get("sub")
    if not subject:
        raise jwt.InvalidTokenError("Token has no subject")
    return AuthenticatedUser(
        id=str(subject),
        role=str(payload.get("role") or "customer"),
        email=payload.get("email"),
    )


def get_optional_user(request: Request) -> AuthenticatedUser | None:
    """Resolve the caller from the Authorization header, if one was sent.

    Guest checkouts send no header and resolve to None. A header that is
    present but malformed, expired or forged is rejected rather than
    silently treated as a guest.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = auth_header[7:]
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")

    try:
        return decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Access token has expired") from None
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid access token") from None


def get_current_user(
    user: AuthenticatedUser | None = Depends(get_optional_user),
) -> AuthenticatedUser:
    if user is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
