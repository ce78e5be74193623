"""Security utilities - JWT tokens and role guards.

Identity is issued elsewhere; only the `sub` (user UUID) and `role` claims
are read here.
"""

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt

from disputeflow.config import settings
from disputeflow.core.exceptions import AuthenticationError


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and validate a JWT access token."""
    try:
        return jwt.decode(
            token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {str(e)}")


def get_require_admin():
    """Return a dependency that validates the admin role claim."""
    from disputeflow.api.dependencies import get_token_payload

    async def _require_admin(
        payload: dict[str, Any] = Depends(get_token_payload),
    ) -> str:
        """Validate the caller carries the admin role. Returns the subject."""
        if payload.get("role") != "admin":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Admin access required",
            )
        return str(payload.get("sub"))

    return _require_admin
