"""
Identity provider adapter.

Users sign in with an external identity provider that issues signed
bearer tokens; the ``sub`` claim is the user id every ledger row is
scoped to. This module only verifies tokens. ``create_access_token``
mints tokens with the same key for local development and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings
from .errors import NotAuthenticatedError
from .logger import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a signed access token."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_user_id(token: str) -> str:
    """Return the user id carried by a token, or raise NotAuthenticatedError."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise NotAuthenticatedError("Unauthorized") from e

    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthenticatedError("Unauthorized")
    return str(user_id)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> str:
    """FastAPI dependency resolving the authenticated user id."""
    if credentials is None:
        raise NotAuthenticatedError("Unauthorized")
    return decode_user_id(credentials.credentials)
