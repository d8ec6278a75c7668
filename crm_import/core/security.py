"""
Bearer-token identity for import requests.

Tokens are HS256 JWTs whose ``sub`` claim carries the user id. Commit
operations require a verified identity; validation accepts anonymous callers.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import settings
from .errors import ImportPipelineError, UNAUTHORIZED

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


# auto_error=False so missing credentials surface as our own UNAUTHORIZED code
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token for the given user id."""
    expire = _utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def resolve_user_id(token: str) -> str:
    """
    Decode a bearer token and return its user id.

    Raises:
        ImportPipelineError: UNAUTHORIZED when the token is invalid, expired
            or carries no subject.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise ImportPipelineError(UNAUTHORIZED, "Invalid authentication", 401) from exc

    user_id = payload.get("sub")
    if not user_id:
        raise ImportPipelineError(UNAUTHORIZED, "Invalid authentication", 401)
    return str(user_id)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Dependency that requires a valid bearer token."""
    if credentials is None:
        raise ImportPipelineError(
            UNAUTHORIZED,
            "Authentication required for import operations",
            401,
        )
    return resolve_user_id(credentials.credentials)


def get_optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """
    Dependency for identity-optional endpoints.

    A missing or unverifiable token yields None; validation results do not
    depend on who asked.
    """
    if credentials is None:
        return None
    try:
        return resolve_user_id(credentials.credentials)
    except ImportPipelineError:
        return None
