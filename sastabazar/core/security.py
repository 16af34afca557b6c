"""
JWT authentication for sastabazar

This module provides:
- Token creation (used by tests and local tooling; issuance lives in the
  auth service)
- Token verification
- FastAPI dependencies yielding the verified caller identity
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import get_settings
from .exceptions import AuthenticationError, AuthorizationError

__all__ = [
    "create_access_token",
    "verify_token",
    "security_scheme",
    "get_current_user",
    "get_current_admin",
]

logger = logging.getLogger(__name__)

_DEV_FALLBACK_SECRET = "dev_only_fallback_secret_not_for_production_use_32chars"
_DEV_FALLBACK_WARNED = False


def _get_jwt_secret() -> str:
    """
    JWT secret with a development fallback.

    Production deployments are rejected at startup by validate_payment_config
    when the secret is missing or short, so the fallback only ever applies
    outside production.
    """
    global _DEV_FALLBACK_WARNED

    secret = get_settings().JWT_SECRET
    if secret:
        return secret

    if not _DEV_FALLBACK_WARNED:
        logger.warning("JWT_SECRET not set - using development fallback secret")
        _DEV_FALLBACK_WARNED = True
    return _DEV_FALLBACK_SECRET


def create_access_token(
    user_id: str,
    role: str = "customer",
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: Subject of the token
        role: "customer" or "admin"
        email: Optional email claim
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode = {
        "sub": user_id,
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if email:
        to_encode["email"] = email

    return jwt.encode(to_encode, _get_jwt_secret(), algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.ExpiredSignatureError: If token has expired
        jwt.InvalidTokenError: If token is invalid
    """
    return jwt.decode(
        token,
        _get_jwt_secret(),
        algorithms=[get_settings().JWT_ALGORITHM],
        options={
            "verify_signature": True,
            "verify_exp": True,
            "require": ["exp", "iat", "sub"],
        },
    )


# =============================================================================
# FastAPI Authentication Dependencies
# =============================================================================

security_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme)
) -> Dict[str, Any]:
    """
    FastAPI dependency to get the authenticated caller from the bearer token.

    Returns:
        User information dict with token payload

    Raises:
        AuthenticationError: If token is missing, invalid, or expired
    """
    if credentials is None:
        raise AuthenticationError("Authentication required")

    try:
        payload = verify_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid token: {e}")
        raise AuthenticationError("Invalid authentication token")

    return {
        "user_id": payload.get("sub"),
        "email": payload.get("email"),
        "role": payload.get("role", "customer"),
        "token_type": payload.get("type"),
        "payload": payload,
    }


async def get_current_admin(
    current_user: Dict[str, Any] = Depends(get_current_user)
) -> Dict[str, Any]:
    """FastAPI dependency that only admits admin tokens."""
    if current_user.get("role") != "admin":
        raise AuthorizationError("Admin access required")
    return current_user
