"""Helper functions for authentication and JWT handling.

This module centralises password hashing and JSON Web Token operations.
It uses passlib with bcrypt for secure password storage and PyJWT
to encode and decode tokens. Access and refresh tokens are signed with
separate secrets; both carry the issuer configured in ``workhub.config``.
"""

from __future__ import annotations

import logging
import time
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException
from passlib.context import CryptContext

from .config import (
    JWT_EXPIRES_SECONDS,
    JWT_ISSUER,
    JWT_REFRESH_EXPIRES_SECONDS,
    JWT_REFRESH_SECRET,
    JWT_SECRET,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


def hash_password(password: str) -> str:
    """Hash a plain-text password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain-text password against its hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def _encode(data: Dict[str, Any], secret: str, expires_delta: int | timedelta) -> str:
    to_encode = data.copy()
    if isinstance(expires_delta, timedelta):
        expire_seconds = expires_delta.total_seconds()
    else:
        expire_seconds = expires_delta
    now = int(time.time())
    to_encode["iat"] = now
    to_encode["exp"] = now + int(expire_seconds)
    to_encode["iss"] = JWT_ISSUER
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: int | timedelta | None = None) -> str:
    """Create a signed access token.

    Args:
        data: Payload to encode in the token. ``sub`` must hold the user id.
        expires_delta: Optional time in seconds (int) or a timedelta object.
            If omitted, ``JWT_EXPIRES_SECONDS`` is used.

    Returns:
        A JWT string encoded with HS256.
    """
    return _encode(data, JWT_SECRET, expires_delta or JWT_EXPIRES_SECONDS)


def create_refresh_token(user_id: str, expires_delta: int | timedelta | None = None) -> str:
    return _encode({"sub": user_id}, JWT_REFRESH_SECRET, expires_delta or JWT_REFRESH_EXPIRES_SECONDS)


def create_token_pair(user) -> Dict[str, str]:
    """Issue an access/refresh pair for a ``User`` row."""
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value if hasattr(user.role, "value") else user.role,
        "departmentId": user.department_id,
    }
    return {
        "accessToken": create_access_token(payload),
        "refreshToken": create_refresh_token(str(user.id)),
    }


def _verify(token: str, secret: str) -> Optional[Dict[str, Any]]:
    if not token or not isinstance(token, str):
        return None
    try:
        return jwt.decode(token, secret, algorithms=[ALGORITHM], issuer=JWT_ISSUER)
    except jwt.InvalidTokenError as exc:
        logger.warning("Token verification failed: %s", exc)
        return None


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the payload of a valid access token, or None.

    Never raises, whatever the input looks like.
    """
    return _verify(token, JWT_SECRET)


def verify_refresh_token(token: str) -> Optional[Dict[str, Any]]:
    return _verify(token, JWT_REFRESH_SECRET)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a JWT and return the payload if valid.

    Raises HTTPException with 401 if the token is invalid or expired.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM], issuer=JWT_ISSUER)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")
    return payload
