"""JWT verification of identity-provider tokens."""

from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from dockyard.models.identity import Identity

logger = logging.getLogger(__name__)


class TokenExpiredError(Exception):
    """Raised when a JWT token has expired."""


class TokenInvalidError(Exception):
    """Raised when a JWT token is invalid."""


def create_token(
    email: str,
    secret: str,
    *,
    login: str | None = None,
    role: str = "user",
    exp_minutes: int = 60,
) -> str:
    """Create a JWT token for a user. Used by the CLI and tests."""
    now = int(time.time())
    payload = {
        "sub": email,
        "email": email,
        "login": login,
        "role": role,
        "exp": now + (exp_minutes * 60),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token: str, secret: str) -> dict[str, Any]:
    """Verify and decode a JWT token."""
    if not secret:
        raise TokenInvalidError("No signing secret configured")
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
        return payload
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token expired: %s", e)
        raise TokenExpiredError("Token has expired") from e
    except jwt.PyJWTError as e:
        logger.warning("Invalid token: %s", e)
        raise TokenInvalidError("Token is invalid") from e


def identity_from_token(token: str, secret: str) -> Identity:
    """Verify a token and turn its claims into an Identity."""
    payload = verify_token(token, secret)
    email = payload.get("email") or payload.get("sub")
    if not email:
        raise TokenInvalidError("Token missing email")
    return Identity(
        email=email,
        login=payload.get("login") or payload.get("name"),
        role=payload.get("role") or "user",
        uid=payload.get("uid") or payload.get("sub"),
    )
