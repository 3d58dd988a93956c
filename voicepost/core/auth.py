"""
Auth utilities for the voicepost API.

Validates identity-provider session JWTs and extracts user_id from request context.
Falls back to X-User-Id header when ALLOW_USER_ID_HEADER is on (local dev, tests).
"""
import hmac
import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from voicepost.core.config import Settings, settings
from voicepost.core.database import get_db
from voicepost.core.errors import AuthenticationError, PermissionError

logger = logging.getLogger("voicepost.auth")


def verify_session_jwt(token: str, settings_obj: Optional[Settings] = None) -> str:
    """
    Verify a session JWT and extract user_id.

    Args:
        token: JWT from Authorization header (Bearer {token})

    Returns:
        user_id: Extracted from JWT's 'sub' claim

    Raises:
        AuthenticationError: Missing secret, invalid or expired token
    """
    cfg = settings_obj or settings
    if not cfg.AUTH_JWT_SECRET:
        raise AuthenticationError("Session verification is not configured")

    options = {"verify_signature": True, "verify_exp": True, "verify_aud": bool(cfg.AUTH_JWT_AUDIENCE)}
    try:
        payload = jwt.decode(
            token,
            cfg.AUTH_JWT_SECRET,
            algorithms=["HS256"],
            audience=cfg.AUTH_JWT_AUDIENCE,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Session expired")
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid token: %s", e)
        raise AuthenticationError("Invalid session token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Session token has no subject")
    return str(user_id)


def get_current_user_id(
    request: Request,
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(None, description="Local development user ID"),
) -> str:
    """
    Resolve the calling user and make sure they exist.

    Priority:
    1. Session JWT from Authorization header
    2. X-User-Id header (only when ALLOW_USER_ID_HEADER is on)
    3. AuthenticationError

    The first authenticated request for a user creates the user row and its
    free signup grant.
    """
    from voicepost.features.users.service import get_or_create_user

    user_id: Optional[str] = None
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_session_jwt(auth_header[7:])
    elif x_user_id and settings.ALLOW_USER_ID_HEADER:
        user_id = x_user_id.strip() or None

    if not user_id:
        raise AuthenticationError("Missing Authorization (Bearer JWT)")

    get_or_create_user(db, user_id)
    request.state.user_id = user_id
    return user_id


def require_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    """Guard for scheduler-invoked job endpoints."""
    expected = settings.CRON_SECRET
    if not expected:
        raise PermissionError("Job endpoints are disabled: CRON_SECRET is not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        raise PermissionError("Invalid cron secret")
