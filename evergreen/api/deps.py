"""Shared FastAPI dependencies for API routes."""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from evergreen.config import get_settings
from evergreen.db.session import get_db  # re-export
from evergreen.errors import NotFoundError
from evergreen.services.auth import decode_session_token
from evergreen.services.identity_resolver import RequestContext, resolve_request_context

logger = logging.getLogger(__name__)

__all__ = [
    "get_db",
    "get_request_context",
    "require_webhook_token",
]


def get_request_context(
    db: Session = Depends(get_db),
    authorization: str | None = Header(None),
) -> RequestContext:
    """Resolve the bearer session token into workspace and user ids.

    401 when the token is missing or invalid; 404 when the organization's user
    is not known (or not linked to that organization) yet.
    """
    token: str | None = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer ") :]
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    claims = decode_session_token(token)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token",
        )
    try:
        return resolve_request_context(db, claims["org_id"], claims["sub"])
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Workspace or user not found") from None


def require_webhook_token(x_webhook_token: str = Header(...)) -> None:
    """Validate the identity webhook token (constant-time comparison).

    Raises 403 if the token is empty or does not match the configured value.
    """
    expected = get_settings().webhook_secret
    if not expected or not secrets.compare_digest(x_webhook_token, expected):
        logger.warning("Identity webhook auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid webhook token")
