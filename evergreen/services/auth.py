"""Session tokens: signed JWTs carrying the identity-provider user and organization ids."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from evergreen.config import get_settings

# JWT configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = 24


def create_session_token(
    external_user_id: str,
    external_org_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed session token (``sub`` = user, ``org_id`` = organization)."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    )
    claims = {"sub": external_user_id, "org_id": external_org_id, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_session_token(token: str) -> Optional[dict]:
    """Decode and validate a session token. Returns claims or None.

    Tokens without both ``sub`` and ``org_id`` are rejected: every request must
    carry an organization so it can be scoped to a workspace.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if not payload.get("sub") or not payload.get("org_id"):
        return None
    return payload
