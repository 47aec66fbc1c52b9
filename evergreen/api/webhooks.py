"""Identity-provider webhook route."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from evergreen.api.deps import require_webhook_token
from evergreen.db.session import get_db
from evergreen.schemas.identity import IdentityEvent, IdentityEventResult
from evergreen.services.identity_events import handle_identity_event

router = APIRouter()


@router.post("/identity", response_model=IdentityEventResult)
def api_identity_event(
    event: IdentityEvent,
    db: Session = Depends(get_db),
    _token: None = Depends(require_webhook_token),
) -> IdentityEventResult:
    """Apply an organization / user / membership event."""
    return handle_identity_event(db, event)
