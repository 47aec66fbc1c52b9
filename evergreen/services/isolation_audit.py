"""Isolation audit: scan the entities table for records that break user isolation.

Two classes of problem:
- orphans: a user-scoped entity with no owning user (unreachable through the
  secure query, and exposed if isolation is ever relaxed for null owners)
- cross-workspace: an entity whose owning user is linked to a different workspace
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from evergreen.entities.types import user_scoped_type_names
from evergreen.models.entity import Entity
from evergreen.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class IsolationAuditReport:
    orphaned: list[uuid.UUID] = field(default_factory=list)
    cross_workspace: list[uuid.UUID] = field(default_factory=list)
    # (workspace_id, type) -> count of user-scoped entities
    counts: Counter = field(default_factory=Counter)

    @property
    def ok(self) -> bool:
        return not self.orphaned and not self.cross_workspace


def audit_isolation(db: Session, workspace_id: uuid.UUID | None = None) -> IsolationAuditReport:
    """Scan user-scoped entities (optionally one workspace) and report violations."""
    scoped_types = user_scoped_type_names()
    report = IsolationAuditReport()

    base = select(Entity.id, Entity.workspace_id, Entity.type).where(Entity.type.in_(scoped_types))
    if workspace_id is not None:
        base = base.where(Entity.workspace_id == workspace_id)
    for _, ws_id, type_name in db.execute(base):
        report.counts[(ws_id, type_name)] += 1

    orphans = base.where(Entity.user_id.is_(None))
    report.orphaned = [row.id for row in db.execute(orphans)]

    mismatched = (
        select(Entity.id)
        .join(User, User.id == Entity.user_id)
        .where(
            and_(
                Entity.type.in_(scoped_types),
                or_(User.workspace_id.is_(None), User.workspace_id != Entity.workspace_id),
            )
        )
    )
    if workspace_id is not None:
        mismatched = mismatched.where(Entity.workspace_id == workspace_id)
    report.cross_workspace = list(db.scalars(mismatched).all())

    if report.orphaned:
        logger.error("Isolation audit: %d user-scoped entities without an owner", len(report.orphaned))
    if report.cross_workspace:
        logger.error(
            "Isolation audit: %d entities owned by a user outside their workspace",
            len(report.cross_workspace),
        )
    return report
