"""Scan the entities table for user-isolation problems.

Usage:
    python -m evergreen.scripts.audit_isolation [--workspace-id UUID] [--fix-relationships]

Exits 1 when orphaned or cross-workspace records are found. With
--fix-relationships, legacy map-form relationships are rewritten first.
"""

from __future__ import annotations

import argparse
import sys
import uuid

from evergreen.db.session import SessionLocal
from evergreen.services.entity_service import canonicalize_relationships
from evergreen.services.isolation_audit import audit_isolation


def main() -> None:
    parser = argparse.ArgumentParser(description="Audit user-scoped entity isolation")
    parser.add_argument(
        "--workspace-id",
        default=None,
        help="Limit the audit to one workspace (UUID)",
    )
    parser.add_argument(
        "--fix-relationships",
        action="store_true",
        help="Rewrite legacy map-form relationships to the array form",
    )
    args = parser.parse_args()

    workspace_id = None
    if args.workspace_id:
        try:
            workspace_id = uuid.UUID(args.workspace_id.strip())
        except ValueError:
            print(f"Error: invalid workspace id '{args.workspace_id}'.")
            sys.exit(2)

    db = SessionLocal()
    try:
        if args.fix_relationships:
            rewritten = canonicalize_relationships(db, workspace_id)
            print(f"Rewrote relationships on {rewritten} entities.")
        report = audit_isolation(db, workspace_id)
    finally:
        db.close()

    for (ws_id, type_name), count in sorted(report.counts.items(), key=lambda kv: (str(kv[0][0]), kv[0][1])):
        print(f"{ws_id}  {type_name:<20} {count}")
    if report.ok:
        print("No isolation problems found.")
        return
    for entity_id in report.orphaned:
        print(f"ORPHANED        {entity_id}")
    for entity_id in report.cross_workspace:
        print(f"CROSS-WORKSPACE {entity_id}")
    sys.exit(1)


if __name__ == "__main__":
    main()
