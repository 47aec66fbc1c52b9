"""Provision a workspace for an organization and link a user to it.

Usage:
    python -m evergreen.scripts.link_user --org-id ORG --user-id USER [--org-name NAME] [--email EMAIL] [--role admin]

For local setups without identity webhooks. Safe to re-run.
"""

from __future__ import annotations

import argparse
import sys

from evergreen.db.session import SessionLocal
from evergreen.errors import EvergreenError
from evergreen.models.user import UserRole
from evergreen.services.identity_resolver import link_user_to_workspace, resolve_workspace


def main() -> None:
    parser = argparse.ArgumentParser(description="Link a user to an organization's workspace")
    parser.add_argument("--org-id", required=True, help="Identity-provider organization id")
    parser.add_argument("--user-id", required=True, help="Identity-provider user id")
    parser.add_argument("--org-name", default=None, help="Workspace name if it is created")
    parser.add_argument("--email", default=None, help="User email")
    parser.add_argument(
        "--role",
        default=UserRole.MEMBER.value,
        choices=[r.value for r in UserRole],
        help="Role within the workspace",
    )
    args = parser.parse_args()

    org_id = args.org_id.strip()
    user_id = args.user_id.strip()
    if not org_id or not user_id:
        print("Error: organization id and user id cannot be empty.")
        sys.exit(1)

    db = SessionLocal()
    try:
        workspace_id = resolve_workspace(db, org_id, args.org_name)
        user = link_user_to_workspace(
            db, user_id, workspace_id, email=args.email, role=args.role
        )
        print(f"User '{user_id}' linked to workspace {workspace_id} (user id={user.id}, role={user.role}).")
    except EvergreenError as exc:
        print(f"Error: {exc}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
