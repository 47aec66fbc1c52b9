"""Tests for the isolation audit and its CLI script."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from evergreen.models import Entity
from evergreen.services.entity_service import create_entity
from evergreen.services.isolation_audit import IsolationAuditReport, audit_isolation


def test_clean_workspace(db: Session, workspace, user) -> None:
    create_entity(db, workspace.id, "email", {"subject": "ok"}, user_id=user.id)
    create_entity(db, workspace.id, "deal", {"name": "shared"})
    report = audit_isolation(db, workspace.id)
    assert report.ok
    assert report.counts[(workspace.id, "email")] == 1
    assert (workspace.id, "deal") not in report.counts


def test_detects_orphan(db: Session, workspace) -> None:
    # Written around the service on purpose: the service refuses owner-less emails
    orphan = Entity(workspace_id=workspace.id, type="email", data={}, relationships=[], meta={})
    db.add(orphan)
    db.commit()
    report = audit_isolation(db, workspace.id)
    assert report.orphaned == [orphan.id]
    assert not report.ok


def test_detects_owner_in_other_workspace(db: Session, workspace, other_workspace, make_user) -> None:
    outsider = make_user("user_outsider", other_workspace)
    stray = Entity(workspace_id=workspace.id, user_id=outsider.id, type="email", data={}, relationships=[], meta={})
    db.add(stray)
    db.commit()
    report = audit_isolation(db)
    assert stray.id in report.cross_workspace


class TestAuditScript:
    @patch("evergreen.scripts.audit_isolation.audit_isolation")
    @patch("evergreen.scripts.audit_isolation.SessionLocal")
    def test_clean_exit(self, mock_session_local, mock_audit, capsys) -> None:
        mock_session_local.return_value = MagicMock()
        mock_audit.return_value = IsolationAuditReport()

        from evergreen.scripts.audit_isolation import main

        with patch.object(sys, "argv", ["audit_isolation"]):
            main()
        out, _ = capsys.readouterr()
        assert "No isolation problems" in out
        mock_session_local.return_value.close.assert_called_once()

    @patch("evergreen.scripts.audit_isolation.audit_isolation")
    @patch("evergreen.scripts.audit_isolation.SessionLocal")
    def test_problems_exit_nonzero(self, mock_session_local, mock_audit, capsys) -> None:
        import uuid

        bad = uuid.uuid4()
        mock_session_local.return_value = MagicMock()
        mock_audit.return_value = IsolationAuditReport(orphaned=[bad])

        from evergreen.scripts.audit_isolation import main

        with patch.object(sys, "argv", ["audit_isolation"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 1
        assert str(bad) in capsys.readouterr().out

    def test_invalid_workspace_id(self, capsys) -> None:
        from evergreen.scripts.audit_isolation import main

        with patch.object(sys, "argv", ["audit_isolation", "--workspace-id", "nope"]):
            with pytest.raises(SystemExit) as exc_info:
                main()
        assert exc_info.value.code == 2


@patch("evergreen.scripts.audit_isolation.audit_isolation")
@patch("evergreen.scripts.audit_isolation.canonicalize_relationships")
@patch("evergreen.scripts.audit_isolation.SessionLocal")
def test_script_fixes_relationships(mock_session_local, mock_fix, mock_audit, capsys) -> None:
    mock_db = MagicMock()
    mock_session_local.return_value = mock_db
    mock_fix.return_value = 3
    mock_audit.return_value = IsolationAuditReport()

    from evergreen.scripts.audit_isolation import main

    with patch.object(sys, "argv", ["audit_isolation", "--fix-relationships"]):
        main()
    mock_fix.assert_called_once_with(mock_db, None)
    assert "Rewrote relationships on 3 entities" in capsys.readouterr().out
