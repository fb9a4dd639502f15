"""
Tests for agile_backlog/services/audit_service.py

Scenarios covered:
  1. record: stores every field, rejects unknown event types
  2. record commits immediately: rows survive the caller's rollback
  3. list_events: newest first, limit, event_type / project filters
  4. Project deletion keeps the log, clearing project_id
"""

import pytest

from agile_backlog.core.exceptions import ProjectNotRegisteredError, ValidationError
from agile_backlog.models import SecurityLog, Story
from agile_backlog.services.audit_service import SecurityAuditLog


def _record(audit, event_type="project_violation", project_id=None, message="event"):
    return audit.record(event_type=event_type, message=message, project_id=project_id, agent_identifier="agent-1")


# ── 1. record ────────────────────────────────────────────────────────────────


class TestRecord:
    def test_all_fields_stored(self, audit, project):
        row = audit.record(
            event_type="project_violation",
            message="Attempted to access story #9",
            project_id=project.id,
            agent_identifier="agent-1",
            attempted_path="alpha",
            entity_type="story",
            entity_id=9,
        )
        assert row.id is not None
        assert row.created_at is not None
        payload = row.to_dict()
        assert payload["event_type"] == "project_violation"
        assert payload["project_id"] == project.id
        assert payload["attempted_path"] == "alpha"
        assert payload["entity_type"] == "story"
        assert payload["entity_id"] == 9

    def test_unknown_event_type(self, audit):
        with pytest.raises(ValidationError, match="Unknown security event type"):
            _record(audit, event_type="login_failed")
        assert audit.count() == 0

    def test_warning_is_logged(self, audit, caplog):
        with caplog.at_level("WARNING", logger="agile_backlog.services.audit_service"):
            _record(audit, event_type="conflict_detected", message="two writers")
        assert "Security event conflict_detected: two writers" in caplog.text


# ── 2. Durability ────────────────────────────────────────────────────────────


class TestDurability:
    def test_survives_rollback_of_surrounding_work(self, audit, store, session, project):
        _record(audit, project_id=project.id)
        store.create_story(project.id, "Never committed")
        session.rollback()

        assert audit.count() == 1
        assert session.query(Story).count() == 0

    def test_denied_service_call_keeps_its_log(self, service, session):
        with pytest.raises(ProjectNotRegisteredError):
            service.create_story("nowhere", "Lost", agent_identifier="agent-1")
        assert session.query(SecurityLog).filter_by(event_type="unauthorized_access").count() == 1
        assert session.query(Story).count() == 0


# ── 3. list_events ───────────────────────────────────────────────────────────


class TestListEvents:
    def test_newest_first(self, audit):
        for n in range(3):
            _record(audit, message=f"event {n}")
        assert [e.message for e in audit.list_events()] == ["event 2", "event 1", "event 0"]

    def test_limit(self, audit):
        for n in range(5):
            _record(audit, message=f"event {n}")
        assert len(audit.list_events(limit=2)) == 2

    def test_default_limit(self, session):
        small = SecurityAuditLog(session, default_limit=3)
        for n in range(5):
            _record(small, message=f"event {n}")
        assert len(small.list_events()) == 3

    def test_filters(self, audit, project, other_project):
        _record(audit, "project_violation", project.id)
        _record(audit, "conflict_detected", project.id)
        _record(audit, "project_violation", other_project.id)
        _record(audit, "unauthorized_access", None)

        assert len(audit.list_events(event_type="project_violation")) == 2
        assert len(audit.list_events(project_id=project.id)) == 2
        assert len(audit.list_events(event_type="project_violation", project_id=other_project.id)) == 1
        assert audit.count(event_type="unauthorized_access") == 1


# ── 4. Project deletion ──────────────────────────────────────────────────────


class TestProjectDeletion:
    def test_project_id_cleared_row_kept(self, audit, store, session, project):
        row = _record(audit, project_id=project.id)
        store.delete_project(project.id)
        session.commit()

        kept = audit.list_events()
        assert [e.id for e in kept] == [row.id]
        assert kept[0].project_id is None
