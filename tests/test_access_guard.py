"""
Tests for agile_backlog/services/access_guard.py

Scenarios covered:
  1. resolve_context: unknown identifier fails and is audited once
  2. resolve_context: known identifier returns a context and bumps access time
  3. check_access: cross-project epic / story / task / bug denied, one audit row each
  4. check_access: same-project access passes silently; projects are exempt
  5. check_access: unknown ids are NotFound, not violations
  6. check_reference: missing write targets are referential-integrity failures
  7. Denials carry their error code on the log line
"""

import pytest

from agile_backlog.core.exceptions import (
    NotFoundError,
    ProjectAccessDeniedError,
    ProjectContextError,
    ProjectNotRegisteredError,
    ReferentialIntegrityError,
    ValidationError,
)


def _seed_foreign_items(store, project_id):
    epic = store.create_epic(project_id, "Foreign epic")
    story = store.create_story(project_id, "Foreign story", epic_id=epic.id)
    task = store.create_task(story.id, "Foreign task")
    bug = store.create_bug(project_id, "Foreign bug")
    return {"epic": epic.id, "story": story.id, "task": task.id, "bug": bug.id}


# ── 1. Unknown identifier ────────────────────────────────────────────────────


class TestResolveUnknownProject:
    def test_raises_not_registered(self, guard):
        with pytest.raises(ProjectNotRegisteredError, match="register_project") as exc:
            guard.resolve_context("ghost", "agent-1")
        assert exc.value.code == "PROJECT_NOT_REGISTERED"
        assert isinstance(exc.value, ProjectContextError)

    def test_logs_unauthorized_access(self, guard, audit):
        with pytest.raises(ProjectNotRegisteredError):
            guard.resolve_context("ghost", "agent-1")
        events = audit.list_events(event_type="unauthorized_access")
        assert len(events) == 1
        assert events[0].project_id is None
        assert events[0].agent_identifier == "agent-1"
        assert events[0].attempted_path == "ghost"
        assert events[0].message == "Attempted to access unregistered project: ghost"


# ── 2. Known identifier ──────────────────────────────────────────────────────


class TestResolveContext:
    def test_context_fields(self, guard, project):
        ctx = guard.resolve_context("alpha", "agent-1", acting_as="Dana")
        assert ctx.project_id == project.id
        assert ctx.project_name == "Alpha"
        assert ctx.project_identifier == "alpha"
        assert ctx.agent_identifier == "agent-1"
        assert ctx.modified_by == "Dana"

    def test_default_agent_and_modified_by(self, guard, project):
        ctx = guard.resolve_context("alpha")
        assert ctx.agent_identifier == "system"
        assert ctx.modified_by == "system"

    def test_bumps_last_accessed(self, guard, store, project):
        before = project.last_accessed_at
        guard.resolve_context("alpha", "agent-1")
        assert store.get_project(project.id).last_accessed_at >= before


# ── 3. Cross-project access ──────────────────────────────────────────────────


class TestCrossProjectDenied:
    @pytest.mark.parametrize("entity_type", ["epic", "story", "task", "bug"])
    def test_denied_with_single_violation_row(self, guard, store, audit, project, other_project, entity_type):
        foreign = _seed_foreign_items(store, other_project.id)
        ctx = guard.resolve_context("alpha", "agent-1")

        with pytest.raises(ProjectAccessDeniedError, match="belongs to a different project") as exc:
            guard.check_access(ctx, entity_type, foreign[entity_type])
        assert exc.value.code == "PROJECT_ACCESS_DENIED"

        violations = audit.list_events(event_type="project_violation")
        assert len(violations) == 1
        row = violations[0]
        assert row.entity_type == entity_type
        assert row.entity_id == foreign[entity_type]
        assert row.project_id == project.id
        assert f"belongs to project #{other_project.id}" in row.message

    def test_message_names_current_project(self, guard, store, project, other_project):
        foreign = _seed_foreign_items(store, other_project.id)
        ctx = guard.resolve_context("alpha", "agent-1")
        with pytest.raises(ProjectAccessDeniedError, match=r"current project \(Alpha\)"):
            guard.check_access(ctx, "story", foreign["story"])


# ── 4. Same project / exemptions ─────────────────────────────────────────────


class TestAllowedAccess:
    def test_same_project_passes_without_logging(self, guard, store, audit, project):
        story = store.create_story(project.id, "Mine")
        task = store.create_task(story.id, "Mine too")
        ctx = guard.resolve_context("alpha", "agent-1")
        guard.check_access(ctx, "story", story.id)
        guard.check_access(ctx, "task", task.id)
        assert audit.count() == 0

    def test_project_kind_is_exempt(self, guard, audit, project, other_project):
        ctx = guard.resolve_context("alpha", "agent-1")
        guard.check_access(ctx, "project", other_project.id)
        assert audit.count() == 0

    def test_check_all_skips_none(self, guard, project):
        ctx = guard.resolve_context("alpha", "agent-1")
        guard.check_all(ctx, [("epic", None), ("story", None)])

    def test_unknown_entity_type_rejected(self, guard, project):
        ctx = guard.resolve_context("alpha", "agent-1")
        with pytest.raises(ValidationError):
            guard.check_access(ctx, "sprint", 1)


# ── 5. Unknown ids ───────────────────────────────────────────────────────────


class TestUnknownIds:
    def test_missing_entity_is_not_found_and_not_logged(self, guard, audit, project):
        ctx = guard.resolve_context("alpha", "agent-1")
        with pytest.raises(NotFoundError):
            guard.check_access(ctx, "story", 999)
        assert audit.count() == 0


# ── 6. check_reference ───────────────────────────────────────────────────────


class TestCheckReference:
    def test_missing_target_is_referential(self, guard, audit, project):
        ctx = guard.resolve_context("alpha", "agent-1")
        with pytest.raises(ReferentialIntegrityError, match=r"Story\.epic_id=999") as exc:
            guard.check_reference(ctx, "epic", 999, "Story", "epic_id")
        assert exc.value.code == "REFERENTIAL_INTEGRITY"
        assert audit.count() == 0

    def test_none_is_a_clear(self, guard, audit, project):
        ctx = guard.resolve_context("alpha", "agent-1")
        guard.check_reference(ctx, "epic", None, "Story", "epic_id")
        assert audit.count() == 0

    def test_foreign_target_still_denied(self, guard, store, audit, project, other_project):
        foreign = _seed_foreign_items(store, other_project.id)
        ctx = guard.resolve_context("alpha", "agent-1")
        with pytest.raises(ProjectAccessDeniedError):
            guard.check_reference(ctx, "story", foreign["story"], "Task", "story_id")
        assert audit.count(event_type="project_violation") == 1


# ── 7. Log codes ─────────────────────────────────────────────────────────────


def _security_codes(caplog):
    return [getattr(rec, "security_code", None) for rec in caplog.records if rec.name.endswith("audit_service")]


class TestSecurityCodes:
    def test_not_registered_code(self, guard, caplog):
        with caplog.at_level("WARNING", logger="agile_backlog.services.audit_service"):
            with pytest.raises(ProjectNotRegisteredError):
                guard.resolve_context("ghost", "agent-1")
        assert _security_codes(caplog) == ["PROJECT_NOT_REGISTERED"]

    def test_access_denied_code(self, guard, store, project, other_project, caplog):
        foreign = _seed_foreign_items(store, other_project.id)
        ctx = guard.resolve_context("alpha", "agent-1")
        with caplog.at_level("WARNING", logger="agile_backlog.services.audit_service"):
            with pytest.raises(ProjectAccessDeniedError):
                guard.check_access(ctx, "bug", foreign["bug"])
        assert _security_codes(caplog) == ["PROJECT_ACCESS_DENIED"]
