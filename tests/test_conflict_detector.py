"""
Tests for agile_backlog/services/conflict_detector.py

Scenarios covered:
  1. detect_conflict: same writer, empty history, different writer
  2. Service updates: conflict flag + warning travel with a successful write
  3. acting_as overrides the identity used for comparison and attribution
  4. A rejected update records no conflict
"""

import pytest

from agile_backlog.core.exceptions import InvalidTransitionError, ValidationError
from agile_backlog.services.helpers.patches import BugPatch, StoryPatch, TaskPatch


# ── 1. detect_conflict ───────────────────────────────────────────────────────


class TestDetectConflict:
    def test_same_writer_is_not_a_conflict(self, detector, audit, store, project):
        story = store.create_story(project.id, "Mine", agent_identifier="agent-1")
        assert detector.detect_conflict("story", story.id, "agent-1", project.id) is False
        assert audit.count() == 0

    def test_no_previous_writer_is_not_a_conflict(self, detector, audit, store, project):
        story = store.create_story(project.id, "Anonymous")
        assert story.last_modified_by is None
        assert detector.detect_conflict("story", story.id, "agent-2", project.id) is False
        assert audit.count() == 0

    def test_different_writer_is_logged(self, detector, audit, store, project):
        task_story = store.create_story(project.id, "Parent", agent_identifier="agent-1")
        task = store.create_task(task_story.id, "Shared", agent_identifier="agent-1")

        assert detector.detect_conflict("task", task.id, "agent-2", project.id) is True

        events = audit.list_events(event_type="conflict_detected")
        assert len(events) == 1
        assert events[0].entity_type == "task"
        assert events[0].entity_id == task.id
        assert events[0].agent_identifier == "agent-2"
        assert events[0].message == (
            f"Concurrent modification detected: task #{task.id} was last modified by "
            "'agent-1', now being modified by 'agent-2'"
        )

    def test_rejects_non_work_items(self, detector, project):
        with pytest.raises(ValidationError):
            detector.detect_conflict("project", project.id, "agent-1")

    def test_warning_text(self, detector):
        assert detector.warning_for("bug") == "This bug was recently modified by another agent"


# ── 2. Service updates ───────────────────────────────────────────────────────


class TestUpdateResult:
    def test_conflicting_update_still_persists(self, service, audit, project):
        story = service.create_story("alpha", "Login", agent_identifier="agent-1")

        result = service.update_story("alpha", story.id, StoryPatch(title="Login v2"), agent_identifier="agent-2")

        assert result.conflict_detected is True
        assert result.warning == "This story was recently modified by another agent"
        assert result.entity.title == "Login v2"
        assert result.entity.last_modified_by == "agent-2"
        assert service.get_story("alpha", story.id, agent_identifier="agent-3").title == "Login v2"
        assert audit.count(event_type="conflict_detected") == 1

    def test_same_agent_update_has_no_warning(self, service, project):
        story = service.create_story("alpha", "Login", agent_identifier="agent-1")
        result = service.update_story("alpha", story.id, StoryPatch(points=3), agent_identifier="agent-1")
        assert result.conflict_detected is False
        assert result.warning is None
        assert "warning" not in result.to_dict()
        assert result.to_dict()["conflict_detected"] is False

    def test_to_dict_carries_warning(self, service, project):
        bug = service.create_bug("alpha", "Crash", agent_identifier="agent-1")
        result = service.update_bug("alpha", bug.id, BugPatch(severity="critical"), agent_identifier="agent-2")
        payload = result.to_dict()
        assert payload["severity"] == "critical"
        assert payload["conflict_detected"] is True
        assert payload["warning"] == "This bug was recently modified by another agent"

    def test_second_update_by_new_writer_is_clean(self, service, project):
        story = service.create_story("alpha", "Login", agent_identifier="agent-1")
        service.update_story("alpha", story.id, StoryPatch(title="v2"), agent_identifier="agent-2")
        again = service.update_story("alpha", story.id, StoryPatch(title="v3"), agent_identifier="agent-2")
        assert again.conflict_detected is False


# ── 3. acting_as ─────────────────────────────────────────────────────────────


class TestActingAs:
    def test_acting_as_is_recorded_as_modifier(self, service, project):
        story = service.create_story("alpha", "Parent", agent_identifier="agent-1")
        task = service.create_task("alpha", story.id, "Child", agent_identifier="agent-1", acting_as="Dana")
        assert task.agent_identifier == "agent-1"
        assert task.last_modified_by == "Dana"

    def test_acting_as_is_compared_not_agent(self, service, project):
        story = service.create_story("alpha", "Parent", agent_identifier="agent-1")
        task = service.create_task("alpha", story.id, "Child", agent_identifier="agent-1", acting_as="Dana")

        same_human = service.update_task(
            "alpha", task.id, TaskPatch(status="in_progress"), agent_identifier="agent-9", acting_as="Dana",
        )
        assert same_human.conflict_detected is False

        other_human = service.update_task(
            "alpha", task.id, TaskPatch(status="review"), agent_identifier="agent-1",
        )
        assert other_human.conflict_detected is True
        assert other_human.entity.last_modified_by == "agent-1"


# ── 4. Rejected updates ──────────────────────────────────────────────────────


class TestRejectedUpdate:
    def test_conflicting_modifier_does_not_record(self, detector, audit, store, project):
        story = store.create_story(project.id, "Shared", agent_identifier="agent-1")
        assert detector.conflicting_modifier("story", story.id, "agent-2") == "agent-1"
        assert detector.conflicting_modifier("story", story.id, "agent-1") is None
        assert audit.count() == 0

    def test_invalid_transition_logs_no_conflict(self, service, audit, project):
        story = service.create_story("alpha", "Login", agent_identifier="agent-1")

        with pytest.raises(InvalidTransitionError):
            service.update_story("alpha", story.id, StoryPatch(status="done"), agent_identifier="agent-2")

        assert audit.count(event_type="conflict_detected") == 0
        assert service.get_story("alpha", story.id).last_modified_by == "agent-1"

    def test_invalid_field_logs_no_conflict(self, service, audit, project):
        bug = service.create_bug("alpha", "Crash", agent_identifier="agent-1")

        with pytest.raises(ValidationError):
            service.update_bug("alpha", bug.id, BugPatch(severity="apocalyptic"), agent_identifier="agent-2")

        assert audit.count(event_type="conflict_detected") == 0
