"""
End-to-end tests for agile_backlog/services/backlog_service.py

Scenarios covered:
  1. Registration and project-level operations
  2. Full backlog flow: epic → story → task → bug → notes → relationships
  3. Isolation: every scoped call rejects foreign ids, lists never leak
  4. Unit of work: failed calls leave no partial writes
  5. Sprints through the facade
  6. Security log listing
  7. create_backlog factory
"""

from datetime import date

import pytest

from agile_backlog import UpdateResult, create_backlog
from agile_backlog.config import TestingConfig
from agile_backlog.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProjectAccessDeniedError,
    ProjectNotRegisteredError,
    ReferentialIntegrityError,
    ValidationError,
)
from agile_backlog.models import Story
from agile_backlog.services.helpers.patches import (
    BugPatch,
    EpicPatch,
    NoteFilter,
    NotePatch,
    ProjectPatch,
    RelationshipFilter,
    RelationshipPatch,
    StoryFilter,
    StoryPatch,
    TaskFilter,
)


@pytest.fixture()
def registered(service):
    service.register_project("alpha", "Alpha")
    service.register_project("beta", "Beta")
    return service


# ── 1. Registration ──────────────────────────────────────────────────────────


class TestProjects:
    def test_register_and_get(self, service):
        project = service.register_project("repo-1", "Repo One", "Main repo")
        assert service.get_project("repo-1").id == project.id

    def test_duplicate_identifier(self, registered):
        with pytest.raises(ConflictError):
            registered.register_project("alpha", "Again")

    def test_list_projects_most_recently_accessed_first(self, registered):
        registered.list_epics("alpha")
        assert [p.identifier for p in registered.list_projects()] == ["alpha", "beta"]
        registered.list_epics("beta")
        assert [p.identifier for p in registered.list_projects()] == ["beta", "alpha"]

    def test_update_project(self, registered):
        updated = registered.update_project("alpha", ProjectPatch(name="Alpha Prime"))
        assert updated.name == "Alpha Prime"
        assert updated.identifier == "alpha"

    def test_delete_project_removes_backlog(self, registered, session):
        registered.create_story("alpha", "Gone soon")
        registered.delete_project("alpha")
        assert session.query(Story).count() == 0
        with pytest.raises(ProjectNotRegisteredError):
            registered.list_stories("alpha")


# ── 2. Full backlog flow ─────────────────────────────────────────────────────


class TestBacklogFlow:
    def test_epic_story_task_bug(self, registered):
        epic = registered.create_epic("alpha", "Auth", description="Sign-in", agent_identifier="agent-1")
        story = registered.create_story(
            "alpha", "Login form", epic_id=epic.id, points=3, priority="high", agent_identifier="agent-1",
        )
        task = registered.create_task("alpha", story.id, "Validate input", task_type="testing")
        bug = registered.create_bug("alpha", "Crash on empty", story_id=story.id, severity="critical")

        assert story.project_id == epic.project_id
        assert registered.get_task("alpha", task.id).task_type == "testing"
        assert registered.get_bug("alpha", bug.id).story_id == story.id
        assert [s.id for s in registered.list_stories("alpha", StoryFilter(epic_id=epic.id))] == [story.id]
        assert [t.id for t in registered.list_tasks("alpha", TaskFilter(story_id=story.id))] == [task.id]

    def test_status_workflow(self, registered):
        story = registered.create_story("alpha", "Flow")
        for status in ("in_progress", "review", "done"):
            result = registered.update_story("alpha", story.id, StoryPatch(status=status))
            assert isinstance(result, UpdateResult)
        assert registered.get_story("alpha", story.id).status == "done"

    def test_illegal_transition(self, registered):
        story = registered.create_story("alpha", "Flow")
        with pytest.raises(InvalidTransitionError, match="Invalid transition: todo → done"):
            registered.update_story("alpha", story.id, StoryPatch(status="done"))
        assert registered.get_story("alpha", story.id).status == "todo"

    def test_detach_story_from_epic(self, registered):
        epic = registered.create_epic("alpha", "Auth")
        story = registered.create_story("alpha", "Login", epic_id=epic.id)
        registered.update_story("alpha", story.id, StoryPatch(epic_id=None))
        assert [s.id for s in registered.list_orphan_stories("alpha")] == [story.id]

    def test_notes(self, registered):
        story = registered.create_story("alpha", "Noted")
        note = registered.add_note("alpha", "story", story.id, "Remember the edge case", agent_identifier="agent-1")
        assert note.author_name == "agent-1"

        edited = registered.update_note("alpha", note.id, NotePatch(content="Handled"), agent_identifier="agent-2")
        assert edited.content == "Handled"
        assert edited.author_name == "agent-2"

        notes = registered.list_notes("alpha", NoteFilter(parent_type="story", parent_id=story.id))
        assert [n.id for n in notes] == [note.id]
        registered.delete_note("alpha", note.id)
        assert registered.list_notes("alpha") == []

    def test_relationships(self, registered):
        a = registered.create_story("alpha", "A")
        b = registered.create_story("alpha", "B")
        rel = registered.create_relationship("alpha", "story", a.id, "story", b.id, "related_to", "same area")

        assert registered.get_relationship("alpha", rel.id).source == ("story", a.id)
        assert [r.id for r in registered.list_entity_relationships("alpha", "story", b.id)] == [rel.id]
        assert registered.list_relationships("alpha", RelationshipFilter(relationship_type="blocks")) == []

        updated = registered.update_relationship("alpha", rel.id, RelationshipPatch(description="renamed"))
        assert updated.description == "renamed"
        registered.delete_relationship("alpha", rel.id)
        assert registered.list_relationships("alpha") == []

    def test_dependencies(self, registered):
        a = registered.create_story("alpha", "A")
        b = registered.create_story("alpha", "B")
        dep = registered.add_dependency("alpha", a.id, b.id)
        assert [d.id for d in registered.list_dependencies("alpha", b.id)] == [dep.id]
        assert [s.id for s in registered.list_stories("alpha", StoryFilter(has_dependencies=True))] == [b.id, a.id]

        registered.remove_dependency("alpha", dep.id)
        assert registered.list_dependencies("alpha", a.id) == []

    def test_delete_epic_orphans_stories(self, registered):
        epic = registered.create_epic("alpha", "Auth")
        story = registered.create_story("alpha", "Login", epic_id=epic.id)
        registered.delete_epic("alpha", epic.id)
        assert registered.get_story("alpha", story.id).epic_id is None

    def test_update_epic_returns_result(self, registered):
        epic = registered.create_epic("alpha", "Auth", agent_identifier="agent-1")
        result = registered.update_epic("alpha", epic.id, EpicPatch(assigned_to="dana"), agent_identifier="agent-1")
        assert result.entity.assigned_to == "dana"
        assert result.conflict_detected is False


# ── 3. Isolation ─────────────────────────────────────────────────────────────


class TestIsolation:
    def test_unregistered_project(self, registered):
        with pytest.raises(ProjectNotRegisteredError) as exc:
            registered.list_stories("gamma", agent_identifier="agent-1")
        assert exc.value.code == "PROJECT_NOT_REGISTERED"

    def test_lists_do_not_leak(self, registered):
        registered.create_story("alpha", "Alpha story")
        registered.create_story("beta", "Beta story")
        registered.create_bug("beta", "Beta bug")
        assert [s.title for s in registered.list_stories("alpha")] == ["Alpha story"]
        assert registered.list_bugs("alpha") == []
        assert registered.list_tasks("alpha") == []

    @pytest.mark.parametrize(
        "call",
        [
            lambda svc, ids: svc.get_story("alpha", ids["story"]),
            lambda svc, ids: svc.update_story("alpha", ids["story"], StoryPatch(title="Hijack")),
            lambda svc, ids: svc.delete_story("alpha", ids["story"]),
            lambda svc, ids: svc.get_epic("alpha", ids["epic"]),
            lambda svc, ids: svc.create_story("alpha", "Sneaky", epic_id=ids["epic"]),
            lambda svc, ids: svc.create_task("alpha", ids["story"], "Sneaky"),
            lambda svc, ids: svc.get_task("alpha", ids["task"]),
            lambda svc, ids: svc.get_bug("alpha", ids["bug"]),
            lambda svc, ids: svc.add_note("alpha", "bug", ids["bug"], "Peek"),
            lambda svc, ids: svc.list_dependencies("alpha", ids["story"]),
            lambda svc, ids: svc.list_tasks("alpha", TaskFilter(story_id=ids["story"])),
            lambda svc, ids: svc.get_sprint("alpha", ids["sprint"]),
        ],
    )
    def test_foreign_ids_denied(self, registered, call):
        epic = registered.create_epic("beta", "Beta epic")
        story = registered.create_story("beta", "Beta story", epic_id=epic.id)
        task = registered.create_task("beta", story.id, "Beta task")
        bug = registered.create_bug("beta", "Beta bug")
        sprint = registered.create_sprint("beta", "Beta sprint", date(2024, 1, 1), date(2024, 1, 15))
        ids = {"epic": epic.id, "story": story.id, "task": task.id, "bug": bug.id, "sprint": sprint.id}

        with pytest.raises(ProjectAccessDeniedError) as exc:
            call(registered, ids)
        assert exc.value.code == "PROJECT_ACCESS_DENIED"
        assert len(registered.list_security_logs(event_type="project_violation")) == 1
        assert registered.get_story("beta", story.id).title == "Beta story"

    def test_missing_id_is_not_found(self, registered):
        with pytest.raises(NotFoundError):
            registered.get_story("alpha", 12345)
        assert registered.list_security_logs() == []


# ── 4. Unit of work ──────────────────────────────────────────────────────────


class TestUnitOfWork:
    def test_failed_create_leaves_nothing(self, registered, session):
        with pytest.raises(ValidationError):
            registered.create_story("alpha", "Bad", priority="urgent-ish")
        assert session.query(Story).count() == 0

    def test_failed_reference_leaves_nothing(self, registered, session):
        with pytest.raises(ReferentialIntegrityError) as exc:
            registered.create_story("alpha", "Dangling", epic_id=999)
        assert exc.value.code == "REFERENTIAL_INTEGRITY"
        assert session.query(Story).count() == 0

    @pytest.mark.parametrize(
        "call, field",
        [
            (lambda svc, story: svc.create_task("alpha", 999, "Orphan task"), "story_id"),
            (lambda svc, story: svc.create_bug("alpha", "Orphan bug", story_id=999), "story_id"),
            (lambda svc, story: svc.update_story("alpha", story.id, StoryPatch(epic_id=999)), "epic_id"),
            (lambda svc, story: svc.update_bug("alpha", svc.create_bug("alpha", "B").id, BugPatch(story_id=999)), "story_id"),
            (lambda svc, story: svc.add_dependency("alpha", story.id, 999), "depends_on_story_id"),
            (lambda svc, story: svc.create_relationship("alpha", "story", story.id, "epic", 999, "related_to"), "target_id"),
            (lambda svc, story: svc.add_note("alpha", "task", 999, "Nothing there"), "parent_id"),
        ],
    )
    def test_missing_parent_on_write(self, registered, call, field):
        story = registered.create_story("alpha", "Anchor")
        with pytest.raises(ReferentialIntegrityError) as exc:
            call(registered, story)
        assert exc.value.field == field
        assert exc.value.value == 999
        assert registered.list_security_logs() == []

    def test_store_level_reference_check(self, registered, store):
        alpha = registered.get_project("alpha")
        with pytest.raises(ReferentialIntegrityError):
            store.create_task(999, "No parent")
        assert store.list_tasks(alpha.id) == []

    def test_session_usable_after_failure(self, registered):
        with pytest.raises(InvalidTransitionError):
            story = registered.create_story("alpha", "Flow")
            registered.update_story("alpha", story.id, StoryPatch(status="done"))
        assert registered.create_story("alpha", "Next").id is not None


# ── 5. Sprints ───────────────────────────────────────────────────────────────


class TestSprintFacade:
    def test_sprint_round_trip(self, registered):
        story = registered.create_story("alpha", "Sprint work", points=4, status="done")
        bug = registered.create_bug("alpha", "Sprint bug", points=2)
        sprint = registered.create_sprint("alpha", "S1", date(2024, 3, 1), date(2024, 3, 11), capacity_points=20)

        registered.add_to_sprint("alpha", sprint.id, "story", story.id, agent_identifier="agent-1")
        membership = registered.add_to_sprint("alpha", sprint.id, "bug", bug.id, acting_as="Dana")
        assert membership.added_by == "Dana"
        assert registered.sprint_capacity("alpha", sprint.id) == {"committed": 6, "completed": 4, "remaining": 2}

        started = registered.start_sprint("alpha", sprint.id, snapshot_date=date(2024, 3, 1))
        assert started.status == "active"
        registered.create_snapshot("alpha", sprint.id, date(2024, 3, 5))
        assert len(registered.list_snapshots("alpha", sprint.id)) == 2
        assert registered.burndown("alpha", sprint.id)["ideal_burndown"][0] == 6

        report = registered.complete_sprint("alpha", sprint.id, snapshot_date=date(2024, 3, 11))
        assert report["velocity"] == 4
        assert report["completion_rate"] == 50
        assert registered.velocity("alpha")["velocities"] == [4]
        assert registered.completion_report("alpha", sprint.id)["completed_items"] == 1

    def test_remove_from_sprint(self, registered):
        story = registered.create_story("alpha", "Pulled", points=3)
        sprint = registered.create_sprint("alpha", "S1", date(2024, 3, 1), date(2024, 3, 11))
        registered.add_to_sprint("alpha", sprint.id, "story", story.id)
        membership = registered.remove_from_sprint("alpha", sprint.id, "story", story.id, agent_identifier="agent-2")
        assert membership.removed_by == "agent-2"
        assert not membership.is_active

    def test_cancel_and_delete(self, registered):
        one = registered.create_sprint("alpha", "S1", date(2024, 3, 1), date(2024, 3, 11))
        two = registered.create_sprint("alpha", "S2", date(2024, 3, 12), date(2024, 3, 22))
        assert registered.cancel_sprint("alpha", one.id).status == "cancelled"
        registered.delete_sprint("alpha", two.id)
        assert [s.id for s in registered.list_sprints("alpha")] == [one.id]

    def test_sprint_from_other_project_rejected(self, registered):
        foreign = registered.create_story("beta", "Beta story")
        sprint = registered.create_sprint("alpha", "S1", date(2024, 3, 1), date(2024, 3, 11))
        with pytest.raises(ProjectAccessDeniedError):
            registered.add_to_sprint("alpha", sprint.id, "story", foreign.id)


# ── 6. Security logs ─────────────────────────────────────────────────────────


class TestSecurityLogs:
    def test_filtered_by_project(self, registered):
        foreign = registered.create_story("beta", "Beta story")
        with pytest.raises(ProjectAccessDeniedError):
            registered.get_story("alpha", foreign.id)
        with pytest.raises(ProjectNotRegisteredError):
            registered.list_epics("gamma")

        assert len(registered.list_security_logs()) == 2
        alpha_logs = registered.list_security_logs(project_identifier="alpha")
        assert [log.event_type for log in alpha_logs] == ["project_violation"]
        assert registered.list_security_logs(project_identifier="beta") == []
        assert registered.list_security_logs(project_identifier="gamma") == []

    def test_limit(self, registered):
        for _ in range(3):
            with pytest.raises(ProjectNotRegisteredError):
                registered.list_epics("gamma")
        assert len(registered.list_security_logs(limit=2)) == 2


# ── 7. Factory ───────────────────────────────────────────────────────────────


class TestCreateBacklog:
    def test_factory_builds_migrated_service(self):
        backlog = create_backlog(settings=TestingConfig())
        try:
            backlog.register_project("factory", "Factory")
            story = backlog.create_story("factory", "Built", agent_identifier="agent-1")
            assert backlog.get_story("factory", story.id).title == "Built"
        finally:
            backlog.close()
