"""Backlog service: the scoped operation surface adapters call.

Every scoped method takes the caller's ``project_identifier`` plus
keyword-only ``agent_identifier`` / ``acting_as`` and runs as one unit
of work:

    1. resolve the project context (access guard)
    2. check every referenced entity belongs to that project
    3. for updates, run conflict detection (advisory)
    4. write through the entity store
    5. commit; any exception rolls the unit back

Transaction policy: the store flushes, this layer commits. Security
events are committed by the audit log as they happen, so they survive
the rollback of the call that produced them.

Graph edges (dependencies and blocks / blocked_by / depends_on
relationships) are checked for cycles and inserted inside one
serializable transaction.

Updates return UpdateResult so a detected conflict travels next to the
successful write instead of as an error.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass

from agile_backlog.models.graph import GRAPH_RELATIONSHIP_TYPES
from agile_backlog.services.access_guard import AccessGuard
from agile_backlog.services.audit_service import SecurityAuditLog
from agile_backlog.services.conflict_detector import ConflictDetector
from agile_backlog.services.dependency_graph import DependencyGraphValidator
from agile_backlog.services.helpers.patches import is_set
from agile_backlog.services.sprint_service import SprintEngine
from agile_backlog.services.store import BacklogStore

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    entity: object
    conflict_detected: bool = False
    warning: str | None = None

    def to_dict(self):
        result = self.entity.to_dict()
        result["conflict_detected"] = self.conflict_detected
        if self.warning:
            result["warning"] = self.warning
        return result


class BacklogService:
    """Facade wiring store, guard, validator, detector and sprint engine onto one session."""

    def __init__(self, session, settings=None):
        self.session = session
        self.settings = settings
        self.store = BacklogStore(session)
        self.audit = SecurityAuditLog(session, default_limit=getattr(settings, "SECURITY_LOG_LIMIT", 100))
        self.guard = AccessGuard(
            self.store, self.audit, default_agent=getattr(settings, "DEFAULT_AGENT_IDENTIFIER", "system"),
        )
        self.validator = DependencyGraphValidator(self.store)
        self.detector = ConflictDetector(self.store, self.audit)
        self.sprints = SprintEngine(self.store, velocity_window=getattr(settings, "VELOCITY_SPRINT_COUNT", 3))

    # ── Unit of work ─────────────────────────────────────────────────────

    @contextmanager
    def _unit_of_work(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    @contextmanager
    def _scoped(self, project_identifier, agent_identifier=None, acting_as=None):
        with self._unit_of_work():
            yield self.guard.resolve_context(project_identifier, agent_identifier, acting_as)

    def close(self):
        self.session.close()

    def _update_work_item(self, ctx, entity_type, entity_id, update, patch):
        previous = self.detector.conflicting_modifier(entity_type, entity_id, ctx.modified_by)
        entity = update(entity_id, patch, agent_identifier=ctx.agent_identifier, modified_by=ctx.modified_by)
        if previous is None:
            return UpdateResult(entity=entity)
        # Only a write that went through is reported
        self.detector.record_conflict(entity_type, entity_id, previous, ctx.modified_by, ctx.project_id)
        return UpdateResult(entity=entity, conflict_detected=True, warning=self.detector.warning_for(entity_type))

    # ── Projects (unscoped) ──────────────────────────────────────────────

    def register_project(self, identifier, name, description=None):
        with self._unit_of_work():
            project = self.store.create_project(identifier, name, description)
        logger.info("Project registered: %s", identifier, extra={"project_identifier": identifier})
        return project

    def list_projects(self):
        return self.store.list_projects()

    def get_project(self, project_identifier, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.get_project(ctx.project_id)

    def update_project(self, project_identifier, patch, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.update_project(ctx.project_id, patch)

    def delete_project(self, project_identifier, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.store.delete_project(ctx.project_id)
        logger.info("Project deleted: %s", project_identifier, extra={"project_identifier": project_identifier})

    # ── Epics ────────────────────────────────────────────────────────────

    def create_epic(self, project_identifier, title, *, agent_identifier=None, acting_as=None, **fields):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            return self.store.create_epic(
                ctx.project_id, title,
                agent_identifier=ctx.agent_identifier, modified_by=ctx.modified_by, **fields,
            )

    def get_epic(self, project_identifier, epic_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "epic", epic_id)
            return self.store.get_epic(epic_id)

    def list_epics(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_epics(ctx.project_id, filters)

    def update_epic(self, project_identifier, epic_id, patch, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_access(ctx, "epic", epic_id)
            return self._update_work_item(ctx, "epic", epic_id, self.store.update_epic, patch)

    def delete_epic(self, project_identifier, epic_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "epic", epic_id)
            self.store.delete_epic(epic_id)

    # ── Stories ──────────────────────────────────────────────────────────

    def create_story(self, project_identifier, title, *, epic_id=None, agent_identifier=None, acting_as=None, **fields):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_reference(ctx, "epic", epic_id, "Story", "epic_id")
            return self.store.create_story(
                ctx.project_id, title, epic_id=epic_id,
                agent_identifier=ctx.agent_identifier, modified_by=ctx.modified_by, **fields,
            )

    def get_story(self, project_identifier, story_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "story", story_id)
            return self.store.get_story(story_id)

    def list_stories(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_stories(ctx.project_id, filters)

    def list_orphan_stories(self, project_identifier, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_orphan_stories(ctx.project_id)

    def update_story(self, project_identifier, story_id, patch, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_access(ctx, "story", story_id)
            if is_set(patch.epic_id):
                self.guard.check_reference(ctx, "epic", patch.epic_id, "Story", "epic_id")
            return self._update_work_item(ctx, "story", story_id, self.store.update_story, patch)

    def delete_story(self, project_identifier, story_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "story", story_id)
            self.store.delete_story(story_id)

    # ── Tasks ────────────────────────────────────────────────────────────

    def create_task(self, project_identifier, story_id, title, *, agent_identifier=None, acting_as=None, **fields):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_reference(ctx, "story", story_id, "Task", "story_id")
            return self.store.create_task(
                story_id, title,
                agent_identifier=ctx.agent_identifier, modified_by=ctx.modified_by, **fields,
            )

    def get_task(self, project_identifier, task_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "task", task_id)
            return self.store.get_task(task_id)

    def list_tasks(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            if filters is not None and is_set(filters.story_id):
                self.guard.check_access(ctx, "story", filters.story_id)
            return self.store.list_tasks(ctx.project_id, filters)

    def update_task(self, project_identifier, task_id, patch, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_access(ctx, "task", task_id)
            return self._update_work_item(ctx, "task", task_id, self.store.update_task, patch)

    def delete_task(self, project_identifier, task_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "task", task_id)
            self.store.delete_task(task_id)

    # ── Bugs ─────────────────────────────────────────────────────────────

    def create_bug(self, project_identifier, title, *, story_id=None, agent_identifier=None, acting_as=None, **fields):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_reference(ctx, "story", story_id, "Bug", "story_id")
            return self.store.create_bug(
                ctx.project_id, title, story_id=story_id,
                agent_identifier=ctx.agent_identifier, modified_by=ctx.modified_by, **fields,
            )

    def get_bug(self, project_identifier, bug_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "bug", bug_id)
            return self.store.get_bug(bug_id)

    def list_bugs(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_bugs(ctx.project_id, filters)

    def update_bug(self, project_identifier, bug_id, patch, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self.guard.check_access(ctx, "bug", bug_id)
            if is_set(patch.story_id):
                self.guard.check_reference(ctx, "story", patch.story_id, "Bug", "story_id")
            return self._update_work_item(ctx, "bug", bug_id, self.store.update_bug, patch)

    def delete_bug(self, project_identifier, bug_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "bug", bug_id)
            self.store.delete_bug(bug_id)

    # ── Dependencies ─────────────────────────────────────────────────────

    def add_dependency(self, project_identifier, story_id, depends_on_story_id, dependency_type="blocks", *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_reference(ctx, "story", story_id, "Dependency", "story_id")
            self.guard.check_reference(ctx, "story", depends_on_story_id, "Dependency", "depends_on_story_id")
            with self.store.serializable():
                self.validator.assert_acyclic(ctx.project_id, story_id, depends_on_story_id)
                dependency = self.store.create_dependency(story_id, depends_on_story_id, dependency_type)
        logger.info(
            "Dependency %s -> %s added", story_id, depends_on_story_id,
            extra={"project_identifier": project_identifier},
        )
        return dependency

    def list_dependencies(self, project_identifier, story_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, "story", story_id)
            return self.store.list_dependencies(story_id)

    def remove_dependency(self, project_identifier, dependency_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            dependency = self.store.get_dependency(dependency_id)
            self.guard.check_access(ctx, "story", dependency.story_id)
            self.store.delete_dependency(dependency_id)

    def dependency_graph(self, project_identifier, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.validator.dependency_graph(ctx.project_id)

    def hierarchy(self, project_identifier, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.validator.hierarchy(ctx.project_id)

    # ── Relationships ────────────────────────────────────────────────────

    def create_relationship(
        self,
        project_identifier,
        source_type,
        source_id,
        target_type,
        target_id,
        relationship_type,
        description=None,
        *,
        agent_identifier=None,
    ):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_reference(ctx, source_type, source_id, "Relationship", "source_id")
            self.guard.check_reference(ctx, target_type, target_id, "Relationship", "target_id")
            create_args = dict(
                project_id=ctx.project_id,
                source_type=source_type,
                source_id=source_id,
                target_type=target_type,
                target_id=target_id,
                relationship_type=relationship_type,
                description=description,
                agent_identifier=ctx.agent_identifier,
            )
            if relationship_type not in GRAPH_RELATIONSHIP_TYPES:
                return self.store.create_relationship(**create_args)
            with self.store.serializable():
                self.validator.assert_acyclic(ctx.project_id, (source_type, source_id), (target_type, target_id))
                return self.store.create_relationship(**create_args)

    def get_relationship(self, project_identifier, relationship_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            relationship = self.store.get_relationship(relationship_id)
            self.guard.check_record(ctx, "relationship", relationship_id, relationship.project_id)
            return relationship

    def list_relationships(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_relationships(ctx.project_id, filters)

    def list_entity_relationships(self, project_identifier, entity_type, entity_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_access(ctx, entity_type, entity_id)
            return self.store.list_relationships_for_entity(ctx.project_id, entity_type, entity_id)

    def update_relationship(self, project_identifier, relationship_id, patch, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            relationship = self.store.get_relationship(relationship_id)
            self.guard.check_record(ctx, "relationship", relationship_id, relationship.project_id)
            return self.store.update_relationship(relationship_id, patch)

    def delete_relationship(self, project_identifier, relationship_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            relationship = self.store.get_relationship(relationship_id)
            self.guard.check_record(ctx, "relationship", relationship_id, relationship.project_id)
            self.store.delete_relationship(relationship_id)

    # ── Notes ────────────────────────────────────────────────────────────

    def add_note(self, project_identifier, parent_type, parent_id, content, author_name=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self.guard.check_reference(ctx, parent_type, parent_id, "Note", "parent_id")
            return self.store.create_note(
                ctx.project_id, parent_type, parent_id, content,
                agent_identifier=ctx.agent_identifier, author_name=author_name,
            )

    def get_note(self, project_identifier, note_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            note = self.store.get_note(note_id)
            self.guard.check_record(ctx, "note", note_id, note.project_id)
            return note

    def list_notes(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_notes(ctx.project_id, filters)

    def update_note(self, project_identifier, note_id, patch, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            note = self.store.get_note(note_id)
            self.guard.check_record(ctx, "note", note_id, note.project_id)
            return self.store.update_note(note_id, patch, agent_identifier=ctx.agent_identifier)

    def delete_note(self, project_identifier, note_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            note = self.store.get_note(note_id)
            self.guard.check_record(ctx, "note", note_id, note.project_id)
            self.store.delete_note(note_id)

    # ── Sprints ──────────────────────────────────────────────────────────

    def _sprint_in_scope(self, ctx, sprint_id):
        sprint = self.store.get_sprint(sprint_id)
        self.guard.check_record(ctx, "sprint", sprint_id, sprint.project_id)
        return sprint

    def create_sprint(self, project_identifier, name, start_date, end_date, *, goal=None, capacity_points=None, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.sprints.create_sprint(
                ctx.project_id, name, start_date, end_date, goal=goal, capacity_points=capacity_points,
            )

    def get_sprint(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self._sprint_in_scope(ctx, sprint_id)

    def list_sprints(self, project_identifier, filters=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.store.list_sprints(ctx.project_id, filters)

    def update_sprint(self, project_identifier, sprint_id, patch, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.update_sprint(sprint_id, patch)

    def start_sprint(self, project_identifier, sprint_id, *, snapshot_date=None, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            sprint, _snapshot = self.sprints.start_sprint(sprint_id, snapshot_date)
            return sprint

    def complete_sprint(self, project_identifier, sprint_id, *, snapshot_date=None, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.complete_sprint(sprint_id, snapshot_date)

    def cancel_sprint(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.cancel_sprint(sprint_id)

    def delete_sprint(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            self.sprints.delete_sprint(sprint_id)

    def add_to_sprint(self, project_identifier, sprint_id, item_type, item_id, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            self.guard.check_reference(ctx, item_type, item_id, "SprintMembership", "item_id")
            return self.sprints.add_item(sprint_id, item_type, item_id, added_by=ctx.modified_by)

    def remove_from_sprint(self, project_identifier, sprint_id, item_type, item_id, *, agent_identifier=None, acting_as=None):
        with self._scoped(project_identifier, agent_identifier, acting_as) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            self.guard.check_access(ctx, item_type, item_id)
            return self.sprints.remove_item(sprint_id, item_type, item_id, removed_by=ctx.modified_by)

    def create_snapshot(self, project_identifier, sprint_id, snapshot_date=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.take_snapshot(sprint_id, snapshot_date)

    def list_snapshots(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.store.list_snapshots(sprint_id)

    def sprint_capacity(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.calculate_capacity(sprint_id)

    def burndown(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.burndown(sprint_id)

    def completion_report(self, project_identifier, sprint_id, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            self._sprint_in_scope(ctx, sprint_id)
            return self.sprints.completion_report(sprint_id)

    def velocity(self, project_identifier, sprint_count=None, *, agent_identifier=None):
        with self._scoped(project_identifier, agent_identifier) as ctx:
            return self.sprints.velocity_report(ctx.project_id, sprint_count)

    # ── Security logs (unscoped) ─────────────────────────────────────────

    def list_security_logs(self, limit=None, event_type=None, project_identifier=None):
        project_id = None
        if project_identifier is not None:
            project = self.store.get_project_by_identifier(project_identifier, touch=False)
            if project is None:
                return []
            project_id = project.id
        return self.audit.list_events(limit=limit, event_type=event_type, project_id=project_id)
