"""
Entity store: typed create / get / list / update / delete for every
backlog entity, on an injected SQLAlchemy session.

Transaction policy:
    Store methods call session.flush() but never commit. The caller
    (BacklogService) owns the unit of work and commits once per public
    operation. The exception is ``serializable()``, which commits any
    pending work so the next transaction can start with the write lock.

Integrity policy:
    - Foreign keys named on a write path are resolved before insert and
      fail with ReferentialIntegrityError, including parents that live in
      another project.
    - Anything the pre-checks miss surfaces as sqlalchemy IntegrityError on
      flush; the session is rolled back and the error is translated into
      ConflictError / ReferentialIntegrityError / ValidationError.
    - delete_* relies on the declared CASCADE / SET NULL rules and does
      not re-verify ownership. Scope checks belong to the access guard.

Ordering: list_* return newest first (created_at desc, id desc) unless the
method says otherwise.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime

from sqlalchemy import exists, or_, select
from sqlalchemy.exc import IntegrityError

from agile_backlog.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from agile_backlog.database import IMMEDIATE
from agile_backlog.models import (
    Bug,
    Dependency,
    Epic,
    Note,
    Project,
    Relationship,
    Sprint,
    SprintMembership,
    SprintSnapshot,
    StatusTransition,
    Story,
    Task,
    utcnow,
)
from agile_backlog.models.backlog import BUG_SEVERITIES, ITEM_STATUSES, PRIORITIES, TASK_TYPES
from agile_backlog.models.graph import DEPENDENCY_TYPES, ENTITY_TYPES, RELATIONSHIP_TYPES
from agile_backlog.models.sprint import OPEN_SPRINT_STATUSES, SPRINT_STATUSES
from agile_backlog.services.helpers.patches import UNSET

logger = logging.getLogger(__name__)

ENTITY_MODELS = {"project": Project, "epic": Epic, "story": Story, "task": Task, "bug": Bug}

# Entities with status / attribution columns
WORK_ITEM_MODELS = {"epic": Epic, "story": Story, "task": Task, "bug": Bug}


# ── Validation helpers ───────────────────────────────────────────────────────


def _require_text(value, field, resource):
    if value is None or not str(value).strip():
        raise ValidationError(f"{resource} {field} is required", details={field: "empty"})


def _require_choice(value, allowed, field):
    if value not in allowed:
        raise ValidationError(
            f"Invalid {field}: {value!r}. Allowed: {', '.join(sorted(allowed))}",
            details={field: value},
        )


def _require_points(value, field="points"):
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a nonnegative integer", details={field: value})


def _require_date_range(start_date, end_date):
    for field, value in (("start_date", start_date), ("end_date", end_date)):
        if not isinstance(value, date) or isinstance(value, datetime):
            raise ValidationError(f"{field} must be a date", details={field: value})
    if end_date <= start_date:
        raise ValidationError(
            "end_date must be after start_date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def _translate_integrity_error(exc: IntegrityError, resource: str):
    text = str(exc.orig)
    upper = text.upper()
    if "UNIQUE" in upper:
        return ConflictError(resource, "unique key", text)
    if "FOREIGN KEY" in upper:
        return ReferentialIntegrityError(resource, "foreign key", reason="referenced record does not exist")
    return ValidationError(f"{resource} violates a database constraint: {text}")


def _newest_first(model):
    return (model.created_at.desc(), model.id.desc())


def _apply_filter(stmt, model, filters, skip=()):
    """AND together every supplied filter field; None matches IS NULL."""
    if filters is None:
        return stmt
    for field, value in filters.changes().items():
        if field in skip:
            continue
        column = getattr(model, field)
        stmt = stmt.where(column.is_(None) if value is None else column == value)
    return stmt


class BacklogStore:
    """Entity store bound to one SQLAlchemy session."""

    def __init__(self, session):
        self.session = session

    # ── Plumbing ─────────────────────────────────────────────────────────

    def _flush(self, resource: str):
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            translated = _translate_integrity_error(exc, resource)
            logger.info("%s write rejected by database: %s", resource, translated)
            raise translated from exc

    def _get(self, model, pk, resource=None):
        entity = self.session.execute(select(model).where(model.id == pk)).scalar_one_or_none()
        if entity is None:
            raise NotFoundError(resource=resource or model.__name__, resource_id=pk)
        return entity

    def _add(self, entity, resource):
        self.session.add(entity)
        self._flush(resource)
        logger.debug("%s %s created", resource, entity.id)
        return entity

    def _delete(self, entity, resource):
        pk = entity.id
        self.session.delete(entity)
        self._flush(resource)
        # Rows removed or nulled by ON DELETE rules are still in the identity map
        self.session.expire_all()
        logger.info("%s %s deleted", resource, pk)

    @contextmanager
    def serializable(self):
        """Run the enclosed reads and writes in one write-locked transaction.

        On SQLite this is ``BEGIN IMMEDIATE``: a concurrent writer blocks
        (up to the busy timeout) until this transaction commits, so a graph
        check and the insert that depends on it cannot interleave.
        """
        if self.session.in_transaction():
            self.session.commit()
        self.session.connection(execution_options=IMMEDIATE)
        yield self.session

    def entity_exists(self, entity_type: str, entity_id: int) -> bool:
        model = ENTITY_MODELS[entity_type]
        return self.session.execute(select(model.id).where(model.id == entity_id)).first() is not None

    def entity_project_id(self, entity_type: str, entity_id: int) -> int | None:
        """Owning project id of an entity, or None when it does not exist."""
        _require_choice(entity_type, ENTITY_TYPES, "entity_type")
        if entity_type == "project":
            stmt = select(Project.id).where(Project.id == entity_id)
        elif entity_type == "task":
            stmt = select(Story.project_id).join(Task, Task.story_id == Story.id).where(Task.id == entity_id)
        else:
            model = ENTITY_MODELS[entity_type]
            stmt = select(model.project_id).where(model.id == entity_id)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_work_item(self, entity_type: str, entity_id: int):
        _require_choice(entity_type, set(WORK_ITEM_MODELS), "entity_type")
        return self._get(WORK_ITEM_MODELS[entity_type], entity_id, resource=entity_type.title())

    # ── Status transitions ───────────────────────────────────────────────

    def allowed_transitions(self, entity_type: str, from_status: str) -> set[str]:
        rows = self.session.execute(
            select(StatusTransition.to_status).where(
                StatusTransition.entity_type == entity_type,
                StatusTransition.from_status == from_status,
            )
        ).scalars()
        return set(rows)

    def list_status_transitions(self, entity_type: str | None = None):
        stmt = select(StatusTransition).order_by(StatusTransition.entity_type, StatusTransition.id)
        if entity_type is not None:
            stmt = stmt.where(StatusTransition.entity_type == entity_type)
        return list(self.session.execute(stmt).scalars())

    def _change_status(self, entity_type, entity, new_status):
        _require_choice(new_status, ITEM_STATUSES, "status")
        old_status = entity.status
        if new_status == old_status:
            return
        allowed = self.allowed_transitions(entity_type, old_status)
        if new_status not in allowed:
            logger.info(
                "Rejected %s %s status change %s -> %s", entity_type, entity.id, old_status, new_status,
                extra={"entity_type": entity_type, "entity_id": entity.id},
            )
            raise InvalidTransitionError(
                entity_type.title(), old_status, new_status,
                message=(
                    f"Invalid transition: {old_status} → {new_status}. "
                    f"Allowed: {', '.join(sorted(allowed)) or 'none'}"
                ),
            )
        entity.status = new_status

    def _apply_work_item_patch(self, entity_type, entity, changes, agent_identifier, modified_by):
        status = changes.pop("status", UNSET)
        # Transition check first so a rejected status leaves the row clean
        if status is not UNSET:
            self._change_status(entity_type, entity, status)
        for field, value in changes.items():
            setattr(entity, field, value)
        if agent_identifier:
            entity.agent_identifier = agent_identifier
        if modified_by or agent_identifier:
            entity.last_modified_by = modified_by or agent_identifier
        entity.updated_at = utcnow()

    # ── Projects ─────────────────────────────────────────────────────────

    def create_project(self, identifier: str, name: str, description: str | None = None) -> Project:
        _require_text(identifier, "identifier", "Project")
        _require_text(name, "name", "Project")
        if self.get_project_by_identifier(identifier, touch=False) is not None:
            raise ConflictError("Project", "identifier", identifier)
        return self._add(Project(identifier=identifier, name=name, description=description), "Project")

    def get_project(self, project_id: int) -> Project:
        return self._get(Project, project_id)

    def get_project_by_identifier(self, identifier: str, touch: bool = True) -> Project | None:
        """Project for *identifier*; bumps last_accessed_at unless touch=False."""
        project = self.session.execute(
            select(Project).where(Project.identifier == identifier)
        ).scalar_one_or_none()
        if project is not None and touch:
            project.last_accessed_at = utcnow()
            self._flush("Project")
        return project

    def list_projects(self):
        stmt = select(Project).order_by(Project.last_accessed_at.desc(), Project.id.desc())
        return list(self.session.execute(stmt).scalars())

    def update_project(self, project_id: int, patch) -> Project:
        project = self.get_project(project_id)
        changes = patch.changes()
        if "name" in changes:
            _require_text(changes["name"], "name", "Project")
        for field, value in changes.items():
            setattr(project, field, value)
        project.updated_at = utcnow()
        self._flush("Project")
        return project

    def delete_project(self, project_id: int):
        self._delete(self.get_project(project_id), "Project")

    # ── Epics ────────────────────────────────────────────────────────────

    def create_epic(
        self,
        project_id: int,
        title: str,
        description: str | None = None,
        status: str = "todo",
        assigned_to: str | None = None,
        agent_identifier: str | None = None,
        modified_by: str | None = None,
    ) -> Epic:
        _require_text(title, "title", "Epic")
        _require_choice(status, ITEM_STATUSES, "status")
        if not self.entity_exists("project", project_id):
            raise ReferentialIntegrityError("Epic", "project_id", project_id)
        epic = Epic(
            project_id=project_id,
            title=title,
            description=description,
            status=status,
            assigned_to=assigned_to,
            agent_identifier=agent_identifier,
            last_modified_by=modified_by or agent_identifier,
        )
        return self._add(epic, "Epic")

    def get_epic(self, epic_id: int) -> Epic:
        return self._get(Epic, epic_id)

    def list_epics(self, project_id: int, filters=None):
        stmt = select(Epic).where(Epic.project_id == project_id)
        stmt = _apply_filter(stmt, Epic, filters).order_by(*_newest_first(Epic))
        return list(self.session.execute(stmt).scalars())

    def update_epic(self, epic_id: int, patch, agent_identifier=None, modified_by=None) -> Epic:
        epic = self.get_epic(epic_id)
        changes = patch.changes()
        if "title" in changes:
            _require_text(changes["title"], "title", "Epic")
        self._apply_work_item_patch("epic", epic, changes, agent_identifier, modified_by)
        self._flush("Epic")
        return epic

    def delete_epic(self, epic_id: int):
        self._delete(self.get_epic(epic_id), "Epic")

    # ── Stories ──────────────────────────────────────────────────────────

    def _check_epic_for_story(self, project_id, epic_id):
        if epic_id is None:
            return
        epic_project = self.entity_project_id("epic", epic_id)
        if epic_project is None:
            raise ReferentialIntegrityError("Story", "epic_id", epic_id)
        if epic_project != project_id:
            raise ReferentialIntegrityError(
                "Story", "epic_id", epic_id, reason="epic belongs to a different project",
            )

    def create_story(
        self,
        project_id: int,
        title: str,
        epic_id: int | None = None,
        description: str | None = None,
        acceptance_criteria: str | None = None,
        status: str = "todo",
        priority: str = "medium",
        points: int | None = None,
        assigned_to: str | None = None,
        agent_identifier: str | None = None,
        modified_by: str | None = None,
    ) -> Story:
        """Create a story bound to *project_id*, with or without an epic."""
        if project_id is None:
            raise ValidationError("Story project_id is required", details={"project_id": None})
        _require_text(title, "title", "Story")
        _require_choice(status, ITEM_STATUSES, "status")
        _require_choice(priority, PRIORITIES, "priority")
        _require_points(points)
        if not self.entity_exists("project", project_id):
            raise ReferentialIntegrityError("Story", "project_id", project_id)
        self._check_epic_for_story(project_id, epic_id)
        story = Story(
            project_id=project_id,
            epic_id=epic_id,
            title=title,
            description=description,
            acceptance_criteria=acceptance_criteria,
            status=status,
            priority=priority,
            points=points,
            assigned_to=assigned_to,
            agent_identifier=agent_identifier,
            last_modified_by=modified_by or agent_identifier,
        )
        return self._add(story, "Story")

    def get_story(self, story_id: int) -> Story:
        return self._get(Story, story_id)

    def list_stories(self, project_id: int, filters=None):
        stmt = select(Story).where(Story.project_id == project_id)
        stmt = _apply_filter(stmt, Story, filters, skip=("has_dependencies",))
        if filters is not None and filters.has_dependencies is not UNSET:
            linked = exists().where(
                or_(Dependency.story_id == Story.id, Dependency.depends_on_story_id == Story.id)
            )
            stmt = stmt.where(linked if filters.has_dependencies else ~linked)
        stmt = stmt.order_by(*_newest_first(Story))
        return list(self.session.execute(stmt).scalars())

    def list_orphan_stories(self, project_id: int):
        stmt = (
            select(Story)
            .where(Story.project_id == project_id, Story.epic_id.is_(None))
            .order_by(*_newest_first(Story))
        )
        return list(self.session.execute(stmt).scalars())

    def update_story(self, story_id: int, patch, agent_identifier=None, modified_by=None) -> Story:
        story = self.get_story(story_id)
        changes = patch.changes()
        if "title" in changes:
            _require_text(changes["title"], "title", "Story")
        if "priority" in changes:
            _require_choice(changes["priority"], PRIORITIES, "priority")
        if "points" in changes:
            _require_points(changes["points"])
        if "epic_id" in changes:
            self._check_epic_for_story(story.project_id, changes["epic_id"])
        self._apply_work_item_patch("story", story, changes, agent_identifier, modified_by)
        self._flush("Story")
        return story

    def delete_story(self, story_id: int):
        self._delete(self.get_story(story_id), "Story")

    # ── Tasks ────────────────────────────────────────────────────────────

    def create_task(
        self,
        story_id: int,
        title: str,
        description: str | None = None,
        status: str = "todo",
        task_type: str = "development",
        priority: str = "medium",
        points: int | None = None,
        assigned_to: str | None = None,
        agent_identifier: str | None = None,
        modified_by: str | None = None,
    ) -> Task:
        _require_text(title, "title", "Task")
        _require_choice(status, ITEM_STATUSES, "status")
        _require_choice(task_type, TASK_TYPES, "task_type")
        _require_choice(priority, PRIORITIES, "priority")
        _require_points(points)
        if not self.entity_exists("story", story_id):
            raise ReferentialIntegrityError("Task", "story_id", story_id)
        task = Task(
            story_id=story_id,
            title=title,
            description=description,
            status=status,
            task_type=task_type,
            priority=priority,
            points=points,
            assigned_to=assigned_to,
            agent_identifier=agent_identifier,
            last_modified_by=modified_by or agent_identifier,
        )
        return self._add(task, "Task")

    def get_task(self, task_id: int) -> Task:
        return self._get(Task, task_id)

    def list_tasks(self, project_id: int, filters=None):
        # Tasks have no project column; scope through the owning story
        stmt = select(Task).join(Story, Task.story_id == Story.id).where(Story.project_id == project_id)
        stmt = _apply_filter(stmt, Task, filters).order_by(*_newest_first(Task))
        return list(self.session.execute(stmt).scalars())

    def update_task(self, task_id: int, patch, agent_identifier=None, modified_by=None) -> Task:
        task = self.get_task(task_id)
        changes = patch.changes()
        if "title" in changes:
            _require_text(changes["title"], "title", "Task")
        if "task_type" in changes:
            _require_choice(changes["task_type"], TASK_TYPES, "task_type")
        if "priority" in changes:
            _require_choice(changes["priority"], PRIORITIES, "priority")
        if "points" in changes:
            _require_points(changes["points"])
        self._apply_work_item_patch("task", task, changes, agent_identifier, modified_by)
        self._flush("Task")
        return task

    def delete_task(self, task_id: int):
        self._delete(self.get_task(task_id), "Task")

    # ── Bugs ─────────────────────────────────────────────────────────────

    def _check_story_for_bug(self, project_id, story_id):
        if story_id is None:
            return
        story_project = self.entity_project_id("story", story_id)
        if story_project is None:
            raise ReferentialIntegrityError("Bug", "story_id", story_id)
        if story_project != project_id:
            raise ReferentialIntegrityError(
                "Bug", "story_id", story_id, reason="story belongs to a different project",
            )

    def create_bug(
        self,
        project_id: int,
        title: str,
        story_id: int | None = None,
        description: str | None = None,
        severity: str = "major",
        error_message: str | None = None,
        status: str = "todo",
        priority: str = "medium",
        points: int | None = None,
        assigned_to: str | None = None,
        agent_identifier: str | None = None,
        modified_by: str | None = None,
    ) -> Bug:
        _require_text(title, "title", "Bug")
        _require_choice(severity, BUG_SEVERITIES, "severity")
        _require_choice(status, ITEM_STATUSES, "status")
        _require_choice(priority, PRIORITIES, "priority")
        _require_points(points)
        if not self.entity_exists("project", project_id):
            raise ReferentialIntegrityError("Bug", "project_id", project_id)
        self._check_story_for_bug(project_id, story_id)
        bug = Bug(
            project_id=project_id,
            story_id=story_id,
            title=title,
            description=description,
            severity=severity,
            error_message=error_message,
            status=status,
            priority=priority,
            points=points,
            assigned_to=assigned_to,
            agent_identifier=agent_identifier,
            last_modified_by=modified_by or agent_identifier,
        )
        return self._add(bug, "Bug")

    def get_bug(self, bug_id: int) -> Bug:
        return self._get(Bug, bug_id)

    def list_bugs(self, project_id: int, filters=None):
        stmt = select(Bug).where(Bug.project_id == project_id)
        stmt = _apply_filter(stmt, Bug, filters).order_by(*_newest_first(Bug))
        return list(self.session.execute(stmt).scalars())

    def update_bug(self, bug_id: int, patch, agent_identifier=None, modified_by=None) -> Bug:
        bug = self.get_bug(bug_id)
        changes = patch.changes()
        if "title" in changes:
            _require_text(changes["title"], "title", "Bug")
        if "severity" in changes:
            _require_choice(changes["severity"], BUG_SEVERITIES, "severity")
        if "priority" in changes:
            _require_choice(changes["priority"], PRIORITIES, "priority")
        if "points" in changes:
            _require_points(changes["points"])
        if "story_id" in changes:
            self._check_story_for_bug(bug.project_id, changes["story_id"])
        self._apply_work_item_patch("bug", bug, changes, agent_identifier, modified_by)
        self._flush("Bug")
        return bug

    def delete_bug(self, bug_id: int):
        self._delete(self.get_bug(bug_id), "Bug")

    # ── Dependencies ─────────────────────────────────────────────────────

    def create_dependency(self, story_id: int, depends_on_story_id: int, dependency_type: str = "blocks") -> Dependency:
        """Insert a story edge. Cycle checks are the graph validator's job."""
        _require_choice(dependency_type, DEPENDENCY_TYPES, "dependency_type")
        source_project = self.entity_project_id("story", story_id)
        if source_project is None:
            raise ReferentialIntegrityError("Dependency", "story_id", story_id)
        target_project = self.entity_project_id("story", depends_on_story_id)
        if target_project is None:
            raise ReferentialIntegrityError("Dependency", "depends_on_story_id", depends_on_story_id)
        if source_project != target_project:
            raise ReferentialIntegrityError(
                "Dependency", "depends_on_story_id", depends_on_story_id,
                reason="stories belong to different projects",
            )
        duplicate = self.session.execute(
            select(Dependency.id).where(
                Dependency.story_id == story_id,
                Dependency.depends_on_story_id == depends_on_story_id,
            )
        ).first()
        if duplicate is not None:
            raise ConflictError("Dependency", "(story_id, depends_on_story_id)", (story_id, depends_on_story_id))
        dependency = Dependency(
            story_id=story_id,
            depends_on_story_id=depends_on_story_id,
            dependency_type=dependency_type,
        )
        return self._add(dependency, "Dependency")

    def get_dependency(self, dependency_id: int) -> Dependency:
        return self._get(Dependency, dependency_id)

    def list_dependencies(self, story_id: int):
        """Edges touching *story_id* in either direction."""
        stmt = (
            select(Dependency)
            .where(or_(Dependency.story_id == story_id, Dependency.depends_on_story_id == story_id))
            .order_by(*_newest_first(Dependency))
        )
        return list(self.session.execute(stmt).scalars())

    def list_project_dependencies(self, project_id: int):
        stmt = (
            select(Dependency)
            .join(Story, Dependency.story_id == Story.id)
            .where(Story.project_id == project_id)
            .order_by(*_newest_first(Dependency))
        )
        return list(self.session.execute(stmt).scalars())

    def delete_dependency(self, dependency_id: int):
        self._delete(self.get_dependency(dependency_id), "Dependency")

    # ── Relationships ────────────────────────────────────────────────────

    def _check_endpoint(self, project_id, entity_type, entity_id, field):
        _require_choice(entity_type, ENTITY_TYPES, f"{field}_type")
        owner = self.entity_project_id(entity_type, entity_id)
        if owner is None:
            raise ReferentialIntegrityError("Relationship", f"{field}_id", entity_id)
        if owner != project_id:
            raise ReferentialIntegrityError(
                "Relationship", f"{field}_id", entity_id,
                reason=f"{entity_type} belongs to a different project",
            )

    def create_relationship(
        self,
        project_id: int,
        source_type: str,
        source_id: int,
        target_type: str,
        target_id: int,
        relationship_type: str,
        description: str | None = None,
        agent_identifier: str | None = None,
    ) -> Relationship:
        _require_choice(relationship_type, RELATIONSHIP_TYPES, "relationship_type")
        self._check_endpoint(project_id, source_type, source_id, "source")
        self._check_endpoint(project_id, target_type, target_id, "target")
        duplicate = self.session.execute(
            select(Relationship.id).where(
                Relationship.source_type == source_type,
                Relationship.source_id == source_id,
                Relationship.target_type == target_type,
                Relationship.target_id == target_id,
                Relationship.relationship_type == relationship_type,
            )
        ).first()
        if duplicate is not None:
            raise ConflictError(
                "Relationship", "edge",
                f"{source_type}#{source_id} -{relationship_type}-> {target_type}#{target_id}",
            )
        relationship = Relationship(
            project_id=project_id,
            source_type=source_type,
            source_id=source_id,
            target_type=target_type,
            target_id=target_id,
            relationship_type=relationship_type,
            description=description,
            agent_identifier=agent_identifier,
        )
        return self._add(relationship, "Relationship")

    def get_relationship(self, relationship_id: int) -> Relationship:
        return self._get(Relationship, relationship_id)

    def list_relationships(self, project_id: int, filters=None):
        stmt = select(Relationship).where(Relationship.project_id == project_id)
        stmt = _apply_filter(stmt, Relationship, filters).order_by(*_newest_first(Relationship))
        return list(self.session.execute(stmt).scalars())

    def list_relationships_for_entity(self, project_id: int, entity_type: str, entity_id: int):
        """Relationships where the entity is either endpoint."""
        stmt = (
            select(Relationship)
            .where(Relationship.project_id == project_id)
            .where(
                or_(
                    (Relationship.source_type == entity_type) & (Relationship.source_id == entity_id),
                    (Relationship.target_type == entity_type) & (Relationship.target_id == entity_id),
                )
            )
            .order_by(*_newest_first(Relationship))
        )
        return list(self.session.execute(stmt).scalars())

    def update_relationship(self, relationship_id: int, patch) -> Relationship:
        relationship = self.get_relationship(relationship_id)
        for field, value in patch.changes().items():
            setattr(relationship, field, value)
        relationship.updated_at = utcnow()
        self._flush("Relationship")
        return relationship

    def delete_relationship(self, relationship_id: int):
        self._delete(self.get_relationship(relationship_id), "Relationship")

    # ── Notes ────────────────────────────────────────────────────────────

    def create_note(
        self,
        project_id: int,
        parent_type: str,
        parent_id: int,
        content: str,
        agent_identifier: str | None = None,
        author_name: str | None = None,
    ) -> Note:
        _require_text(content, "content", "Note")
        _require_choice(parent_type, ENTITY_TYPES, "parent_type")
        owner = self.entity_project_id(parent_type, parent_id)
        if owner is None:
            raise ReferentialIntegrityError("Note", "parent_id", parent_id)
        if owner != project_id:
            raise ReferentialIntegrityError(
                "Note", "parent_id", parent_id, reason=f"{parent_type} belongs to a different project",
            )
        note = Note(
            project_id=project_id,
            parent_type=parent_type,
            parent_id=parent_id,
            content=content,
            agent_identifier=agent_identifier,
            author_name=author_name or agent_identifier,
        )
        return self._add(note, "Note")

    def get_note(self, note_id: int) -> Note:
        return self._get(Note, note_id)

    def list_notes(self, project_id: int, filters=None):
        stmt = select(Note).where(Note.project_id == project_id)
        stmt = _apply_filter(stmt, Note, filters).order_by(*_newest_first(Note))
        return list(self.session.execute(stmt).scalars())

    def update_note(self, note_id: int, patch, agent_identifier: str | None = None) -> Note:
        note = self.get_note(note_id)
        changes = patch.changes()
        if "content" in changes:
            _require_text(changes["content"], "content", "Note")
        for field, value in changes.items():
            setattr(note, field, value)
        if agent_identifier:
            note.agent_identifier = agent_identifier
            if "author_name" not in changes:
                note.author_name = agent_identifier
        note.updated_at = utcnow()
        self._flush("Note")
        return note

    def delete_note(self, note_id: int):
        self._delete(self.get_note(note_id), "Note")

    # ── Sprints ──────────────────────────────────────────────────────────

    def create_sprint(
        self,
        project_id: int,
        name: str,
        start_date: date,
        end_date: date,
        goal: str | None = None,
        capacity_points: int | None = None,
    ) -> Sprint:
        _require_text(name, "name", "Sprint")
        _require_date_range(start_date, end_date)
        _require_points(capacity_points, "capacity_points")
        if not self.entity_exists("project", project_id):
            raise ReferentialIntegrityError("Sprint", "project_id", project_id)
        sprint = Sprint(
            project_id=project_id,
            name=name,
            goal=goal,
            start_date=start_date,
            end_date=end_date,
            capacity_points=capacity_points,
            status="planning",
        )
        return self._add(sprint, "Sprint")

    def get_sprint(self, sprint_id: int) -> Sprint:
        return self._get(Sprint, sprint_id)

    def list_sprints(self, project_id: int, filters=None):
        stmt = select(Sprint).where(Sprint.project_id == project_id)
        stmt = _apply_filter(stmt, Sprint, filters).order_by(*_newest_first(Sprint))
        return list(self.session.execute(stmt).scalars())

    def list_completed_sprints(self, project_id: int, limit: int):
        """Most recently finished first (end_date desc)."""
        stmt = (
            select(Sprint)
            .where(Sprint.project_id == project_id, Sprint.status == "completed")
            .order_by(Sprint.end_date.desc(), Sprint.id.desc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def update_sprint(self, sprint_id: int, patch) -> Sprint:
        sprint = self.get_sprint(sprint_id)
        changes = patch.changes()
        if "name" in changes:
            _require_text(changes["name"], "name", "Sprint")
        if "capacity_points" in changes:
            _require_points(changes["capacity_points"], "capacity_points")
        _require_date_range(changes.get("start_date", sprint.start_date), changes.get("end_date", sprint.end_date))
        for field, value in changes.items():
            setattr(sprint, field, value)
        sprint.updated_at = utcnow()
        self._flush("Sprint")
        return sprint

    def set_sprint_status(self, sprint: Sprint, status: str, **stamps) -> Sprint:
        _require_choice(status, SPRINT_STATUSES, "status")
        sprint.status = status
        for field, value in stamps.items():
            setattr(sprint, field, value)
        sprint.updated_at = utcnow()
        self._flush("Sprint")
        return sprint

    def delete_sprint(self, sprint_id: int):
        self._delete(self.get_sprint(sprint_id), "Sprint")

    # ── Sprint membership ────────────────────────────────────────────────

    @staticmethod
    def _membership_column(item_type):
        _require_choice(item_type, {"story", "bug"}, "item_type")
        return SprintMembership.story_id if item_type == "story" else SprintMembership.bug_id

    def find_membership(self, sprint_id: int, item_type: str, item_id: int) -> SprintMembership | None:
        column = self._membership_column(item_type)
        return self.session.execute(
            select(SprintMembership).where(SprintMembership.sprint_id == sprint_id, column == item_id)
        ).scalar_one_or_none()

    def open_sprint_for_item(self, item_type: str, item_id: int) -> Sprint | None:
        """Planning/active sprint that currently holds the item, if any."""
        column = self._membership_column(item_type)
        stmt = (
            select(Sprint)
            .join(SprintMembership, SprintMembership.sprint_id == Sprint.id)
            .where(
                column == item_id,
                SprintMembership.removed_at.is_(None),
                Sprint.status.in_(OPEN_SPRINT_STATUSES),
            )
        )
        return self.session.execute(stmt).scalars().first()

    def add_membership(self, sprint_id: int, item_type: str, item_id: int, added_by: str | None = None) -> SprintMembership:
        """Insert the membership, or reactivate a previously removed one."""
        membership = self.find_membership(sprint_id, item_type, item_id)
        now = utcnow()
        if membership is None:
            membership = SprintMembership(
                sprint_id=sprint_id,
                story_id=item_id if item_type == "story" else None,
                bug_id=item_id if item_type == "bug" else None,
                added_at=now,
                added_by=added_by,
            )
            return self._add(membership, "SprintMembership")
        if membership.removed_at is None:
            raise ConflictError("SprintMembership", f"{item_type}_id", item_id)
        membership.added_at = now
        membership.added_by = added_by
        membership.removed_at = None
        membership.removed_by = None
        membership.updated_at = now
        self._flush("SprintMembership")
        return membership

    def remove_membership(self, membership: SprintMembership, removed_by: str | None = None) -> SprintMembership:
        membership.removed_at = utcnow()
        membership.removed_by = removed_by
        membership.updated_at = membership.removed_at
        self._flush("SprintMembership")
        return membership

    def list_memberships(self, sprint_id: int, include_removed: bool = False):
        stmt = select(SprintMembership).where(SprintMembership.sprint_id == sprint_id)
        if not include_removed:
            stmt = stmt.where(SprintMembership.removed_at.is_(None))
        stmt = stmt.order_by(SprintMembership.added_at, SprintMembership.id)
        return list(self.session.execute(stmt).scalars())

    def sprint_members(self, sprint_id: int, include_removed: bool = False):
        """[(membership, story-or-bug)] for a sprint, items loaded in two queries."""
        memberships = self.list_memberships(sprint_id, include_removed=include_removed)
        story_ids = [m.story_id for m in memberships if m.story_id is not None]
        bug_ids = [m.bug_id for m in memberships if m.bug_id is not None]
        stories = {}
        bugs = {}
        if story_ids:
            stories = {s.id: s for s in self.session.execute(select(Story).where(Story.id.in_(story_ids))).scalars()}
        if bug_ids:
            bugs = {b.id: b for b in self.session.execute(select(Bug).where(Bug.id.in_(bug_ids))).scalars()}
        members = []
        for membership in memberships:
            item = stories.get(membership.story_id) if membership.story_id is not None else bugs.get(membership.bug_id)
            if item is not None:
                members.append((membership, item))
        return members

    # ── Sprint snapshots ─────────────────────────────────────────────────

    def create_snapshot(
        self,
        sprint_id: int,
        snapshot_date: date,
        remaining_points: int,
        completed_points: int,
        added_points: int = 0,
        removed_points: int = 0,
    ) -> SprintSnapshot:
        snapshot = SprintSnapshot(
            sprint_id=sprint_id,
            snapshot_date=snapshot_date,
            remaining_points=remaining_points,
            completed_points=completed_points,
            added_points=added_points,
            removed_points=removed_points,
        )
        return self._add(snapshot, "SprintSnapshot")

    def list_snapshots(self, sprint_id: int):
        """Oldest first, for plotting against the ideal curve."""
        stmt = (
            select(SprintSnapshot)
            .where(SprintSnapshot.sprint_id == sprint_id)
            .order_by(SprintSnapshot.snapshot_date, SprintSnapshot.id)
        )
        return list(self.session.execute(stmt).scalars())
