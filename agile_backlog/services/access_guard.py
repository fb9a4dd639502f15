"""
Access isolation guard.

Every scoped operation starts here:

    ctx = guard.resolve_context("my-repo", "agent-7")
    guard.check_access(ctx, "story", story_id)

``resolve_context`` turns a caller-supplied project identifier into a
ProjectContext; an unknown identifier is audited as
``unauthorized_access`` and fails with PROJECT_NOT_REGISTERED.

``check_access`` resolves the owning project of a referenced entity and
compares it with the context. A mismatch is audited as
``project_violation`` and fails with PROJECT_ACCESS_DENIED. An id that
does not exist at all is not audited: reads raise NotFoundError, while
``check_reference`` (foreign keys named by a write) raises
ReferentialIntegrityError.

List operations never come through check_access: the store filters them
by project_id in SQL, so foreign rows are never loaded.
"""

import logging
from dataclasses import dataclass

from agile_backlog.core.exceptions import (
    NotFoundError,
    ProjectAccessDeniedError,
    ProjectNotRegisteredError,
    ReferentialIntegrityError,
    ValidationError,
)
from agile_backlog.models.graph import ENTITY_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectContext:
    """Resolved scope of one call: project plus caller identity."""

    project_id: int
    project_name: str
    project_identifier: str
    agent_identifier: str
    acting_as: str | None = None

    @property
    def modified_by(self) -> str:
        """Identity stamped into last_modified_by; the acting-as override wins."""
        return self.acting_as or self.agent_identifier

    def log_extra(self, **extra):
        return {
            "project_id": self.project_id,
            "project_identifier": self.project_identifier,
            "agent_identifier": self.agent_identifier,
            **extra,
        }


class AccessGuard:
    def __init__(self, store, audit, default_agent: str = "system"):
        self.store = store
        self.audit = audit
        self.default_agent = default_agent

    def resolve_context(
        self,
        project_identifier: str,
        agent_identifier: str | None = None,
        acting_as: str | None = None,
    ) -> ProjectContext:
        agent = agent_identifier or self.default_agent
        project = self.store.get_project_by_identifier(project_identifier) if project_identifier else None
        if project is None:
            self.audit.record(
                event_type="unauthorized_access",
                message=f"Attempted to access unregistered project: {project_identifier}",
                project_id=None,
                agent_identifier=agent,
                attempted_path=project_identifier,
                security_code=ProjectNotRegisteredError.code,
            )
            raise ProjectNotRegisteredError(project_identifier)

        ctx = ProjectContext(
            project_id=project.id,
            project_name=project.name,
            project_identifier=project.identifier,
            agent_identifier=agent,
            acting_as=acting_as,
        )
        logger.debug("Resolved project context", extra=ctx.log_extra())
        return ctx

    def check_access(self, ctx: ProjectContext, entity_type: str, entity_id: int) -> None:
        """Raise unless *entity_type* #*entity_id* belongs to ``ctx.project_id``."""
        if not self._scoped_type(entity_type):
            return
        actual = self.store.entity_project_id(entity_type, entity_id)
        if actual is None:
            raise NotFoundError(resource=entity_type.title(), resource_id=entity_id)
        self._enforce(ctx, entity_type, entity_id, actual)

    def check_reference(self, ctx: ProjectContext, entity_type: str, entity_id, resource: str, field: str) -> None:
        """check_access for a foreign key a write is about to store.

        None is skipped (an explicit clear). A missing target fails as
        ``resource.field`` not referencing an existing record.
        """
        if entity_id is None or not self._scoped_type(entity_type):
            return
        actual = self.store.entity_project_id(entity_type, entity_id)
        if actual is None:
            raise ReferentialIntegrityError(resource, field, entity_id)
        self._enforce(ctx, entity_type, entity_id, actual)

    @staticmethod
    def _scoped_type(entity_type):
        if entity_type not in ENTITY_TYPES:
            raise ValidationError(f"Unknown entity type: {entity_type!r}", details={"entity_type": entity_type})
        # A project does not belong to another project
        return entity_type != "project"

    def check_record(self, ctx: ProjectContext, record_type: str, record_id: int, owner_project_id: int) -> None:
        """Same rule for rows outside the entity kinds (sprint, note, relationship, dependency)."""
        self._enforce(ctx, record_type, record_id, owner_project_id)

    def _enforce(self, ctx, entity_type, entity_id, actual):
        if actual == ctx.project_id:
            return

        self.audit.record(
            event_type="project_violation",
            message=(
                f"Attempted to access {entity_type} #{entity_id} from project #{ctx.project_id}, "
                f"but it belongs to project #{actual}"
            ),
            project_id=ctx.project_id,
            agent_identifier=ctx.agent_identifier,
            attempted_path=ctx.project_identifier,
            entity_type=entity_type,
            entity_id=entity_id,
            security_code=ProjectAccessDeniedError.code,
        )
        raise ProjectAccessDeniedError(entity_type, entity_id, ctx.project_name)

    def check_all(self, ctx: ProjectContext, refs) -> None:
        """check_access over an iterable of (entity_type, entity_id); None ids are skipped."""
        for entity_type, entity_id in refs:
            if entity_id is not None:
                self.check_access(ctx, entity_type, entity_id)
