"""
Agile Backlog Engine
Backlog hierarchy models.

Models:
    - Epic: large body of work inside a project
    - Story: unit of deliverable work; always carries its own project_id
    - Task: implementation step under exactly one story
    - Bug: defect inside a project, optionally linked to a story
    - StatusTransition: allow-list of legal status changes per entity type
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import validates

from agile_backlog.core.exceptions import ValidationError
from agile_backlog.models import Base, iso, utcnow

# ── Shared constants ─────────────────────────────────────────────────────

ITEM_STATUSES = {"todo", "in_progress", "review", "done", "blocked"}

PRIORITIES = {"low", "medium", "high", "critical"}

TASK_TYPES = {"development", "testing", "documentation", "research", "design"}

BUG_SEVERITIES = {"critical", "major", "minor", "trivial"}

# Seeded into status_transitions by the 0001/0003 revisions
DEFAULT_TRANSITIONS = (
    ("todo", "in_progress"),
    ("in_progress", "review"),
    ("review", "done"),
    ("review", "in_progress"),
    ("in_progress", "blocked"),
    ("blocked", "in_progress"),
)


class _Attributed:
    """Columns shared by every status-bearing work item."""

    status = Column(String(30), nullable=False, default="todo", comment="todo | in_progress | review | done | blocked")
    assigned_to = Column(String(200), nullable=True)
    agent_identifier = Column(String(200), nullable=True, comment="Agent that created / last wrote the row")
    last_modified_by = Column(String(200), nullable=True, comment="Acting-as identity of the last writer")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def _attribution_dict(self):
        return {
            "status": self.status,
            "assigned_to": self.assigned_to,
            "agent_identifier": self.agent_identifier,
            "last_modified_by": self.last_modified_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Epic(_Attributed, Base):
    __tablename__ = "epics"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            **self._attribution_dict(),
        }

    def __repr__(self):
        return f"<Epic {self.id}: {self.title}>"


class Story(_Attributed, Base):
    """
    A story is bound to exactly one project for its whole life.

    ``project_id`` is required even for orphan stories (no epic), and it
    cannot be reassigned once set. Detaching from an epic sets
    ``epic_id`` to NULL but leaves the project binding untouched.
    """

    __tablename__ = "stories"
    __table_args__ = (
        CheckConstraint("points IS NULL OR points >= 0", name="points_nonnegative"),
        Index("ix_stories_project_status", "project_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    epic_id = Column(Integer, ForeignKey("epics.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    acceptance_criteria = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default="medium", comment="low | medium | high | critical")
    points = Column(Integer, nullable=True)

    @validates("project_id")
    def _freeze_project(self, key, value):
        if self.project_id is not None and value != self.project_id:
            raise ValidationError(
                "Story project_id is immutable",
                details={"project_id": f"{self.project_id} -> {value}"},
            )
        return value

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "epic_id": self.epic_id,
            "title": self.title,
            "description": self.description,
            "acceptance_criteria": self.acceptance_criteria,
            "priority": self.priority,
            "points": self.points,
            **self._attribution_dict(),
        }

    def __repr__(self):
        return f"<Story {self.id}: {self.title}>"


class Task(_Attributed, Base):
    __tablename__ = "tasks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    task_type = Column(
        String(30), nullable=False, default="development",
        comment="development | testing | documentation | research | design",
    )
    priority = Column(String(20), nullable=False, default="medium")
    points = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "story_id": self.story_id,
            "title": self.title,
            "description": self.description,
            "task_type": self.task_type,
            "priority": self.priority,
            "points": self.points,
            **self._attribution_dict(),
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title}>"


class Bug(_Attributed, Base):
    """
    Defect record. Carries its own project_id; ``story_id`` is optional
    and cleared when the story is deleted.
    """

    __tablename__ = "bugs"
    __table_args__ = (
        CheckConstraint("points IS NULL OR points >= 0", name="points_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="SET NULL"), nullable=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False, default="major", comment="critical | major | minor | trivial")
    error_message = Column(Text, nullable=True)
    priority = Column(String(20), nullable=False, default="medium")
    points = Column(Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "story_id": self.story_id,
            "title": self.title,
            "description": self.description,
            "severity": self.severity,
            "error_message": self.error_message,
            "priority": self.priority,
            "points": self.points,
            **self._attribution_dict(),
        }

    def __repr__(self):
        return f"<Bug {self.id}: {self.title}>"


class StatusTransition(Base):
    """Static allow-list row: ``entity_type`` may move ``from_status`` → ``to_status``."""

    __tablename__ = "status_transitions"
    __table_args__ = (
        UniqueConstraint("entity_type", "from_status", "to_status", name="uq_status_transitions_triple"),
    )

    id = Column(Integer, primary_key=True)
    entity_type = Column(String(20), nullable=False, comment="epic | story | task | bug")
    from_status = Column(String(30), nullable=False)
    to_status = Column(String(30), nullable=False)

    def to_dict(self):
        return {
            "entity_type": self.entity_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }
