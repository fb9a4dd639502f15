"""
Agile Backlog Engine
ORM models.

All tables hang off one declarative ``Base``; importing this package
registers every model on ``Base.metadata``.
"""

from datetime import datetime, timezone

from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base

# Deterministic constraint names so alembic revisions can drop what they create
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

Base = declarative_base(metadata=MetaData(naming_convention=NAMING_CONVENTION))


def utcnow():
    return datetime.now(timezone.utc)


def iso(value):
    """ISO-8601 string for a date/datetime column, None passthrough."""
    return value.isoformat() if value else None


from agile_backlog.models.project import Project  # noqa: E402
from agile_backlog.models.backlog import Bug, Epic, StatusTransition, Story, Task  # noqa: E402
from agile_backlog.models.graph import Dependency, Relationship  # noqa: E402
from agile_backlog.models.note import Note  # noqa: E402
from agile_backlog.models.sprint import Sprint, SprintMembership, SprintSnapshot  # noqa: E402
from agile_backlog.models.audit import SecurityLog  # noqa: E402

__all__ = [
    "Base",
    "Bug",
    "Dependency",
    "Epic",
    "Note",
    "Project",
    "Relationship",
    "SecurityLog",
    "Sprint",
    "SprintMembership",
    "SprintSnapshot",
    "StatusTransition",
    "Story",
    "Task",
    "iso",
    "utcnow",
]
