"""
Agile Backlog Engine
Project model: the root of isolation.

Every scoped entity carries ``project_id`` with ON DELETE CASCADE, so
deleting a Project removes its whole backlog in one statement.
"""

from sqlalchemy import Column, DateTime, Integer, String, Text

from agile_backlog.models import Base, iso, utcnow


class Project(Base):
    """
    A registered codebase / workspace.

    ``identifier`` is the human-chosen slug callers pass on every scoped
    call; it is unique and never changes after registration.
    """

    __tablename__ = "projects"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    identifier = Column(String(200), nullable=False, unique=True, comment="Immutable caller-facing slug")
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    last_accessed_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow,
        comment="Bumped whenever the project is resolved by identifier",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "identifier": self.identifier,
            "name": self.name,
            "description": self.description,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "last_accessed_at": iso(self.last_accessed_at),
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.identifier}>"
