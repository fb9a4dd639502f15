"""
Agile Backlog Engine
Graph edge models.

Models:
    - Dependency: directed story → story edge (blocks / blocked_by)
    - Relationship: typed edge between any two (type, id) entity references

Both tables feed the acyclicity check in services/dependency_graph.py.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from agile_backlog.models import Base, iso, utcnow

DEPENDENCY_TYPES = {"blocks", "blocked_by"}

ENTITY_TYPES = {"project", "epic", "story", "task", "bug"}

RELATIONSHIP_TYPES = {"blocks", "blocked_by", "related_to", "cloned_from", "depends_on"}

# Types that impose an ordering; related_to / cloned_from never close a cycle
GRAPH_RELATIONSHIP_TYPES = {"blocks", "blocked_by", "depends_on"}


class Dependency(Base):
    """``story_id`` depends on ``depends_on_story_id``. Unique per ordered pair."""

    __tablename__ = "dependencies"
    __table_args__ = (
        UniqueConstraint("story_id", "depends_on_story_id", name="uq_dependencies_pair"),
        CheckConstraint("story_id <> depends_on_story_id", name="no_self_loop"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    depends_on_story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    dependency_type = Column(String(20), nullable=False, default="blocks", comment="blocks | blocked_by")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "story_id": self.story_id,
            "depends_on_story_id": self.depends_on_story_id,
            "dependency_type": self.dependency_type,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Dependency {self.story_id} -> {self.depends_on_story_id} ({self.dependency_type})>"


class Relationship(Base):
    """
    Generalised edge. Endpoints are polymorphic ``(type, id)`` pairs, so
    there is no FK on them; the store verifies both ends exist inside
    ``project_id`` before insert.
    """

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint(
            "source_type", "source_id", "target_type", "target_id", "relationship_type",
            name="uq_relationships_edge",
        ),
        Index("ix_relationships_source", "source_type", "source_id"),
        Index("ix_relationships_target", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    source_type = Column(String(20), nullable=False)
    source_id = Column(Integer, nullable=False)
    target_type = Column(String(20), nullable=False)
    target_id = Column(Integer, nullable=False)
    relationship_type = Column(
        String(20), nullable=False,
        comment="blocks | blocked_by | related_to | cloned_from | depends_on",
    )
    description = Column(Text, nullable=True)
    agent_identifier = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def source(self):
        return (self.source_type, self.source_id)

    @property
    def target(self):
        return (self.target_type, self.target_id)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "relationship_type": self.relationship_type,
            "description": self.description,
            "agent_identifier": self.agent_identifier,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return (
            f"<Relationship {self.source_type}#{self.source_id} "
            f"-{self.relationship_type}-> {self.target_type}#{self.target_id}>"
        )
