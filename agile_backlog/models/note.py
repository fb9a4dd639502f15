"""
Agile Backlog Engine
Note model: free-text comments attached to any entity by (parent_type, parent_id).
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from agile_backlog.models import Base, iso, utcnow


class Note(Base):
    __tablename__ = "notes"
    __table_args__ = (
        Index("ix_notes_parent", "parent_type", "parent_id"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    parent_type = Column(String(20), nullable=False, comment="project | epic | story | task | bug")
    parent_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    agent_identifier = Column(String(200), nullable=True)
    author_name = Column(String(200), nullable=True, comment="Display name; defaults to the agent")

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "parent_type": self.parent_type,
            "parent_id": self.parent_id,
            "content": self.content,
            "agent_identifier": self.agent_identifier,
            "author_name": self.author_name,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Note {self.id} on {self.parent_type}#{self.parent_id}>"
