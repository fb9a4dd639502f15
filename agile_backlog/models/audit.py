"""
Agile Backlog Engine
Security audit model.

Models:
    - SecurityLog: immutable, append-only record of isolation violations
      and concurrent-edit conflicts.
"""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text

from agile_backlog.models import Base, iso, utcnow

SECURITY_EVENT_TYPES = {"unauthorized_access", "project_violation", "conflict_detected"}


class SecurityLog(Base):
    """
    Append-only security trail.

    Rows are written through services/audit_service.py only and are never
    updated; ``created_at`` is the single timestamp. ``project_id`` is set
    to NULL if the project is later deleted so the trail survives.
    """

    __tablename__ = "security_logs"
    __table_args__ = (
        Index("ix_security_logs_event_created", "event_type", "created_at"),
        Index("ix_security_logs_project_created", "project_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    event_type = Column(
        String(40), nullable=False,
        comment="unauthorized_access | project_violation | conflict_detected",
    )
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    agent_identifier = Column(String(200), nullable=True)
    attempted_path = Column(String(500), nullable=True, comment="Project identifier or entity path that was requested")
    entity_type = Column(String(20), nullable=True)
    entity_id = Column(Integer, nullable=True)
    message = Column(Text, nullable=False)

    # Immutable timestamp, no updated_at
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "event_type": self.event_type,
            "project_id": self.project_id,
            "agent_identifier": self.agent_identifier,
            "attempted_path": self.attempted_path,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "message": self.message,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<SecurityLog {self.id}: {self.event_type}>"
