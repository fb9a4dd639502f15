"""
Security audit log: append-only sink for isolation violations and
concurrent-edit conflicts.

Unlike the entity store, ``record`` commits straight away. A denied call
rolls back its own unit of work, and the event describing the denial
must survive that rollback. Callers therefore record before they write
anything of their own.
"""

import logging

from sqlalchemy import func, select

from agile_backlog.core.exceptions import ValidationError
from agile_backlog.models import SecurityLog
from agile_backlog.models.audit import SECURITY_EVENT_TYPES

logger = logging.getLogger(__name__)


class SecurityAuditLog:
    def __init__(self, session, default_limit: int = 100):
        self.session = session
        self.default_limit = default_limit

    def record(
        self,
        *,
        event_type: str,
        message: str,
        project_id: int | None = None,
        agent_identifier: str | None = None,
        attempted_path: str | None = None,
        entity_type: str | None = None,
        entity_id: int | None = None,
        security_code: str | None = None,
    ) -> SecurityLog:
        """Append one security event and commit it. Returns the stored row.

        *security_code* is the error code of the denial that produced the
        event; it goes to the log line only, not the stored row.
        """
        if event_type not in SECURITY_EVENT_TYPES:
            raise ValidationError(f"Unknown security event type: {event_type!r}", details={"event_type": event_type})

        entry = SecurityLog(
            event_type=event_type,
            project_id=project_id,
            agent_identifier=agent_identifier,
            attempted_path=attempted_path,
            entity_type=entity_type,
            entity_id=entity_id,
            message=message,
        )
        self.session.add(entry)
        self.session.commit()

        logger.warning(
            "Security event %s: %s", event_type, message,
            extra={
                "event_type": event_type,
                "project_id": project_id,
                "agent_identifier": agent_identifier,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "security_code": security_code,
            },
        )
        return entry

    def list_events(
        self,
        *,
        limit: int | None = None,
        event_type: str | None = None,
        project_id: int | None = None,
    ) -> list[SecurityLog]:
        """Newest first, capped at *limit* (default_limit when omitted)."""
        stmt = select(SecurityLog)
        if event_type is not None:
            stmt = stmt.where(SecurityLog.event_type == event_type)
        if project_id is not None:
            stmt = stmt.where(SecurityLog.project_id == project_id)
        stmt = stmt.order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc())
        stmt = stmt.limit(limit if limit is not None else self.default_limit)
        return list(self.session.execute(stmt).scalars())

    def count(self, *, event_type: str | None = None, project_id: int | None = None) -> int:
        stmt = select(func.count(SecurityLog.id))
        if event_type is not None:
            stmt = stmt.where(SecurityLog.event_type == event_type)
        if project_id is not None:
            stmt = stmt.where(SecurityLog.project_id == project_id)
        return self.session.execute(stmt).scalar_one()
