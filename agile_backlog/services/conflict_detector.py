"""
Concurrent-edit conflict detection.

Advisory only. The stored ``last_modified_by`` is read before an update
and compared with the identity about to write. A difference is audited
as ``conflict_detected`` and reported back as a flag, but the write
always goes ahead. The facade reads the previous modifier before the
update and records the event only once the update has succeeded, so a
rejected write leaves no conflict row. Reading and writing are separate
statements, so two writers can still interleave; that race is accepted.
"""

import logging

from agile_backlog.core.exceptions import ValidationError
from agile_backlog.services.store import WORK_ITEM_MODELS

logger = logging.getLogger(__name__)

CONFLICT_WARNING = "This {entity_type} was recently modified by another agent"


class ConflictDetector:
    def __init__(self, store, audit):
        self.store = store
        self.audit = audit

    def conflicting_modifier(self, entity_type: str, entity_id: int, caller: str) -> str | None:
        """Stored ``last_modified_by`` when it names someone other than *caller*."""
        if entity_type not in WORK_ITEM_MODELS:
            raise ValidationError(
                f"Conflict detection is not supported for {entity_type!r}",
                details={"entity_type": entity_type},
            )
        previous = self.store.get_work_item(entity_type, entity_id).last_modified_by
        if not previous or previous == caller:
            return None
        return previous

    def record_conflict(self, entity_type, entity_id, previous, caller, project_id=None):
        self.audit.record(
            event_type="conflict_detected",
            message=(
                f"Concurrent modification detected: {entity_type} #{entity_id} was last modified by "
                f"'{previous}', now being modified by '{caller}'"
            ),
            project_id=project_id,
            agent_identifier=caller,
            entity_type=entity_type,
            entity_id=entity_id,
        )

    def detect_conflict(self, entity_type: str, entity_id: int, caller: str, project_id: int | None = None) -> bool:
        previous = self.conflicting_modifier(entity_type, entity_id, caller)
        if previous is None:
            return False
        self.record_conflict(entity_type, entity_id, previous, caller, project_id)
        return True

    @staticmethod
    def warning_for(entity_type: str) -> str:
        return CONFLICT_WARNING.format(entity_type=entity_type)
