"""
Sprint capacity, burndown and velocity engine, plus the sprint lifecycle.

State machine:
    planning ─start──▶ active ─complete──▶ completed
        └────cancel──▶ cancelled

    - start:    planning only; status flips, then the opening snapshot.
    - complete: active only; the closing snapshot is taken first, then the
                status flips and the completed points are stored as velocity.
    - delete:   planning only.
    Anything else raises InvalidTransitionError.

Capacity counts active memberships only; a story or bug without points
contributes 0.
"""

import logging
import math
from datetime import date, datetime, timezone

from agile_backlog.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from agile_backlog.models import utcnow
from agile_backlog.models.sprint import OPEN_SPRINT_STATUSES

logger = logging.getLogger(__name__)

SPRINT_ITEM_TYPES = {"story", "bug"}


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; freshly stamped ones are aware
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _points(item) -> int:
    return item.points or 0


def total_days(start_date, end_date) -> int:
    return math.ceil((end_date - start_date).total_seconds() / 86400)


def ideal_burndown(committed: int, start_date, end_date) -> list[float]:
    """Straight line from *committed* on day 0 to zero on the last day."""
    days = total_days(start_date, end_date)
    if days <= 0:
        return [float(committed)]
    per_day = committed / days
    return [max(0.0, committed - per_day * i) for i in range(days + 1)]


class SprintEngine:
    def __init__(self, store, velocity_window: int = 3):
        self.store = store
        self.velocity_window = velocity_window

    # ── Analytics ────────────────────────────────────────────────────────

    def calculate_capacity(self, sprint_id: int) -> dict:
        members = self.store.sprint_members(sprint_id)
        committed = sum(_points(item) for _, item in members)
        completed = sum(_points(item) for _, item in members if item.status == "done")
        return {"committed": committed, "completed": completed, "remaining": committed - completed}

    def ideal_burndown(self, sprint, committed: int | None = None) -> list[float]:
        if committed is None:
            committed = self.calculate_capacity(sprint.id)["committed"]
        return ideal_burndown(committed, sprint.start_date, sprint.end_date)

    def velocity(self, project_id: int, n: int | None = None) -> list[int]:
        """Completed points of the last *n* completed sprints, most recent first."""
        return [self.calculate_capacity(sprint.id)["completed"] for sprint in self._recent(project_id, n)]

    def _recent(self, project_id, n):
        window = self.velocity_window if n is None else n
        if window <= 0:
            return []
        return self.store.list_completed_sprints(project_id, window)

    def velocity_report(self, project_id: int, n: int | None = None) -> dict:
        sprints = self._recent(project_id, n)
        velocities = self.velocity(project_id, len(sprints))
        average = round(sum(velocities) / len(velocities), 1) if velocities else 0
        return {
            "sprint_count": len(sprints),
            "velocities": velocities,
            "average_velocity": average,
            "sprint_names": [sprint.name for sprint in sprints],
        }

    def scope_change(self, sprint) -> dict:
        """Points added / removed after the sprint started (0 before start)."""
        started_at = _as_utc(sprint.started_at)
        if started_at is None:
            return {"added": 0, "removed": 0}
        added = removed = 0
        for membership, item in self.store.sprint_members(sprint.id, include_removed=True):
            if membership.removed_at is None:
                if _as_utc(membership.added_at) > started_at:
                    added += _points(item)
            elif _as_utc(membership.removed_at) > started_at:
                removed += _points(item)
        return {"added": added, "removed": removed}

    def take_snapshot(self, sprint_id: int, snapshot_date: date | None = None):
        sprint = self.store.get_sprint(sprint_id)
        self._require_open(sprint, "snapshot")
        return self._snapshot(sprint, snapshot_date)

    def _snapshot(self, sprint, snapshot_date=None):
        capacity = self.calculate_capacity(sprint.id)
        change = self.scope_change(sprint)
        snapshot = self.store.create_snapshot(
            sprint.id,
            snapshot_date or date.today(),
            remaining_points=capacity["remaining"],
            completed_points=capacity["completed"],
            added_points=change["added"],
            removed_points=change["removed"],
        )
        logger.debug("Snapshot %s taken for sprint %s", snapshot.id, sprint.id)
        return snapshot

    def burndown(self, sprint_id: int) -> dict:
        sprint = self.store.get_sprint(sprint_id)
        capacity = self.calculate_capacity(sprint.id)
        return {
            "sprint": sprint.to_dict(),
            "capacity": capacity,
            "total_days": total_days(sprint.start_date, sprint.end_date),
            "ideal_burndown": self.ideal_burndown(sprint, capacity["committed"]),
            "snapshots": [s.to_dict() for s in self.store.list_snapshots(sprint.id)],
        }

    def completion_report(self, sprint_id: int) -> dict:
        sprint = self.store.get_sprint(sprint_id)
        members = self.store.sprint_members(sprint.id)
        total = len(members)
        done = sum(1 for _, item in members if item.status == "done")
        capacity = self.calculate_capacity(sprint.id)
        return {
            "sprint": sprint.to_dict(),
            "total_items": total,
            "completed_items": done,
            "incomplete_items": total - done,
            "completion_rate": round(done / total * 100) if total else 0,
            "committed_points": capacity["committed"],
            "completed_points": capacity["completed"],
            "velocity": sprint.velocity,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    @staticmethod
    def _require_open(sprint, operation):
        if sprint.status not in OPEN_SPRINT_STATUSES:
            logger.info("Sprint %s: %s rejected in status %s", sprint.id, operation, sprint.status)
            raise InvalidTransitionError(
                "Sprint", sprint.status, operation,
                message=f"Cannot {operation} sprint in '{sprint.status}' status",
            )

    def create_sprint(self, project_id, name, start_date, end_date, goal=None, capacity_points=None):
        sprint = self.store.create_sprint(
            project_id, name, start_date, end_date, goal=goal, capacity_points=capacity_points,
        )
        logger.info("Sprint %s created", sprint.id, extra={"project_id": project_id})
        return sprint

    def update_sprint(self, sprint_id: int, patch):
        sprint = self.store.get_sprint(sprint_id)
        self._require_open(sprint, "update")
        return self.store.update_sprint(sprint_id, patch)

    def start_sprint(self, sprint_id: int, snapshot_date: date | None = None):
        sprint = self.store.get_sprint(sprint_id)
        if sprint.status != "planning":
            logger.info("Sprint %s start rejected in status %s", sprint.id, sprint.status)
            raise InvalidTransitionError(
                "Sprint", sprint.status, "active",
                message=f"Sprint is already in '{sprint.status}' status",
            )
        self.store.set_sprint_status(sprint, "active", started_at=utcnow())
        snapshot = self._snapshot(sprint, snapshot_date)
        logger.info("Sprint %s started", sprint.id, extra={"project_id": sprint.project_id})
        return sprint, snapshot

    def complete_sprint(self, sprint_id: int, snapshot_date: date | None = None) -> dict:
        sprint = self.store.get_sprint(sprint_id)
        if sprint.status != "active":
            logger.info("Sprint %s complete rejected in status %s", sprint.id, sprint.status)
            raise InvalidTransitionError(
                "Sprint", sprint.status, "completed",
                message=f"Only active sprints can be completed. Current status: {sprint.status}",
            )
        snapshot = self._snapshot(sprint, snapshot_date)
        self.store.set_sprint_status(
            sprint, "completed", completed_at=utcnow(), velocity=snapshot.completed_points,
        )
        logger.info("Sprint %s completed", sprint.id, extra={"project_id": sprint.project_id})
        report = self.completion_report(sprint.id)
        report["final_snapshot"] = snapshot.to_dict()
        return report

    def cancel_sprint(self, sprint_id: int):
        sprint = self.store.get_sprint(sprint_id)
        if sprint.status != "planning":
            raise InvalidTransitionError(
                "Sprint", sprint.status, "cancelled",
                message=f"Only planning sprints can be cancelled. Current status: {sprint.status}",
            )
        self.store.set_sprint_status(sprint, "cancelled")
        logger.info("Sprint %s cancelled", sprint.id, extra={"project_id": sprint.project_id})
        return sprint

    def delete_sprint(self, sprint_id: int):
        sprint = self.store.get_sprint(sprint_id)
        if sprint.status != "planning":
            raise InvalidTransitionError(
                "Sprint", sprint.status, "delete",
                message=(
                    f"Cannot delete sprint in '{sprint.status}' status. "
                    "Only 'planning' sprints can be deleted."
                ),
            )
        self.store.delete_sprint(sprint_id)

    # ── Membership ───────────────────────────────────────────────────────

    def add_item(self, sprint_id: int, item_type: str, item_id: int, added_by: str | None = None):
        if item_type not in SPRINT_ITEM_TYPES:
            raise ValidationError(
                f"Only stories and bugs can be planned into a sprint, not {item_type!r}",
                details={"item_type": item_type},
            )
        sprint = self.store.get_sprint(sprint_id)
        self._require_open(sprint, f"add {item_type} to")
        item = self.store.get_work_item(item_type, item_id)
        if item.project_id != sprint.project_id:
            raise ReferentialIntegrityError(
                "SprintMembership", f"{item_type}_id", item_id,
                reason=f"{item_type} belongs to a different project than the sprint",
            )
        holder = self.store.open_sprint_for_item(item_type, item_id)
        if holder is not None:
            raise ConflictError("SprintMembership", f"{item_type}_id", item_id)
        membership = self.store.add_membership(sprint.id, item_type, item_id, added_by=added_by)
        logger.debug("%s %s added to sprint %s", item_type, item_id, sprint.id)
        return membership

    def remove_item(self, sprint_id: int, item_type: str, item_id: int, removed_by: str | None = None):
        sprint = self.store.get_sprint(sprint_id)
        self._require_open(sprint, f"remove {item_type} from")
        membership = self.store.find_membership(sprint.id, item_type, item_id)
        if membership is None or membership.removed_at is not None:
            raise NotFoundError(resource=f"Sprint {sprint.id} membership for {item_type}", resource_id=item_id)
        return self.store.remove_membership(membership, removed_by=removed_by)
