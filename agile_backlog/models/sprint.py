"""
Agile Backlog Engine
Sprint models.

Models:
    - Sprint: time-boxed iteration inside a project
    - SprintMembership: story or bug committed to a sprint (soft-removable)
    - SprintSnapshot: immutable point-in-time capacity record
"""

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from agile_backlog.models import Base, iso, utcnow

# planning → active → completed, or planning → cancelled
SPRINT_STATUSES = {"planning", "active", "completed", "cancelled"}

# Sprints whose membership is still open to change
OPEN_SPRINT_STATUSES = {"planning", "active"}


class Sprint(Base):
    """
    Iteration container. ``status`` only moves through the sprint engine;
    ``velocity`` is recorded when the sprint completes.
    """

    __tablename__ = "sprints"
    __table_args__ = (
        CheckConstraint("end_date > start_date", name="date_range"),
        CheckConstraint("capacity_points IS NULL OR capacity_points >= 0", name="capacity_nonnegative"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False, comment="e.g. Sprint 1")
    goal = Column(Text, nullable=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    capacity_points = Column(Integer, nullable=True, comment="Planned capacity in story points")
    status = Column(String(20), nullable=False, default="planning", comment="planning | active | completed | cancelled")
    velocity = Column(Integer, nullable=True, comment="Completed points, set at sprint close")
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "goal": self.goal,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "capacity_points": self.capacity_points,
            "status": self.status,
            "velocity": self.velocity,
            "started_at": iso(self.started_at),
            "completed_at": iso(self.completed_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Sprint {self.id}: {self.name}>"


class SprintMembership(Base):
    """
    Links one story or one bug to a sprint.

    Removal is soft (``removed_at``) so snapshots can report points that
    left the sprint after it started. Re-adding reactivates the same row.
    """

    __tablename__ = "sprint_memberships"
    __table_args__ = (
        CheckConstraint(
            "(story_id IS NOT NULL AND bug_id IS NULL) OR (story_id IS NULL AND bug_id IS NOT NULL)",
            name="exactly_one_item",
        ),
        UniqueConstraint("sprint_id", "story_id", name="uq_sprint_memberships_story"),
        UniqueConstraint("sprint_id", "bug_id", name="uq_sprint_memberships_bug"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True)
    sprint_id = Column(Integer, ForeignKey("sprints.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=True, index=True)
    bug_id = Column(Integer, ForeignKey("bugs.id", ondelete="CASCADE"), nullable=True, index=True)
    added_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    added_by = Column(String(200), nullable=True)
    removed_at = Column(DateTime(timezone=True), nullable=True)
    removed_by = Column(String(200), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def item_type(self):
        return "story" if self.story_id is not None else "bug"

    @property
    def item_id(self):
        return self.story_id if self.story_id is not None else self.bug_id

    @property
    def is_active(self):
        return self.removed_at is None

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_id": self.sprint_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "story_id": self.story_id,
            "bug_id": self.bug_id,
            "added_at": iso(self.added_at),
            "added_by": self.added_by,
            "removed_at": iso(self.removed_at),
            "removed_by": self.removed_by,
        }


class SprintSnapshot(Base):
    """Immutable capacity record; never updated after insert."""

    __tablename__ = "sprint_snapshots"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True)
    sprint_id = Column(Integer, ForeignKey("sprints.id", ondelete="CASCADE"), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)
    remaining_points = Column(Integer, nullable=False, default=0)
    completed_points = Column(Integer, nullable=False, default=0)
    added_points = Column(Integer, nullable=False, default=0)
    removed_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "sprint_id": self.sprint_id,
            "snapshot_date": iso(self.snapshot_date),
            "remaining_points": self.remaining_points,
            "completed_points": self.completed_points,
            "added_points": self.added_points,
            "removed_points": self.removed_points,
            "created_at": iso(self.created_at),
        }
