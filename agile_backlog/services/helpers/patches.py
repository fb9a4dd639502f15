"""
Typed patch and filter records for the entity store.

Every field defaults to ``UNSET``, which means "leave alone" for a patch
and "do not filter" for a filter. ``None`` is a real value:

    StoryPatch(epic_id=None)        # detach the story from its epic
    StoryPatch(title="New title")   # epic_id untouched
    StoryFilter(epic_id=None)       # orphan stories only
"""

from dataclasses import dataclass, fields
from datetime import date


class _Unset:
    """Marker for an omitted field; falsy and printable."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNSET"


UNSET = _Unset()


def is_set(value) -> bool:
    return value is not UNSET


class _Record:
    def changes(self) -> dict:
        """Fields the caller actually supplied (None included)."""
        return {f.name: getattr(self, f.name) for f in fields(self) if is_set(getattr(self, f.name))}

    def __bool__(self):
        return bool(self.changes())


# ── Patches ──────────────────────────────────────────────────────────────────


@dataclass
class ProjectPatch(_Record):
    name: str = UNSET
    description: str | None = UNSET


@dataclass
class EpicPatch(_Record):
    title: str = UNSET
    description: str | None = UNSET
    status: str = UNSET
    assigned_to: str | None = UNSET


@dataclass
class StoryPatch(_Record):
    title: str = UNSET
    description: str | None = UNSET
    acceptance_criteria: str | None = UNSET
    status: str = UNSET
    priority: str = UNSET
    points: int | None = UNSET
    epic_id: int | None = UNSET
    assigned_to: str | None = UNSET


@dataclass
class TaskPatch(_Record):
    title: str = UNSET
    description: str | None = UNSET
    status: str = UNSET
    task_type: str = UNSET
    priority: str = UNSET
    points: int | None = UNSET
    assigned_to: str | None = UNSET


@dataclass
class BugPatch(_Record):
    title: str = UNSET
    description: str | None = UNSET
    status: str = UNSET
    severity: str = UNSET
    error_message: str | None = UNSET
    priority: str = UNSET
    points: int | None = UNSET
    story_id: int | None = UNSET
    assigned_to: str | None = UNSET


@dataclass
class RelationshipPatch(_Record):
    description: str | None = UNSET


@dataclass
class NotePatch(_Record):
    content: str = UNSET
    author_name: str | None = UNSET


@dataclass
class SprintPatch(_Record):
    name: str = UNSET
    goal: str | None = UNSET
    start_date: date = UNSET
    end_date: date = UNSET
    capacity_points: int | None = UNSET


# ── Filters ──────────────────────────────────────────────────────────────────


@dataclass
class EpicFilter(_Record):
    status: str = UNSET
    assigned_to: str | None = UNSET


@dataclass
class StoryFilter(_Record):
    epic_id: int | None = UNSET
    status: str = UNSET
    priority: str = UNSET
    assigned_to: str | None = UNSET
    has_dependencies: bool = UNSET


@dataclass
class TaskFilter(_Record):
    story_id: int = UNSET
    status: str = UNSET
    task_type: str = UNSET
    assigned_to: str | None = UNSET


@dataclass
class BugFilter(_Record):
    story_id: int | None = UNSET
    status: str = UNSET
    severity: str = UNSET
    priority: str = UNSET
    assigned_to: str | None = UNSET


@dataclass
class RelationshipFilter(_Record):
    source_type: str = UNSET
    source_id: int = UNSET
    target_type: str = UNSET
    target_id: int = UNSET
    relationship_type: str = UNSET


@dataclass
class NoteFilter(_Record):
    parent_type: str = UNSET
    parent_id: int = UNSET
    agent_identifier: str = UNSET
    author_name: str = UNSET


@dataclass
class SprintFilter(_Record):
    status: str = UNSET
