"""
Dependency graph validator and read-only graph views.

The project's ordering graph is the union of
    - every Dependency row:            ("story", a) → ("story", b)
    - every Relationship whose type is blocks / blocked_by / depends_on:
                                       (source_type, source_id) → (target_type, target_id)

Before an edge source → target is inserted, a breadth-first walk starts
at target and follows forward edges. Reaching source means the new edge
would close a loop. A self-loop is the degenerate case and is rejected
without walking. related_to / cloned_from edges never take part.

The adjacency map is loaded once per check from the project's edge set,
so a check costs O(V + E) for that project. Callers run the check and
the insert inside ``store.serializable()`` so two concurrent inserts
cannot both pass.
"""

import logging
from collections import deque

from sqlalchemy import select

from agile_backlog.core.exceptions import CircularDependencyError
from agile_backlog.models import Dependency, Epic, Relationship, Story, Task
from agile_backlog.models.graph import GRAPH_RELATIONSHIP_TYPES

logger = logging.getLogger(__name__)


def _node(ref):
    """Bare ints are story ids; anything else is already a (type, id) pair."""
    if isinstance(ref, int):
        return ("story", ref)
    entity_type, entity_id = ref
    return (entity_type, entity_id)


class DependencyGraphValidator:
    def __init__(self, store):
        self.store = store

    @property
    def session(self):
        return self.store.session

    def adjacency(self, project_id: int) -> dict:
        """Forward edges of the project's ordering graph."""
        graph: dict[tuple, set] = {}

        dependency_rows = self.session.execute(
            select(Dependency.story_id, Dependency.depends_on_story_id)
            .join(Story, Dependency.story_id == Story.id)
            .where(Story.project_id == project_id)
        )
        for story_id, depends_on in dependency_rows:
            graph.setdefault(("story", story_id), set()).add(("story", depends_on))

        relationship_rows = self.session.execute(
            select(
                Relationship.source_type,
                Relationship.source_id,
                Relationship.target_type,
                Relationship.target_id,
            ).where(
                Relationship.project_id == project_id,
                Relationship.relationship_type.in_(GRAPH_RELATIONSHIP_TYPES),
            )
        )
        for source_type, source_id, target_type, target_id in relationship_rows:
            graph.setdefault((source_type, source_id), set()).add((target_type, target_id))

        return graph

    def would_create_cycle(self, project_id: int, source, target) -> bool:
        """True when adding source → target closes a loop (self-loops included)."""
        source = _node(source)
        target = _node(target)
        if source == target:
            return True

        graph = self.adjacency(project_id)
        visited = {target}
        frontier = deque([target])
        while frontier:
            current = frontier.popleft()
            for neighbour in graph.get(current, ()):
                if neighbour == source:
                    return True
                if neighbour not in visited:
                    visited.add(neighbour)
                    frontier.append(neighbour)
        return False

    def assert_acyclic(self, project_id: int, source, target) -> None:
        if self.would_create_cycle(project_id, source, target):
            logger.info(
                "Rejected edge %s -> %s: would create a cycle", _node(source), _node(target),
                extra={"project_id": project_id},
            )
            raise CircularDependencyError(source=_node(source), target=_node(target))

    # ── Views ────────────────────────────────────────────────────────────

    def dependency_graph(self, project_id: int) -> dict:
        """Story dependency graph: nodes with both directions, plus the edge list."""
        stories = self.store.list_stories(project_id)
        dependencies = self.store.list_project_dependencies(project_id)

        depends_on: dict[int, list[int]] = {s.id: [] for s in stories}
        dependents: dict[int, list[int]] = {s.id: [] for s in stories}
        edges = []
        for dep in dependencies:
            depends_on.setdefault(dep.story_id, []).append(dep.depends_on_story_id)
            dependents.setdefault(dep.depends_on_story_id, []).append(dep.story_id)
            edges.append({
                "id": dep.id,
                "from": dep.story_id,
                "to": dep.depends_on_story_id,
                "type": dep.dependency_type,
            })

        nodes = [
            {
                "id": story.id,
                "title": story.title,
                "status": story.status,
                "epic_id": story.epic_id,
                "dependencies": sorted(depends_on[story.id]),
                "dependents": sorted(dependents[story.id]),
            }
            for story in stories
        ]
        return {"nodes": nodes, "edges": edges}

    def hierarchy(self, project_id: int) -> dict:
        """Epic → story → task tree; stories without an epic are listed separately."""
        epics = list(
            self.session.execute(
                select(Epic).where(Epic.project_id == project_id).order_by(Epic.created_at, Epic.id)
            ).scalars()
        )
        stories = list(
            self.session.execute(
                select(Story).where(Story.project_id == project_id).order_by(Story.created_at, Story.id)
            ).scalars()
        )
        tasks = list(
            self.session.execute(
                select(Task)
                .join(Story, Task.story_id == Story.id)
                .where(Story.project_id == project_id)
                .order_by(Task.created_at, Task.id)
            ).scalars()
        )

        tasks_by_story: dict[int, list] = {}
        for task in tasks:
            tasks_by_story.setdefault(task.story_id, []).append(task.to_dict())

        stories_by_epic: dict[int | None, list] = {}
        for story in stories:
            node = story.to_dict()
            node["tasks"] = tasks_by_story.get(story.id, [])
            stories_by_epic.setdefault(story.epic_id, []).append(node)

        tree = []
        for epic in epics:
            node = epic.to_dict()
            node["stories"] = stories_by_epic.get(epic.id, [])
            tree.append(node)

        return {"epics": tree, "orphan_stories": stories_by_epic.get(None, [])}
