"""
Tests for the write-locked graph insert (store.serializable + BEGIN IMMEDIATE).

Two BacklogService instances share one SQLite file, each on its own
session and connection.

Scenarios covered:
  1. While one writer holds serializable(), a second writer's
     add_dependency fails with "database is locked"
  2. Once the first commits, the second sees its edge and the reverse
     edge is rejected as a cycle
"""

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from agile_backlog.config import TestingConfig
from agile_backlog.core.exceptions import CircularDependencyError
from agile_backlog.database import build_engine, make_session_factory
from agile_backlog.models import Dependency
from agile_backlog.schema import upgrade
from agile_backlog.services.backlog_service import BacklogService


@pytest.fixture()
def two_writers(tmp_path):
    settings = TestingConfig()
    settings.SQLITE_BUSY_TIMEOUT = 0.1
    engine = build_engine(settings, url=f"sqlite:///{tmp_path / 'backlog.db'}")
    upgrade(engine)
    factory = make_session_factory(engine)
    first = BacklogService(factory(), settings)
    second = BacklogService(factory(), settings)
    yield first, second
    first.close()
    second.close()
    engine.dispose()


def _edges(service):
    rows = service.session.execute(select(Dependency.story_id, Dependency.depends_on_story_id)).all()
    return [tuple(row) for row in rows]


# ── 1. Second writer blocked ─────────────────────────────────────────────────


class TestSecondWriterBlocked:
    def test_locked_while_first_holds_serializable(self, two_writers):
        first, second = two_writers
        first.register_project("alpha", "Alpha")
        a = first.create_story("alpha", "A")
        b = first.create_story("alpha", "B")
        ctx = first.guard.resolve_context("alpha", "agent-1")

        with first.store.serializable():
            first.validator.assert_acyclic(ctx.project_id, a.id, b.id)
            first.store.create_dependency(a.id, b.id)

            with pytest.raises(OperationalError, match="database is locked"):
                second.add_dependency("alpha", b.id, a.id, agent_identifier="agent-2")
        first.session.commit()

        assert _edges(first) == [(a.id, b.id)]
        assert _edges(second) == [(a.id, b.id)]


# ── 2. Retry after commit ────────────────────────────────────────────────────


class TestRetryAfterCommit:
    def test_reverse_edge_rejected_once_first_commits(self, two_writers):
        first, second = two_writers
        first.register_project("alpha", "Alpha")
        a = first.create_story("alpha", "A")
        b = first.create_story("alpha", "B")
        ctx = first.guard.resolve_context("alpha", "agent-1")

        with first.store.serializable():
            first.validator.assert_acyclic(ctx.project_id, a.id, b.id)
            first.store.create_dependency(a.id, b.id)
            with pytest.raises(OperationalError):
                second.add_dependency("alpha", b.id, a.id, agent_identifier="agent-2")
        first.session.commit()

        with pytest.raises(CircularDependencyError):
            second.add_dependency("alpha", b.id, a.id, agent_identifier="agent-2")
        assert _edges(second) == [(a.id, b.id)]
