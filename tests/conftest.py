"""
Shared pytest fixtures for the backlog engine test suite.

Provides:
    - engine: in-memory SQLite engine (StaticPool) migrated to head, per test
    - session: SQLAlchemy session on that engine
    - service: BacklogService facade on the session
    - store / audit / guard / validator / detector / sprints: the collaborators
      the facade wired together, exposed for component-level tests
    - project / other_project: two registered projects ("alpha", "beta")
"""

import pytest

from agile_backlog.config import TestingConfig
from agile_backlog.database import build_engine, make_session_factory
from agile_backlog.schema import upgrade
from agile_backlog.services.backlog_service import BacklogService


# ── Engine & session ─────────────────────────────────────────────────────


@pytest.fixture()
def settings():
    return TestingConfig()


@pytest.fixture()
def engine(settings):
    """Fresh in-memory database per test, schema at head."""
    eng = build_engine(settings, url="sqlite:///:memory:")
    upgrade(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session(engine):
    s = make_session_factory(engine)()
    yield s
    s.rollback()
    s.close()


# ── Services ─────────────────────────────────────────────────────────────


@pytest.fixture()
def service(session, settings):
    return BacklogService(session, settings)


@pytest.fixture()
def store(service):
    return service.store


@pytest.fixture()
def audit(service):
    return service.audit


@pytest.fixture()
def guard(service):
    return service.guard


@pytest.fixture()
def validator(service):
    return service.validator


@pytest.fixture()
def detector(service):
    return service.detector


@pytest.fixture()
def sprints(service):
    return service.sprints


# ── Seed data ────────────────────────────────────────────────────────────


@pytest.fixture()
def project(store, session):
    p = store.create_project("alpha", "Alpha", "First project")
    session.commit()
    return p


@pytest.fixture()
def other_project(store, session):
    p = store.create_project("beta", "Beta", "Second project")
    session.commit()
    return p
