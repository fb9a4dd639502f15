"""
Agile Backlog Engine
Backlog factory.

Usage:
    from agile_backlog import create_backlog
    backlog = create_backlog()            # defaults to APP_ENV or "development"
    backlog = create_backlog("testing")   # explicit config

    backlog.register_project("my-repo", "My Repo")
    story = backlog.create_story("my-repo", "Login page", agent_identifier="agent-1")
"""

import logging
import os

from agile_backlog.config import get_config
from agile_backlog.database import build_engine, make_session_factory
from agile_backlog.logging_config import configure_logging
from agile_backlog.schema import upgrade
from agile_backlog.services.backlog_service import BacklogService, UpdateResult

logger = logging.getLogger(__name__)

__all__ = ["BacklogService", "UpdateResult", "create_backlog"]


def _ensure_sqlite_dir(url: str):
    if not url.startswith("sqlite:///") or ":memory:" in url:
        return
    directory = os.path.dirname(url[len("sqlite:///"):])
    if directory:
        os.makedirs(directory, exist_ok=True)


def create_backlog(config_name: str | None = None, settings=None) -> BacklogService:
    """
    Build a ready-to-use BacklogService.

    Steps: load config → configure logging → create engine → migrate the
    schema to head (unless AUTO_MIGRATE is off) → open a session.

    Args:
        config_name: "development", "testing" or "production". Falls back
            to the APP_ENV env var, then "development".
        settings: Pre-built config object; wins over config_name.
    """
    settings = settings or get_config(config_name)
    configure_logging(settings)

    _ensure_sqlite_dir(settings.DATABASE_URL)
    engine = build_engine(settings)
    if settings.AUTO_MIGRATE:
        upgrade(engine)

    session = make_session_factory(engine)()
    logger.info("Backlog engine ready", extra={"event_type": "startup"})
    return BacklogService(session, settings)
