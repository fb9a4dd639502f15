"""
Versioned schema management.

The schema is only ever changed by the ordered alembic revisions under
``agile_backlog/migrations/versions``. The applied revision is stored in
the ``alembic_version`` table; upgrading to a revision that is already
applied is a no-op.

Usage:
    from agile_backlog.schema import upgrade
    upgrade(engine)              # to head
    upgrade(engine, "0002_relationships_notes")
"""

import logging
import os

from alembic import command
from alembic.config import Config as AlembicConfig
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "migrations")


def alembic_config(connection=None):
    """Programmatic alembic config pointing at the packaged revisions."""
    cfg = AlembicConfig()
    cfg.set_main_option("script_location", MIGRATIONS_DIR)
    if connection is not None:
        cfg.attributes["connection"] = connection
        cfg.set_main_option(
            "sqlalchemy.url",
            connection.engine.url.render_as_string(hide_password=False).replace("%", "%%"),
        )
    return cfg


def revisions():
    """All revision ids, oldest first."""
    script = ScriptDirectory.from_config(alembic_config())
    return [rev.revision for rev in reversed(list(script.walk_revisions()))]


def head_revision():
    return ScriptDirectory.from_config(alembic_config()).get_current_head()


def current_revision(engine):
    """Revision stored in ``alembic_version``, or None for an empty database."""
    with engine.connect() as connection:
        return MigrationContext.configure(connection).get_current_revision()


def upgrade(engine, revision: str = "head"):
    before = current_revision(engine)
    with engine.begin() as connection:
        command.upgrade(alembic_config(connection), revision)
    after = current_revision(engine)
    if before != after:
        logger.info("Schema upgraded: %s -> %s", before or "<empty>", after)
    else:
        logger.debug("Schema already at %s", after)
    return after


def downgrade(engine, revision: str):
    before = current_revision(engine)
    with engine.begin() as connection:
        command.downgrade(alembic_config(connection), revision)
    after = current_revision(engine)
    logger.info("Schema downgraded: %s -> %s", before, after or "<empty>")
    return after
