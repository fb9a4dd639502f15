"""
Engine and session construction for the backlog storage file.

There is no module-level engine: ``create_backlog()`` (or a test fixture)
builds one with ``build_engine()`` and hands sessions to the services.

SQLite notes:
    - ``PRAGMA foreign_keys=ON`` on every connection so the declared
      CASCADE / SET NULL rules actually fire.
    - pysqlite's own transaction handling is switched off and BEGIN is
      emitted from the engine "begin" event. A connection opened with
      ``execution_options(sqlite_begin="IMMEDIATE")`` takes the write lock
      up front, which makes "check the graph, then insert the edge"
      serializable against other writers of the same file.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

IMMEDIATE = {"sqlite_begin": "IMMEDIATE"}


def _is_sqlite(dbapi_conn) -> bool:
    return "sqlite" in type(dbapi_conn).__module__


def _on_connect(dbapi_conn, connection_record):
    """Enable foreign key enforcement and take over BEGIN for SQLite connections."""
    if not _is_sqlite(dbapi_conn):
        return
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
    dbapi_conn.isolation_level = None


def _on_begin(conn):
    if conn.dialect.name != "sqlite":
        return
    mode = conn.get_execution_options().get("sqlite_begin")
    conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


def build_engine(settings=None, url: str | None = None):
    """Create an Engine for *url* (or ``settings.DATABASE_URL``).

    In-memory SQLite URLs get a StaticPool so every session in the process
    sees the same database.
    """
    url = url or settings.DATABASE_URL
    echo = bool(getattr(settings, "ECHO_SQL", False))
    kwargs = {"echo": echo, "future": True}

    if url.startswith("sqlite"):
        timeout = getattr(settings, "SQLITE_BUSY_TIMEOUT", 30)
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    event.listen(engine, "connect", _on_connect)
    event.listen(engine, "begin", _on_begin)
    logger.debug("Engine created for %s", engine.url.render_as_string(hide_password=True))
    return engine


def make_session_factory(engine):
    """Session factory used by the backlog facade; objects survive commit."""
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)
