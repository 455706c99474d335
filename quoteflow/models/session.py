"""Helpers for configuring SQLAlchemy engine and session factories."""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from ..core.settings import get_settings
from . import Base


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        database_url: Optional database URL. When ``None`` the configured
            ``DATABASE_URL`` setting is used.
        **kwargs: Additional keyword arguments forwarded to
            :func:`sqlalchemy.create_engine`.

    Returns:
        Configured SQLAlchemy :class:`~sqlalchemy.engine.Engine` instance.
    """

    url = database_url or get_settings().database_url
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":
        # pysqlite defers BEGIN on its own, which breaks SAVEPOINT handling.
        # Take over transaction demarcation so nested transactions work.

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.isolation_level = None
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

        @event.listens_for(engine, "begin")
        def _begin_sqlite(conn):  # pragma: no cover - dialect hook
            conn.exec_driver_sql("BEGIN")

    return engine


def get_sessionmaker(database_url: str | None = None, **kwargs: object) -> sessionmaker[Session]:
    """Return a session factory bound to a fresh engine."""

    engine = get_engine(database_url=database_url, **kwargs)
    return sessionmaker(bind=engine, expire_on_commit=False, future=True)


@lru_cache(maxsize=1)
def get_default_sessionmaker() -> sessionmaker[Session]:
    """Return the process-wide session factory for the configured database.

    The schema is created on first use unless ``DB_AUTO_CREATE`` is disabled.
    """

    factory = get_sessionmaker()
    if get_settings().auto_create_schema:
        init_db(factory.kw["bind"])
    return factory


def reset_session_cache() -> None:
    """Dispose of the cached session factory; tests call this between databases."""

    if get_default_sessionmaker.cache_info().currsize:
        get_default_sessionmaker().kw["bind"].dispose()
    get_default_sessionmaker.cache_clear()


def init_db(engine: Engine) -> None:
    """Create every table known to :class:`Base` that does not exist yet."""

    Base.metadata.create_all(engine)


__all__ = [
    "Base",
    "get_default_sessionmaker",
    "get_engine",
    "get_sessionmaker",
    "init_db",
    "reset_session_cache",
]
