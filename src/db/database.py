"""Database configuration and session management."""

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from config.settings import get_settings

Base = declarative_base()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)

engine: Engine | None = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def configure_engine(database_url: str | None = None, **engine_kwargs) -> Engine:
    """
    (Re)bind the module engine and session factory.

    Args:
        database_url: SQLAlchemy URL; defaults to the configured database
        **engine_kwargs: Extra create_engine() arguments (e.g. poolclass)

    Returns:
        The new engine
    """
    global engine

    url = database_url or get_settings().resolved_database_url
    if url.startswith("sqlite"):
        connect_args = engine_kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_kwargs["connect_args"] = connect_args

        if url.startswith("sqlite:///") and ":memory:" not in url:
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    SessionLocal.configure(bind=engine)
    return engine


def get_engine() -> Engine:
    """Return the bound engine, creating it from settings on first use."""
    if engine is None:
        return configure_engine()
    return engine


def get_db():
    """Dependency to get database session."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database tables."""
    from db import models  # noqa: F401
    Base.metadata.create_all(bind=get_engine())
