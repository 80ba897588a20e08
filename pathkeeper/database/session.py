"""Database session management for Pathkeeper."""

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import get_config
from .models import Base

# Global engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker | None = None


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key support for SQLite."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_db(db_path: Path | str | None = None) -> Engine:
    """Open the campaign database and create any missing tables.

    Calling it again switches to a new file, disposing of the previous engine.

    Args:
        db_path: SQLite file. Defaults to ``database.path`` from the config

    Returns:
        SQLAlchemy Engine instance
    """
    global _engine, _SessionFactory

    if db_path is None:
        db_path = Path(get_config().database.path)
    else:
        db_path = Path(db_path)

    db_path.parent.mkdir(parents=True, exist_ok=True)

    if _engine is not None:
        _engine.dispose()

    # check_same_thread is off because FastAPI runs sync endpoints in a threadpool
    _engine = create_engine(
        f"sqlite:///{db_path}",
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
    )

    Base.metadata.create_all(_engine)

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    return _engine


def get_session() -> Session:
    """New session from the factory; the mediator and sync service open one per unit of work."""
    if _SessionFactory is None:
        init_db()
    return _SessionFactory()


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Unit of work: commit on a clean exit, roll back and re-raise on error."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_db(db_path: Path | str | None = None) -> None:
    """Drop every table, then recreate the schema at ``db_path``."""
    global _engine

    if _engine is not None:
        Base.metadata.drop_all(_engine)
        _engine.dispose()
        _engine = None

    init_db(db_path)


def close_db() -> None:
    """Close the database connection and dispose of the engine."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _SessionFactory = None
