# jobview/core/db.py

"""
Database engine, session factory and declarative base.
"""

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from jobview.core.config import settings
from jobview.utils.logger import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite connections are shared with the export worker threads, so the
    same-thread check is disabled for that dialect.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(
        database_url, echo=echo, pool_pre_ping=True, connect_args=connect_args
    )


def build_session_factory(bind: Engine) -> sessionmaker:
    """
    Objects stay readable after commit; repositories hand detached rows to
    worker threads.
    """
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.database_url, settings.database_echo)
SessionLocal = build_session_factory(engine)


@contextmanager
def session_scope(session_factory: sessionmaker = None) -> Iterator[Session]:
    """
    Short transactional scope: commit on success, rollback on error.
    """
    factory = session_factory or SessionLocal
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db(bind: Engine = None) -> None:
    """
    Verify connectivity and create missing tables.

    Raises if the database is unreachable; callers treat that as fatal.
    """
    # Models must be imported so their tables are registered on Base.metadata
    import jobview.applications.models  # noqa: F401
    import jobview.exports.models  # noqa: F401

    bind = bind or engine
    with bind.connect() as conn:
        conn.execute(text("SELECT 1"))
    Base.metadata.create_all(bind=bind)
    logger.info("Database initialised", url=bind.url.render_as_string(hide_password=True))
