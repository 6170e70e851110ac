# binary-roi-engine/core/db.py
"""
Database management for the engine.

One engine per process. Every unit of work (one tree node, one investment,
one run bookkeeping step) gets its commit from the caller; sessions are
plain and never autocommit.
"""
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from models.base import Base

logger = logging.getLogger(__name__)

_engine = None
_SessionFactory = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine():
    """
    Get or create the database engine.

    SQLite gets a lock wait timeout and enforced foreign keys; other
    backends use pool pre-ping so that a restarted server does not fail the run.
    """
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, "sqlite:///binary_engine.db")

        if database_url.startswith("sqlite"):
            _engine = create_engine(database_url, echo=False, connect_args={"timeout": 30})
            event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
        else:
            _engine = create_engine(database_url, echo=False, pool_pre_ping=True)

        logger.info(f"Database engine created: {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def get_session_factory():
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = sessionmaker(bind=get_engine())
    return _SessionFactory


def get_session() -> Session:
    """Get a new database session. The caller closes it."""
    return get_session_factory()()


@contextmanager
def session_scope():
    """
    Read-mostly session for scripts.

    Usage:
        with session_scope() as session:
            root = session.query(Account).filter_by(kind="root").first()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}", exc_info=True)
        raise
    finally:
        session.close()


def check_database():
    """
    Fail fast when the store cannot be reached.

    Raises:
        StoreUnavailableError: If a trivial query fails
    """
    from mlm_system.errors import StoreUnavailableError

    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except OperationalError as e:
        logger.critical(f"Database unreachable: {e}")
        raise StoreUnavailableError(f"Database unreachable: {e}") from e


def setup_database():
    """Create all engine tables that do not exist yet."""
    import models  # noqa: F401  registers every mapped class on Base.metadata

    logger.info("Setting up database...")
    Base.metadata.create_all(get_engine())
    logger.info(f"Database ready: {len(Base.metadata.tables)} tables")
