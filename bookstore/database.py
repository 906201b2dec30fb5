from contextlib import contextmanager
import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError, DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import Settings
from .errors import OrderingError, StorageError, TransientError

logger = logging.getLogger(__name__)

# Base class for declarative ORM models.
Base = declarative_base()


def create_db_engine(settings: Settings):
    """Create the SQLAlchemy engine with bounded connect and statement timeouts."""
    url = make_url(settings.database_url)
    timeout = settings.db_timeout_seconds

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
        _use_immediate_transactions(engine)
        return engine

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": int(timeout),
            "options": f"-c statement_timeout={int(timeout * 1000)}",
        },
    )


def _use_immediate_transactions(engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so concurrent transactions queue on the busy timeout instead of racing.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(engine):
    """Create a configured "Session" class bound to the engine."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine) -> None:
    """Create database tables if they don't exist."""
    # Importing models registers the tables on Base.metadata.
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def is_transient(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError, DisconnectionError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@contextmanager
def session_scope(session_factory):
    """Run a block in one transaction.

    Commits on success and rolls back on any error. Database exceptions are
    translated into ``TransientError`` or ``StorageError`` so callers never
    see raw SQLAlchemy errors.
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except OrderingError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        if is_transient(exc):
            logger.warning("Transient database error: %s", exc)
            raise TransientError(f"Database temporarily unavailable: {exc.__class__.__name__}") from exc
        logger.error("Database error: %s", exc)
        raise StorageError(f"Database error: {exc.__class__.__name__}") from exc
    except Exception:
        db.rollback()
        raise
    finally:
        # Ensure the session is always closed after the operation is finished.
        db.close()
