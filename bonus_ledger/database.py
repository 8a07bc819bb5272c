"""Database connection and transaction scope management."""
from contextlib import contextmanager
from typing import Callable, Iterator, Optional
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import Settings, get_settings
from .exceptions import StorageError, StorageTimeoutError

logger = logging.getLogger(__name__)

# Base class for models
Base = declarative_base()

# PostgreSQL SQLSTATEs: query_canceled (statement_timeout), lock_not_available
_PG_TIMEOUT_CODES = frozenset({"57014", "55P03"})

# SQLite reports lock waits only through the message text
_SQLITE_TIMEOUT_MARKERS = (
    "database is locked",
    "database table is locked",
)


def create_db_engine(settings: Optional[Settings] = None) -> Engine:
    """Create an engine whose driver-level waits honour the statement budget."""
    settings = settings or get_settings()
    kwargs = {"pool_pre_ping": True}

    if settings.is_sqlite:
        # SQLite has no row locks; the busy timeout bounds waits on the database lock.
        kwargs["connect_args"] = {
            "check_same_thread": False,
            "timeout": settings.statement_timeout_ms / 1000,
        }
    else:
        kwargs["pool_size"] = max(1, settings.db_pool_size)
        kwargs["max_overflow"] = max(0, settings.db_max_overflow)
        kwargs["pool_timeout"] = settings.lock_timeout_seconds

    engine = create_engine(settings.database_url, **kwargs)
    logger.debug(f"Database engine created for backend {engine.dialect.name}")
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        engine,
        class_=Session,
        expire_on_commit=False,
        autoflush=False,
    )


engine = create_db_engine()
SessionLocal = create_session_factory(engine)


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the bonus_entries table and its indexes if they don't exist."""
    from . import entries  # noqa: F401  registers the table on Base.metadata

    Base.metadata.create_all(bind or engine)


def translate_storage_error(exc: SQLAlchemyError) -> StorageError:
    """Classify a driver failure as a timeout or a generic storage fault."""
    if isinstance(exc, PoolTimeoutError):
        return StorageTimeoutError("timed out waiting for a database connection")
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
        if pgcode is not None:
            if pgcode in _PG_TIMEOUT_CODES:
                return StorageTimeoutError("storage call exceeded its time budget")
        elif isinstance(exc, OperationalError):
            detail = str(exc.orig).lower()
            if any(marker in detail for marker in _SQLITE_TIMEOUT_MARKERS):
                return StorageTimeoutError("storage call exceeded its time budget")
    return StorageError("storage failure")


def apply_statement_timeout(session: Session, timeout_ms: int) -> None:
    """Bound every statement of the current transaction (PostgreSQL only)."""
    if session.get_bind().dialect.name == "postgresql":
        session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@contextmanager
def transaction(
    session_factory: Optional[Callable[[], Session]] = None,
    statement_timeout_ms: Optional[int] = None,
) -> Iterator[Session]:
    """
    Open a session and a transaction as one unit of work.

    Commits when the block exits normally and rolls back on any exception.
    Ledger errors raised inside the block propagate unchanged; driver errors
    are logged and re-raised as StorageError or StorageTimeoutError.
    """
    factory = session_factory or SessionLocal
    timeout_ms = statement_timeout_ms or get_settings().statement_timeout_ms
    session = factory()
    try:
        with session.begin():
            apply_statement_timeout(session, timeout_ms)
            yield session
    except SQLAlchemyError as exc:
        error = translate_storage_error(exc)
        logger.error(f"Transaction rolled back after storage failure: {exc!r}")
        raise error from exc
    finally:
        session.close()
