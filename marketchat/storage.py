import logging
import threading
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Generator, Optional, TypeVar

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from marketchat.config import settings
from marketchat.errors import RequestTimedOut, StorageError

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite since sync route handlers
# run in FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Serializes every read-modify-write against the message log (append, mark-read)
write_lock = threading.Lock()

REQUIRED_TABLES = ("messages", "accounts", "listings")

# Monotonic deadline of the current request, set by RequestTimeoutMiddleware
request_deadline: ContextVar[Optional[float]] = ContextVar("request_deadline", default=None)

T = TypeVar("T")


def utc_now() -> str:
    """Server time as a sortable ISO-8601 UTC string with microseconds."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from marketchat import models  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            existing = set(inspect(db.get_bind()).get_table_names())
            missing = [name for name in REQUIRED_TABLES if name not in existing]
            if missing:
                logger.error(f"Database schema not applied: missing tables {missing}")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def ensure_not_expired() -> None:
    """
    Refuse to write on behalf of a request that has already timed out.

    Call with write_lock held, right before touching the log: a request
    whose client already got a 504 must not commit anything afterwards.
    """
    deadline = request_deadline.get()
    if deadline is not None and time.monotonic() > deadline:
        logger.warning("Request deadline passed, skipping write")
        raise RequestTimedOut()


def run_query(read: Callable[[], T], description: str) -> T:
    """Run a read, surfacing SQLAlchemy failures as StorageError."""
    try:
        return read()
    except SQLAlchemyError as e:
        logger.error(f"{description} failed: {e}")
        raise StorageError() from e
