"""
Database session management
"""
import functools
import logging
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import DBAPIError, DisconnectionError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from gorepair.config import settings
from gorepair.models import Base  # Registers every model on the metadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _engine_kwargs() -> dict:
    """Engine options per backend (SQLite is used for local runs and tests)"""
    if settings.is_sqlite:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if settings.DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
            # Share the single in-memory database across threads
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
    }


# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,
    echo=settings.DATABASE_ECHO,
    **_engine_kwargs()
)

if settings.is_sqlite:
    # pysqlite defers BEGIN and mishandles SAVEPOINT; let SQLAlchemy emit BEGIN
    # itself so nested transactions used by bulk creation behave as on PostgreSQL
    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

# Create SessionLocal class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency function to get database session

    Usage in FastAPI routes:
        @router.get("/")
        async def my_route(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def apply_statement_timeout(db: Session, timeout_ms: int) -> None:
    """
    Bound every statement in the current transaction to ``timeout_ms``.

    Only PostgreSQL supports this per transaction; other backends are left
    untouched.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    db.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def _is_disconnect(exc: Exception) -> bool:
    if isinstance(exc, DisconnectionError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def retry_on_disconnect(func: Callable[..., T]) -> Callable[..., T]:
    """
    Retry a service method when the store connection drops mid-operation.

    The wrapped method must belong to an object exposing ``self.db``. The
    session is rolled back before every retry, so the whole unit of work is
    replayed. Any other error propagates on the first occurrence.
    """
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = settings.DATABASE_RETRY_ATTEMPTS
        for attempt in range(attempts + 1):
            try:
                return func(self, *args, **kwargs)
            except (DBAPIError, DisconnectionError) as exc:
                if not _is_disconnect(exc) or attempt >= attempts:
                    raise
                logger.warning(
                    f"Database connection lost in {func.__name__} "
                    f"(attempt {attempt + 1}/{attempts + 1}), retrying"
                )
                self.db.rollback()
    return wrapper
