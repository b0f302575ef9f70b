from contextlib import contextmanager
from typing import Optional

from loguru import logger
from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError
from sqlmodel import Session, create_engine

from app.core.config import settings
from app.core.exceptions import TransientError


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Writers serialize on SQLite; waiting on the lock is bounded by the busy timeout.
        return {"check_same_thread": False, "timeout": settings.db_timeout_seconds}
    if url.startswith("postgresql"):
        return {"connect_timeout": max(int(settings.db_timeout_seconds), 1)}
    return {}


engine = create_engine(
    settings.database_url,
    connect_args=_connect_args(settings.database_url),
    pool_pre_ping=True,
)


if engine.dialect.name == "sqlite":
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_session():
    with Session(engine) as session:
        yield session


def apply_statement_timeout(session: Session, timeout_seconds: Optional[float]):
    """
    Bounds every statement of the current transaction.
    PostgreSQL only; SQLite relies on the busy timeout set at connect time.
    """
    if not timeout_seconds:
        return
    if session.get_bind().dialect.name != "postgresql":
        return
    session.execute(
        text(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}")
    )


def is_transient(exc: Exception) -> bool:
    if isinstance(exc, (OperationalError, PoolTimeoutError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


@contextmanager
def translate_storage_errors(session: Session, operation: str):
    """
    Rolls back the session on any storage failure and re-raises
    timeouts / dropped connections as a retryable TransientError.
    Other exceptions propagate unchanged after the rollback.
    """
    try:
        yield
    except Exception as e:
        session.rollback()
        if is_transient(e):
            logger.warning(f"{operation}: storage unavailable ({e})")
            raise TransientError(
                "Storage is temporarily unavailable. Please try again.") from e
        raise
