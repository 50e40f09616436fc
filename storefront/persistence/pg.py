from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from storefront.core.config import get_settings
from storefront.domain.errors import TransactionConflict
from storefront.persistence.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


def create_engine_from_url(url: str):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, future=True, pool_pre_ping=True, connect_args=connect_args)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_foreign_keys(engine)
    return engine


def _enable_sqlite_foreign_keys(engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


settings = get_settings()
engine = create_engine_from_url(settings.database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
        try:
            session.commit()
        except OperationalError as exc:
            # Lock timeouts and serialization failures at commit are retryable conflicts.
            raise TransactionConflict(f"commit failed: {exc.orig}") from exc
    except BaseException:
        # BaseException so request cancellation also discards uncommitted writes.
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    with session_scope() as session:
        yield session


def run_in_transaction(fn: Callable[[Session], T], attempts: int | None = None) -> T:
    """Run ``fn`` in its own transaction, restarting from scratch on conflicts.

    Each attempt opens a fresh session so ``fn`` re-reads current state; nothing
    from a failed attempt is carried over.
    """
    attempts = attempts or get_settings().transaction_attempts
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            with session_scope() as session:
                return fn(session)
        except TransactionConflict as exc:
            last_error = exc
        except OperationalError as exc:
            last_error = exc
        logger.warning("transaction attempt %s/%s failed: %s", attempt, attempts, last_error)

    if isinstance(last_error, TransactionConflict):
        raise last_error
    raise TransactionConflict(f"transaction failed after {attempts} attempts: {last_error}") from last_error
