import logging
import time
from typing import Callable, TypeVar

from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker, Session

from config import DATABASE_URL, STATEMENT_TIMEOUT_MS, TX_MAX_RETRIES, TX_RETRY_BACKOFF_SECONDS
from db.models import Base
from errors import StorageConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

engine = create_engine(
    DATABASE_URL,
    connect_args=(
        # busy timeout: a writer waits this long for the SQLite write lock before failing
        {"check_same_thread": False, "timeout": STATEMENT_TIMEOUT_MS / 1000}
        if DATABASE_URL.startswith("sqlite") else {}
    ),
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create all tables if they don't exist."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    """Dependency-injectable session factory for FastAPI routes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def is_postgres(session: Session) -> bool:
    bind = session.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def is_sqlite(session: Session) -> bool:
    bind = session.get_bind()
    return bind is not None and bind.dialect.name == "sqlite"


def run_in_transaction(
    session: Session,
    work: Callable[[Session], T],
    *,
    isolation_level: str | None = None,
    max_attempts: int | None = None,
) -> T:
    """
    Run `work(session)` as one transaction and commit it.

    Any exception rolls the transaction back, so the database is left exactly
    as it was before the call.  OperationalError / IntegrityError (lock
    timeouts, serialization failures, a concurrent writer winning a unique
    constraint) are retried with linear backoff; once the attempts are used up
    the last error is surfaced as StorageConflict.  Everything else propagates
    unchanged after the rollback.

    `work` must do all of its reads itself: it is re-executed from scratch on
    every attempt.  `isolation_level` is only applied on PostgreSQL.  On
    SQLite the transaction opens with BEGIN IMMEDIATE, so the database write
    lock is held from the first read and no other writer can commit while
    `work` runs.

    Any implicit transaction left open on the session by earlier reads is
    committed first so the isolation level can be set on a fresh connection.
    """
    attempts = max(1, max_attempts if max_attempts is not None else TX_MAX_RETRIES)
    if session.in_transaction():
        session.commit()

    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            if is_postgres(session):
                if isolation_level:
                    session.connection(execution_options={"isolation_level": isolation_level})
                # SET does not accept bind parameters; the value is an int from config.
                session.execute(text(f"SET LOCAL statement_timeout = {int(STATEMENT_TIMEOUT_MS)}"))
                session.execute(text(f"SET LOCAL lock_timeout = {int(STATEMENT_TIMEOUT_MS)}"))
            elif is_sqlite(session):
                # pysqlite defers BEGIN until the first write statement
                session.execute(text("BEGIN IMMEDIATE"))
            result = work(session)
            session.commit()
            return result
        except (OperationalError, IntegrityError) as exc:
            session.rollback()
            last_exc = exc
            logger.warning(
                "Transaction attempt %d/%d failed: %s", attempt, attempts, exc.__class__.__name__,
            )
            if attempt < attempts:
                time.sleep(TX_RETRY_BACKOFF_SECONDS * attempt)
        except Exception:
            session.rollback()
            raise

    logger.error("Transaction failed after %d attempts: %s", attempts, last_exc)
    raise StorageConflict(f"Could not commit after {attempts} attempts; retry the request.") from last_exc
