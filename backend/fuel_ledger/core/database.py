from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Callable, Generator, Iterator, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlmodel import Session, SQLModel, create_engine

from fuel_ledger.core.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./fuel_ledger.db"
LOCK_RETRIES = int(os.getenv("LEDGER_LOCK_RETRIES", "3"))

engine = create_engine(
    DATABASE_URL,
    echo=os.getenv("SQL_ECHO", "").lower() in {"1", "true", "yes"},
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)

# PostgreSQL: deadlock_detected, serialization_failure, lock_not_available
_LOCK_PGCODES = {"40P01", "40001", "55P03"}
_LOCK_MARKERS = ("deadlock", "database is locked", "lock wait timeout", "could not obtain lock")

T = TypeVar("T")


def get_session() -> Generator[Session, None, None]:  # FastAPI dependency
    with Session(engine) as ses:
        yield ses


def init_db(bind=None) -> None:
    """Create every table registered on ``SQLModel.metadata`` (dev / tests).

    Production schema is managed by Alembic.
    """
    import fuel_ledger.models  # noqa: F401  (registers tables)

    SQLModel.metadata.create_all(bind or engine)


def is_lock_error(exc: DBAPIError) -> bool:
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _LOCK_PGCODES:
        return True
    text = str(orig or exc).lower()
    return any(marker in text for marker in _LOCK_MARKERS)


@contextmanager
def atomic(session: Session, operation: str = "ledger operation") -> Iterator[Session]:
    """Run the block as one database transaction.

    Commits on success. On any error the session is rolled back so no partial
    write survives; lock/deadlock failures are re-raised as
    :class:`ConcurrencyConflict`.
    """
    try:
        yield session
        session.commit()
    except DBAPIError as exc:
        session.rollback()
        if is_lock_error(exc):
            logger.warning("%s aborted by lock conflict: %s", operation, exc.orig)
            raise ConcurrencyConflict(f"{operation} conflicted with a concurrent update; retry") from exc
        raise
    except Exception:
        session.rollback()
        raise


def retry_on_conflict(fn: Callable[..., T], *args, attempts: int | None = None, backoff: float = 0.05, **kwargs) -> T:
    """Call ``fn`` and re-run it when it raises :class:`ConcurrencyConflict`."""
    attempts = max(1, attempts or LOCK_RETRIES)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except ConcurrencyConflict:
            if attempt == attempts:
                raise
            logger.info("retry_on_conflict: %s attempt %d/%d", getattr(fn, "__name__", fn), attempt, attempts)
            time.sleep(backoff * attempt)
    raise AssertionError("unreachable")
