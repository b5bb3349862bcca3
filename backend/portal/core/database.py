# portal/core/database.py
import logging
from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from portal.core.config import settings
from portal.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict:
    """
    Every database wait is bounded: pool checkout, TCP connect and each
    statement. Exceeding one raises OperationalError or the pool TimeoutError,
    which database_guard turns into a 503.
    """
    options: dict = {"pool_pre_ping": True}  # checks stale connections
    if database_url.startswith("sqlite"):
        return options

    options["pool_timeout"] = settings.DB_POOL_TIMEOUT_SECONDS
    options["connect_args"] = {
        "connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS,
        "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
    }
    return options


engine = create_engine(settings.database_url, **engine_options(settings.database_url))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def database_guard(db: Session, operation: str) -> Iterator[None]:
    """
    Translate connectivity failures into ServiceUnavailableError.

    Driver messages stay in the server log; callers only see the retryable 503.
    Integrity errors are not touched here, callers handle those themselves.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as exc:
        try:
            db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback failed after database outage during %s", operation)
        logger.error("Database unavailable during %s: %s", operation, exc)
        raise ServiceUnavailableError("Database unavailable") from exc
