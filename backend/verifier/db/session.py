"""Sync SQLAlchemy engine and session factory.

The workflow services are synchronous so the API handlers and the Celery
sweep share one code path and one transaction model.
"""
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from verifier.core.config import settings


def _connect_args(url: str) -> dict:
    # Bound every statement and row-lock wait; a timeout surfaces as a
    # retryable StorageError.
    if url.startswith("postgresql"):
        timeout = settings.STORAGE_STATEMENT_TIMEOUT_MS
        return {"options": f"-c statement_timeout={timeout} -c lock_timeout={timeout}"}
    return {}


engine = create_engine(
    settings.DATABASE_URL_SYNC,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
    connect_args=_connect_args(settings.DATABASE_URL_SYNC),
)

SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
)


def get_db() -> Generator[Session, None, None]:
    with SessionLocal() as db:
        try:
            yield db
        except Exception:
            db.rollback()
            raise


def get_session_factory() -> sessionmaker:
    """Factory dependency for operations that open one DB session per unit of work."""
    return SessionLocal
