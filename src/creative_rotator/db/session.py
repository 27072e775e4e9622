"""Database session management."""

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from creative_rotator.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite (tests, local runs) gets no connection pool tuning."""
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(pool_size=5, max_overflow=10)
    return create_engine(database_url, **kwargs)


# Create engine
engine = build_engine(settings.database_url)

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_session() -> Generator[Session, None, None]:
    """Get a database session (for FastAPI dependency injection)."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@contextmanager
def get_session_context(
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """Transactional scope: commit on success, roll back on any exception.

    Args:
        session_factory: Factory to draw the session from. Defaults to the
            application's SessionLocal; services accept an override so tests
            can run against an isolated engine.
    """
    session = (session_factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """Verify database connectivity."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
