"""
SQLAlchemy Session Management.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from .engine import get_engine


_session_factory = None


def get_session_factory() -> sessionmaker:
    """Get or create the session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False
        )
    return _session_factory


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on any exception and re-raises it.

    Usage:
        with get_db_session() as session:
            schedules = session.execute(select(Schedule)).scalars().all()

    Yields:
        SQLAlchemy Session
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reset_session_factory() -> None:
    """Drop the cached factory so the next session binds to a fresh engine."""
    global _session_factory
    _session_factory = None
