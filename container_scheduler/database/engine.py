"""
SQLAlchemy Engine Configuration.

Creates the database engine shared by the scheduler loop and the API.
"""

import os
from functools import lru_cache

from sqlalchemy import Engine, create_engine, event


def get_database_url() -> str:
    """
    Get database URL from environment or use default SQLite.

    Returns:
        Database connection URL
    """
    db_url = os.environ.get("DATABASE_URL", "")

    if not db_url:
        # Default to SQLite in instance folder
        base_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
        db_path = os.path.join(base_dir, 'instance', 'container_schedules.db')
        db_url = f"sqlite:///{db_path}"

    return db_url


def _sql_echo() -> bool:
    return os.environ.get('SQL_ECHO', 'false').lower() == 'true'


@lru_cache()
def get_engine() -> Engine:
    """
    Get or create the SQLAlchemy engine.

    Cached for reuse across requests and scheduler threads.

    Returns:
        SQLAlchemy Engine instance
    """
    db_url = get_database_url()

    # SQLite-specific configuration
    if db_url.startswith("sqlite"):
        if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
            db_dir = os.path.dirname(db_url[len("sqlite:///"):])
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        engine = create_engine(
            db_url,
            echo=_sql_echo(),
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            # WAL lets API readers proceed while the scheduler writes.
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    # MySQL/PostgreSQL configuration
    return create_engine(
        db_url,
        echo=_sql_echo(),
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600
    )
