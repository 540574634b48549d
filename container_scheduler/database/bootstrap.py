"""
Database bootstrap utilities.

Creates missing tables (SQLAlchemy metadata `create_all`). Idempotent.
"""

from __future__ import annotations

import logging

from .engine import get_engine
from ..models import Base

logger = logging.getLogger(__name__)


def init_db() -> None:
    """
    Idempotent DB init for local/dev deployments.

    For production, prefer proper migrations; this keeps dev/test environments safe and simple.
    """
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.debug("Database schema ensured on %s", engine.url.get_backend_name())
