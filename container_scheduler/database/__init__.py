"""
Database Package.

Provides shared database configuration for the scheduler loop and the API.
"""

from .engine import get_engine
from .session import get_db_session
