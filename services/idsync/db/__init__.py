"""idsync database module."""

from .models import Base
from .session import get_db, get_db_health, init_db

__all__ = ["Base", "get_db", "get_db_health", "init_db"]
