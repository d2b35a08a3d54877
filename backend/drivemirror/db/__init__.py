"""Database package for Drive Mirror."""

from drivemirror.db.base import Base
from drivemirror.db.session import async_session_maker, engine, get_db

__all__ = [
    "Base",
    "async_session_maker",
    "engine",
    "get_db",
]
