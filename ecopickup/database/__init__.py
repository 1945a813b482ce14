from ecopickup.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from ecopickup.database.engine import async_session, engine
from ecopickup.database.errors import store_errors
from ecopickup.database.session import get_db, get_session_factory

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "get_db",
    "get_session_factory",
    "store_errors",
]
