"""Translation of driver-level storage failures into domain errors."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from ecopickup.exceptions import StoreUnavailableException

logger = logging.getLogger(__name__)


@asynccontextmanager
async def store_errors(operation: str) -> AsyncIterator[None]:
    """Raise StoreUnavailableException for connection loss, lock timeouts and I/O timeouts."""
    try:
        yield
    except (OperationalError, InterfaceError, TimeoutError) as exc:
        logger.warning("Store unavailable during %s: %s", operation, exc)
        raise StoreUnavailableException(
            f"Storage is temporarily unavailable ({operation}). Please retry."
        ) from exc


def violates_unique(exc: IntegrityError, index_name: str, column: str) -> bool:
    """Whether ``exc`` is a duplicate on ``index_name``.

    PostgreSQL names the index in the message; SQLite only names the
    ``table.column`` that collided.
    """
    message = str(exc.orig)
    return index_name in message or f"UNIQUE constraint failed: {column}" in message
