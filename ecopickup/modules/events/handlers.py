"""Registry of coroutine handlers run by the outbox processor."""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EventHandler = Callable[[AsyncSession, dict], Awaitable[None]]


class EventHandlerRegistry:
    """Process-wide mapping of event type to handlers.

    A handler receives the processor's session and the event payload. Its
    writes commit together with the event being marked COMPLETED, so a
    handler that raises leaves nothing behind and the event is retried.
    """

    _handlers: dict[str, list[EventHandler]] = defaultdict(list)

    @classmethod
    def register(cls, event_type: str, handler: EventHandler) -> None:
        # Registration runs at import time in both the API and the worker
        if handler not in cls._handlers[event_type]:
            cls._handlers[event_type].append(handler)
            logger.debug("Handler %s subscribed to %s", handler.__name__, event_type)

    @classmethod
    def on(cls, *event_types: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of ``register`` for one or more event types."""

        def decorator(handler: EventHandler) -> EventHandler:
            for event_type in event_types:
                cls.register(event_type, handler)
            return handler

        return decorator

    @classmethod
    def get_handlers(cls, event_type: str) -> list[EventHandler]:
        return list(cls._handlers.get(event_type, ()))

    @classmethod
    async def dispatch(cls, event_type: str, session: AsyncSession, payload: dict) -> list[dict]:
        """Run every handler for ``event_type``; one failing does not stop the rest."""
        outcomes = []
        for handler in cls.get_handlers(event_type):
            try:
                await handler(session, payload)
            except Exception as exc:
                logger.exception("Outbox handler %s failed on %s", handler.__name__, event_type)
                outcomes.append({"handler": handler.__name__, "status": "error", "error": str(exc)})
            else:
                outcomes.append({"handler": handler.__name__, "status": "ok"})
        return outcomes

    @classmethod
    def clear(cls) -> None:
        cls._handlers.clear()
