"""Celery tasks for event outbox processing."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from celery_app import celery
from ecopickup.config import settings
from ecopickup.modules.events.outbox_processor import OutboxProcessor
from ecopickup.modules.pickup.handlers import register_pickup_handlers

register_pickup_handlers()

T = TypeVar("T")


async def _with_processor(run: Callable[[OutboxProcessor], Awaitable[T]]) -> T:
    # Each task run owns its event loop, so it gets its own engine as well.
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return await run(OutboxProcessor(session_factory))
    finally:
        await engine.dispose()


@celery.task(name="ecopickup.modules.events.tasks.process_outbox")
def process_outbox():
    """Process a batch of pending outbox events."""
    return asyncio.run(
        _with_processor(lambda p: p.process_batch(batch_size=settings.event_outbox_batch_size))
    )


@celery.task(name="ecopickup.modules.events.tasks.cleanup_processed_events")
def cleanup_processed_events():
    """Delete old completed outbox entries."""
    return asyncio.run(
        _with_processor(lambda p: p.cleanup_expired(settings.event_outbox_retention_days))
    )
