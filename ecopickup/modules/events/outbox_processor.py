"""OutboxProcessor — drains pending outbox events through the handler registry."""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecopickup.modules.events.handlers import EventHandlerRegistry
from ecopickup.modules.events.outbox_service import OutboxService

logger = logging.getLogger(__name__)


class OutboxProcessor:
    """Processes pending outbox events one transaction per event.

    Rows are fetched with ``FOR UPDATE SKIP LOCKED`` so several workers can
    drain the outbox concurrently. Handlers must be idempotent: an event whose
    handler failed is retried until ``max_retries`` and then marked FAILED.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def process_batch(self, batch_size: int = 50) -> dict:
        """Process a batch of pending events.

        Returns dict with 'processed' and 'failed' counts.
        """
        processed_count = 0
        failed_count = 0

        async with self.session_factory() as session:
            outbox = OutboxService(session)
            pending = await outbox.get_pending_events(batch_size=batch_size)
            batch = [(event.id, event.event_type, dict(event.payload)) for event in pending]
            await session.commit()

        for event_id, event_type, payload in batch:
            async with self.session_factory() as session:
                outbox = OutboxService(session)
                await outbox.mark_processing(event_id)

                results = await EventHandlerRegistry.dispatch(event_type, session, payload)
                handler_errors = [r for r in results if r["status"] == "error"]

                if handler_errors:
                    await session.rollback()
                    error_messages = "; ".join(
                        f"{r['handler']}: {r['error']}" for r in handler_errors
                    )
                    await outbox.mark_failed(event_id, f"Handler errors: {error_messages}")
                    await session.commit()
                    failed_count += 1
                    continue

                await outbox.mark_completed(event_id)
                await session.commit()
                processed_count += 1

        if batch:
            logger.info(
                "Outbox batch done: %d processed, %d failed", processed_count, failed_count
            )
        return {"processed": processed_count, "failed": failed_count}

    async def cleanup_expired(self, retention_days: int = 7) -> int:
        """Delete completed outbox entries older than the retention window."""
        cutoff = datetime.now(UTC) - timedelta(days=retention_days)
        async with self.session_factory() as session:
            deleted = await OutboxService(session).delete_completed_before(cutoff)
            await session.commit()
        logger.info("Removed %d completed outbox events older than %s", deleted, cutoff)
        return deleted
