"""Transactional outbox: events are written with the state change that caused them."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.models.enums import EventStatus
from ecopickup.models.event_outbox import EventOutbox


class OutboxService:
    """Stages events in the caller's transaction and tracks their delivery status."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def publish_event(
        self,
        event_type: str,
        aggregate_type: str,
        aggregate_id: str,
        payload: dict,
        schema_version: int = 1,
    ) -> EventOutbox:
        """Stage a PENDING event; it becomes visible only when the caller commits."""
        event = EventOutbox(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=payload,
            status=EventStatus.PENDING,
            schema_version=schema_version,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def get_pending_events(self, batch_size: int = 50) -> list[EventOutbox]:
        """Oldest PENDING events, skipping rows another worker has locked."""
        result = await self.session.execute(
            select(EventOutbox)
            .where(EventOutbox.status == EventStatus.PENDING)
            .order_by(EventOutbox.created_at.asc())
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        )
        return list(result.scalars().all())

    async def _set(self, event_id: uuid.UUID, **values) -> None:
        await self.session.execute(
            update(EventOutbox).where(EventOutbox.id == event_id).values(**values)
        )
        await self.session.flush()

    async def mark_processing(self, event_id: uuid.UUID) -> None:
        await self._set(event_id, status=EventStatus.PROCESSING)

    async def mark_completed(self, event_id: uuid.UUID) -> None:
        await self._set(event_id, status=EventStatus.COMPLETED, processed_at=datetime.now(UTC))

    async def mark_failed(self, event_id: uuid.UUID, error: str) -> None:
        """Record the failure; back to PENDING until ``max_retries`` is used up, then FAILED."""
        result = await self.session.execute(
            select(EventOutbox.retry_count, EventOutbox.max_retries).where(
                EventOutbox.id == event_id
            )
        )
        retry_count, max_retries = result.one()
        attempts = retry_count + 1
        await self._set(
            event_id,
            retry_count=attempts,
            last_error=error,
            status=EventStatus.FAILED if attempts >= max_retries else EventStatus.PENDING,
        )

    async def delete_completed_before(self, cutoff: datetime) -> int:
        """Delete COMPLETED events processed before ``cutoff``. Returns the row count."""
        result = await self.session.execute(
            delete(EventOutbox).where(
                EventOutbox.status == EventStatus.COMPLETED,
                EventOutbox.processed_at < cutoff,
            )
        )
        await self.session.flush()
        return result.rowcount
