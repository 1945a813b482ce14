"""Outbox handlers for pickup events.

The lifecycle service updates the linked post right after a transition
commits, but that step is best effort. These handlers re-apply the same
post status from the outbox so a failed attempt is eventually repaired.
They are idempotent and skip events the pickup has since moved past.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.models.enums import PostStatus
from ecopickup.models.pickup import Pickup
from ecopickup.modules.events.handlers import EventHandlerRegistry
from ecopickup.modules.pickup.constants import (
    EVENT_PICKUP_CANCELLED,
    EVENT_PICKUP_COMPLETED,
    EVENT_PICKUP_CONFIRMED,
    TERMINAL_STATUSES,
)
from ecopickup.modules.post.service import PostService

logger = logging.getLogger(__name__)


async def sync_post_status(session: AsyncSession, payload: dict) -> None:
    """Apply the post status carried by a pickup event, if it still holds."""
    target = payload.get("post_status")
    if not target:
        return

    pickup_id = uuid.UUID(payload["pickup_id"])
    post_id = uuid.UUID(payload["post_id"])
    pickup = await session.get(Pickup, pickup_id)
    if pickup is None or pickup.status.value != payload["to_status"]:
        logger.info("Skipping post sync for pickup %s: status moved on", pickup_id)
        return

    status = PostStatus(target)
    if status == PostStatus.ACTIVE:
        result = await session.execute(
            select(Pickup.id).where(
                Pickup.post_id == post_id,
                Pickup.id != pickup_id,
                Pickup.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        if result.first() is not None:
            logger.info("Skipping post %s reopen: another pickup is active", post_id)
            return

    await PostService(session).set_post_status(post_id, status)


def register_pickup_handlers() -> None:
    on_post_change = EventHandlerRegistry.on(
        EVENT_PICKUP_CONFIRMED, EVENT_PICKUP_COMPLETED, EVENT_PICKUP_CANCELLED
    )
    on_post_change(sync_post_status)
