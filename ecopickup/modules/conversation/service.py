"""Conversation log — append-only system notices written by the pickup lifecycle."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.models.enums import MessageType
from ecopickup.models.message import Message

logger = logging.getLogger(__name__)


class ConversationService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def append_system_message(
        self,
        post_id: uuid.UUID,
        recipient_id: uuid.UUID,
        text: str,
        metadata: dict | None = None,
    ) -> Message:
        """Append a system notice to the post's conversation, addressed to one party."""
        message = Message(
            post_id=post_id,
            sender_id=None,
            receiver_id=recipient_id,
            message_type=MessageType.SYSTEM,
            body=text,
            metadata_extra=metadata or {},
        )
        self.db.add(message)
        await self.db.flush()
        logger.debug("System notice on post %s for %s: %s", post_id, recipient_id, text)
        return message
