"""Message model — append-only conversation log shared by a post's parties."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ecopickup.database.base import AwareDateTime, Base, JSONType, UUIDPrimaryKeyMixin, utcnow
from ecopickup.models.enums import MessageType


class Message(UUIDPrimaryKeyMixin, Base):
    """Chat entry. System notices have no sender. No updated_at column."""

    __tablename__ = "messages"

    post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    receiver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    message_type: Mapped[MessageType] = mapped_column(nullable=False, default=MessageType.TEXT)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_extra: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(AwareDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_messages_post_id_created_at", "post_id", "created_at"),
        Index("ix_messages_receiver_id", "receiver_id"),
    )
