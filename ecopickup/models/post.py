"""Post model — the marketplace listing a pickup is scheduled against."""

from __future__ import annotations

import uuid

from sqlalchemy import Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ecopickup.database.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from ecopickup.models.enums import PostStatus, PostType


class Post(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "posts"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    post_type: Mapped[PostType] = mapped_column(nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[PostStatus] = mapped_column(nullable=False, default=PostStatus.ACTIVE)

    __table_args__ = (
        Index("ix_posts_user_id", "user_id"),
        Index("ix_posts_status", "status"),
    )
