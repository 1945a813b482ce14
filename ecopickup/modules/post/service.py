"""Post store — the slice of post management the pickup lifecycle depends on."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.exceptions import NotFoundException
from ecopickup.models.enums import PostStatus
from ecopickup.models.post import Post

logger = logging.getLogger(__name__)


class PostService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_post(self, post_id: uuid.UUID) -> Post:
        """Get a post by ID. Raises NotFoundException if not found."""
        result = await self.db.execute(select(Post).where(Post.id == post_id))
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundException(f"Post {post_id} not found")
        return post

    async def set_post_status(self, post_id: uuid.UUID, status: PostStatus) -> Post:
        """Set a post's status. Idempotent: re-applying the same status is a no-op."""
        post = await self.get_post(post_id)
        if post.status != status:
            logger.info("Post %s status %s -> %s", post_id, post.status.value, status.value)
            post.status = status
            await self.db.flush()
        return post
