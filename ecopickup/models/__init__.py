# Import all models so SQLAlchemy metadata is populated for Alembic and create_all
from ecopickup.models.enums import (
    ActorRole,
    DenialReason,
    EventStatus,
    MessageType,
    PickupStatus,
    PostStatus,
    PostType,
)
from ecopickup.models.event_outbox import EventOutbox
from ecopickup.models.material import Material
from ecopickup.models.message import Message
from ecopickup.models.pickup import Pickup
from ecopickup.models.post import Post

__all__ = [
    "ActorRole",
    "DenialReason",
    "EventOutbox",
    "EventStatus",
    "Material",
    "Message",
    "MessageType",
    "Pickup",
    "PickupStatus",
    "Post",
    "PostStatus",
    "PostType",
]
