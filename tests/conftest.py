"""Pytest fixtures for EcoPickup tests.

Every test gets its own SQLite file database so separate sessions see each
other's commits, the way two API workers would.
"""

import uuid
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import ecopickup.models  # noqa: F401  (populate metadata)
from ecopickup.config import settings
from ecopickup.database.base import Base
from ecopickup.models.enums import ActorRole, PickupStatus, PostStatus, PostType
from ecopickup.models.material import Material
from ecopickup.models.post import Post
from ecopickup.modules.pickup.live_feed import InMemoryPickupFeed
from ecopickup.modules.pickup.schemas import PickupResponse
from ecopickup.modules.pickup.service import PickupService


@dataclass
class Marketplace:
    giver_id: uuid.UUID
    collector_id: uuid.UUID
    other_collector_id: uuid.UUID
    admin_id: uuid.UUID
    post_id: uuid.UUID
    initiative_post_id: uuid.UUID


def local_today() -> date:
    return datetime.now(ZoneInfo(settings.pickup_timezone)).date()


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ecopickup.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def feed() -> AsyncGenerator[InMemoryPickupFeed, None]:
    pickup_feed = InMemoryPickupFeed()
    yield pickup_feed
    await pickup_feed.close()


@pytest_asyncio.fixture
async def marketplace(session_factory) -> Marketplace:
    """One giver with a waste post and an initiative post, two collectors, an admin, a catalog."""
    giver_id = uuid.uuid4()
    async with session_factory() as session:
        post = Post(
            user_id=giver_id,
            post_type=PostType.WASTE,
            title="Sorted PET bottles and cardboard",
            status=PostStatus.ACTIVE,
        )
        initiative = Post(
            user_id=giver_id,
            post_type=PostType.INITIATIVE,
            title="Barangay clean-up drive",
            status=PostStatus.ACTIVE,
        )
        session.add_all([
            post,
            initiative,
            Material(id="pet_bottles", display_name="PET Bottles", category="Plastic"),
            Material(id="cardboard", display_name="Cardboard", category="Paper"),
        ])
        await session.commit()
        return Marketplace(
            giver_id=giver_id,
            collector_id=uuid.uuid4(),
            other_collector_id=uuid.uuid4(),
            admin_id=uuid.uuid4(),
            post_id=post.id,
            initiative_post_id=initiative.id,
        )


@pytest.fixture
def make_details() -> Callable[..., dict]:
    """Build proposal details; the pickup defaults to three days out at 10:00 local time."""

    def _make(days_ahead: int = 3, at: time = time(10, 0), **overrides) -> dict:
        details = {
            "pickup_date": local_today() + timedelta(days=days_ahead),
            "pickup_time": at,
            "pickup_location": {"address": "12 Mabini St, Quezon City", "lat": 14.65, "lng": 121.03},
            "contact_person": "Maria Santos",
            "contact_number": "+63 917 555 0101",
            "alternate_contact": None,
            "special_instructions": "Bags are by the gate",
        }
        details.update(overrides)
        return details

    return _make


@pytest_asyncio.fixture
async def proposed(db, feed, marketplace, make_details) -> PickupResponse:
    service = PickupService(db, feed=feed)
    return await service.propose_pickup(
        marketplace.post_id, marketplace.collector_id, make_details()
    )


@pytest_asyncio.fixture
async def confirmed(db, feed, marketplace, proposed) -> PickupResponse:
    service = PickupService(db, feed=feed)
    return await service.apply_transition(
        proposed.id, marketplace.giver_id, ActorRole.GIVER, PickupStatus.CONFIRMED
    )


@pytest_asyncio.fixture
async def in_transit(db, feed, marketplace, confirmed) -> PickupResponse:
    service = PickupService(db, feed=feed)
    return await service.apply_transition(
        confirmed.id, marketplace.collector_id, ActorRole.COLLECTOR, PickupStatus.IN_TRANSIT
    )
