"""Tests for CompletionService — material records, totals, completion rules."""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from ecopickup.exceptions import (
    AlreadyTerminalException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
    WrongStateException,
)
from ecopickup.models.enums import ActorRole, PickupStatus, PostStatus
from ecopickup.models.message import Message
from ecopickup.models.pickup import Pickup
from ecopickup.models.post import Post
from ecopickup.modules.pickup.completion_service import CompletionService
from ecopickup.modules.pickup.schemas import CompletionLineIn
from ecopickup.modules.pickup.service import PickupService

LINES = [
    CompletionLineIn(material_id="pet_bottles", quantity=Decimal("5"), payment=Decimal("10")),
    CompletionLineIn(material_id="cardboard", quantity=Decimal("3"), payment=Decimal("4")),
]


async def _stored(session_factory, pickup_id: uuid.UUID) -> Pickup:
    async with session_factory() as session:
        return await session.get(Pickup, pickup_id)


class TestCompletePickup:
    @pytest.mark.asyncio
    async def test_records_lines_and_totals(self, db, in_transit, marketplace, session_factory):
        service = CompletionService(db)
        completed = await service.complete(
            in_transit.id,
            marketplace.giver_id,
            LINES,
            payment_method="cash",
            notes="Bottles rinsed",
        )

        assert completed.status == PickupStatus.COMPLETED
        assert completed.completed_at is not None
        record = completed.completion
        assert record.total_amount == Decimal("8")
        assert record.total_payment == Decimal("14")
        assert [line.material_name for line in record.lines] == ["PET Bottles", "Cardboard"]
        assert record.lines[0].quantity == Decimal("5")
        assert record.payment_method == "cash"
        assert record.notes == "Bottles rinsed"
        assert record.completed_at == completed.completed_at

        stored = await _stored(session_factory, in_transit.id)
        assert stored.status == PickupStatus.COMPLETED
        assert stored.completion["total_amount"] == "8"

    @pytest.mark.asyncio
    async def test_post_is_completed_and_collector_notified(
        self, db, in_transit, marketplace, session_factory
    ):
        await CompletionService(db).complete(in_transit.id, marketplace.giver_id, LINES)

        async with session_factory() as session:
            post = await session.get(Post, marketplace.post_id)
            result = await session.execute(
                select(Message)
                .where(Message.post_id == marketplace.post_id)
                .order_by(Message.created_at.desc())
            )
            latest = result.scalars().first()

        assert post.status == PostStatus.COMPLETED
        assert latest.receiver_id == marketplace.collector_id
        assert "Total collected: 8 kg" in latest.body
        assert latest.metadata_extra["action"] == "pickup_completed"

    @pytest.mark.asyncio
    async def test_completes_from_picking_ongoing(self, db, in_transit, marketplace):
        await PickupService(db).apply_transition(
            in_transit.id,
            marketplace.collector_id,
            ActorRole.COLLECTOR,
            PickupStatus.PICKING_ONGOING,
        )
        completed = await CompletionService(db).complete(
            in_transit.id, marketplace.giver_id, LINES[:1]
        )
        assert completed.status == PickupStatus.COMPLETED
        assert completed.completion.total_amount == Decimal("5")
        assert completed.picking_started_at <= completed.completed_at

    @pytest.mark.asyncio
    async def test_collector_cannot_complete(self, db, in_transit, marketplace):
        service = CompletionService(db)
        # Actor is checked before the lines, so even an empty record is Forbidden
        with pytest.raises(ForbiddenException):
            await service.complete(in_transit.id, marketplace.collector_id, [])

    @pytest.mark.asyncio
    async def test_confirmed_pickup_cannot_complete(self, db, confirmed, marketplace):
        service = CompletionService(db)
        with pytest.raises(WrongStateException) as excinfo:
            await service.complete(confirmed.id, marketplace.giver_id, LINES)
        assert excinfo.type is WrongStateException

    @pytest.mark.asyncio
    async def test_cancelled_pickup_cannot_complete(self, db, proposed, marketplace):
        await PickupService(db).apply_transition(
            proposed.id, marketplace.giver_id, ActorRole.GIVER, PickupStatus.CANCELLED
        )
        with pytest.raises(AlreadyTerminalException):
            await CompletionService(db).complete(proposed.id, marketplace.giver_id, LINES)

    @pytest.mark.asyncio
    async def test_second_completion_is_already_terminal(self, db, in_transit, marketplace):
        service = CompletionService(db)
        await service.complete(in_transit.id, marketplace.giver_id, LINES)
        with pytest.raises(AlreadyTerminalException):
            await service.complete(in_transit.id, marketplace.giver_id, LINES)


class TestCompletionValidation:
    @pytest.mark.asyncio
    async def test_empty_lines(self, db, in_transit, marketplace, session_factory):
        with pytest.raises(ValidationException):
            await CompletionService(db).complete(in_transit.id, marketplace.giver_id, [])
        assert (await _stored(session_factory, in_transit.id)).status == PickupStatus.IN_TRANSIT

    @pytest.mark.asyncio
    async def test_zero_quantity_and_negative_payment(self, db, in_transit, marketplace):
        lines = [
            CompletionLineIn(material_id="pet_bottles", quantity=Decimal("0"), payment=Decimal("1")),
            CompletionLineIn(material_id="cardboard", quantity=Decimal("2"), payment=Decimal("-1")),
        ]
        with pytest.raises(ValidationException) as excinfo:
            await CompletionService(db).complete(in_transit.id, marketplace.giver_id, lines)
        fields = [d["field"] for d in excinfo.value.details]
        assert fields == ["lines[0].quantity", "lines[1].payment"]

    @pytest.mark.asyncio
    async def test_zero_payment_is_allowed(self, db, in_transit, marketplace):
        lines = [CompletionLineIn(material_id="cardboard", quantity=Decimal("12.5"))]
        completed = await CompletionService(db).complete(in_transit.id, marketplace.giver_id, lines)
        assert completed.completion.total_payment == Decimal("0")
        assert completed.completion.total_amount == Decimal("12.5")

    @pytest.mark.asyncio
    async def test_unknown_material(self, db, in_transit, marketplace, session_factory):
        lines = [CompletionLineIn(material_id="uranium", quantity=Decimal("1"))]
        with pytest.raises(NotFoundException):
            await CompletionService(db).complete(in_transit.id, marketplace.giver_id, lines)
        assert (await _stored(session_factory, in_transit.id)).status == PickupStatus.IN_TRANSIT


class TestCompletionSideEffects:
    @pytest.mark.asyncio
    async def test_post_update_failure_keeps_completion(
        self, db, in_transit, marketplace, session_factory
    ):
        service = CompletionService(db)

        service.lifecycle.posts.set_post_status = AsyncMock(
            side_effect=RuntimeError("post store down")
        )

        completed = await service.complete(in_transit.id, marketplace.giver_id, LINES)
        assert completed.status == PickupStatus.COMPLETED
        assert (await _stored(session_factory, in_transit.id)).status == PickupStatus.COMPLETED

        async with session_factory() as session:
            post = await session.get(Post, marketplace.post_id)
        assert post.status == PostStatus.CLAIMED
