"""Pickup completion: record collected materials and move the pickup to Completed."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ecopickup.database.errors import store_errors
from ecopickup.exceptions import ValidationException
from ecopickup.models.enums import ActorRole, PickupStatus
from ecopickup.models.pickup import Pickup
from ecopickup.modules.material.service import MaterialService
from ecopickup.modules.pickup.authorizer import authorize
from ecopickup.modules.pickup.constants import TRANSITION_NOTICES
from ecopickup.modules.pickup.live_feed import PickupFeed
from ecopickup.modules.pickup.schemas import CompletionLineIn, PickupResponse
from ecopickup.modules.pickup.service import PickupService

logger = logging.getLogger(__name__)


class CompletionService:
    def __init__(self, db: AsyncSession, feed: PickupFeed | None = None):
        self.db = db
        self.lifecycle = PickupService(db, feed=feed)
        self.materials = MaterialService(db)

    async def complete(
        self,
        pickup_id: uuid.UUID,
        actor_id: uuid.UUID,
        lines: Sequence[CompletionLineIn],
        payment_method: str | None = None,
        notes: str | None = None,
    ) -> PickupResponse:
        """Complete a pickup on behalf of its giver.

        The pickup is checked first, so a caller who may not complete it
        learns that before any line-item problem. Materials are resolved
        against the catalog; totals are recomputed here and never taken
        from the caller. The record and the status change commit together.
        """
        async with store_errors("load pickup for completion"):
            pickup = await self.lifecycle.get_pickup(pickup_id)
        authorize(pickup, actor_id, ActorRole.GIVER, PickupStatus.COMPLETED).raise_for_denial()

        self._validate_lines(lines)

        async with store_errors("resolve completion materials"):
            catalog = await self.materials.get_materials({line.material_id for line in lines})

        record_lines = [
            {
                "material_id": line.material_id,
                "material_name": catalog[line.material_id].display_name,
                "quantity": str(line.quantity),
                "payment": str(line.payment),
            }
            for line in lines
        ]
        total_amount = sum((line.quantity for line in lines), Decimal("0"))
        total_payment = sum((line.payment for line in lines), Decimal("0"))

        def attach_record(stamped: Pickup) -> None:
            stamped.completion = {
                "lines": record_lines,
                "total_amount": str(total_amount),
                "total_payment": str(total_payment),
                "payment_method": payment_method,
                "notes": notes,
                "completed_at": stamped.completed_at.isoformat(),
            }

        notice = (
            f"{TRANSITION_NOTICES[PickupStatus.COMPLETED]} "
            f"Total collected: {total_amount} kg, payment: {total_payment}."
        )
        snapshot = await self.lifecycle.commit_transition(
            pickup_id,
            actor_id,
            ActorRole.GIVER,
            PickupStatus.COMPLETED,
            prepare=attach_record,
            notice=notice,
        )
        logger.info(
            "Pickup %s completion recorded: %d lines, %s kg, payment %s",
            pickup_id,
            len(record_lines),
            total_amount,
            total_payment,
        )
        return snapshot

    @staticmethod
    def _validate_lines(lines: Sequence[CompletionLineIn]) -> None:
        if not lines:
            raise ValidationException(
                "At least one collected material is required",
                details=[{"field": "lines", "message": "must not be empty"}],
            )
        problems: list[dict] = []
        for index, line in enumerate(lines):
            if line.quantity <= 0:
                problems.append(
                    {"field": f"lines[{index}].quantity", "message": "must be greater than zero"}
                )
            if line.payment < 0:
                problems.append(
                    {"field": f"lines[{index}].payment", "message": "must not be negative"}
                )
        if problems:
            raise ValidationException("Invalid completion line items", details=problems)
