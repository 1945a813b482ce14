"""Pydantic v2 schemas for the pickup lifecycle API."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ecopickup.models.enums import DenialReason, PickupStatus
from ecopickup.modules.pickup.constants import REQUIRED_DETAIL_FIELDS

# ---------------------------------------------------------------------------
# Proposal schemas
# ---------------------------------------------------------------------------


class PickupDetails(BaseModel):
    """Schedule and contact details agreed between the two parties."""

    pickup_date: date
    pickup_time: time
    pickup_location: dict[str, Any] | str
    contact_person: str = Field(..., min_length=1, max_length=200)
    contact_number: str = Field(..., min_length=1, max_length=50)
    alternate_contact: str | None = Field(None, max_length=50)
    special_instructions: str | None = Field(None, max_length=2000)


class PickupProposalCreate(PickupDetails):
    post_id: uuid.UUID


class PickupProposalUpdate(BaseModel):
    """Partial update of a Proposed pickup; at least one field is required."""

    pickup_date: date | None = None
    pickup_time: time | None = None
    pickup_location: dict[str, Any] | str | None = None
    contact_person: str | None = Field(None, min_length=1, max_length=200)
    contact_number: str | None = Field(None, min_length=1, max_length=50)
    alternate_contact: str | None = Field(None, max_length=50)
    special_instructions: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def _require_a_change(self) -> PickupProposalUpdate:
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        cleared = [
            field
            for field in REQUIRED_DETAIL_FIELDS
            if field in self.model_fields_set and getattr(self, field) is None
        ]
        if cleared:
            raise ValueError(f"Required pickup details cannot be null: {', '.join(cleared)}")
        return self


# ---------------------------------------------------------------------------
# Transition request schemas
# ---------------------------------------------------------------------------


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class CompletionLineIn(BaseModel):
    """One collected material: weight in kilograms and the amount paid for it."""

    material_id: str = Field(..., min_length=1, max_length=64)
    quantity: Decimal
    payment: Decimal = Decimal("0")


class CompletionRequest(BaseModel):
    lines: list[CompletionLineIn]
    payment_method: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=2000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class CompletionLineResponse(BaseModel):
    material_id: str
    material_name: str
    quantity: Decimal
    payment: Decimal


class CompletionRecordResponse(BaseModel):
    lines: list[CompletionLineResponse]
    total_amount: Decimal
    total_payment: Decimal
    payment_method: str | None = None
    notes: str | None = None
    completed_at: datetime


class PickupResponse(BaseModel):
    """Snapshot of a pickup; the same shape is pushed to live viewers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    post_id: uuid.UUID
    giver_id: uuid.UUID
    collector_id: uuid.UUID
    proposed_by: uuid.UUID
    status: PickupStatus
    version: int
    pickup_date: date
    pickup_time: time
    pickup_location: dict[str, Any] | str
    contact_person: str
    contact_number: str
    alternate_contact: str | None = None
    special_instructions: str | None = None
    proposed_at: datetime
    confirmed_at: datetime | None = None
    in_transit_at: datetime | None = None
    picking_started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancelled_by: uuid.UUID | None = None
    cancellation_reason: str | None = None
    completion: CompletionRecordResponse | None = None
    created_at: datetime
    updated_at: datetime


class PickupListResponse(BaseModel):
    items: list[PickupResponse]
    total: int


class CancellationCheckResponse(BaseModel):
    can_cancel: bool
    reason: DenialReason | None = None
    message: str
    hours_until_pickup: float
    deadline: datetime | None = None
