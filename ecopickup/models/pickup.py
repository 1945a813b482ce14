"""Pickup model — one scheduled hand-off between a giver and a collector."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from ecopickup.database.base import (
    AwareDateTime,
    Base,
    JSONType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)
from ecopickup.models.enums import PickupStatus

_ACTIVE_PICKUP_PREDICATE = text("status NOT IN ('COMPLETED', 'CANCELLED')")


class Pickup(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Never deleted: completed and cancelled pickups remain as audit records.

    ``version`` is the optimistic-concurrency token; every UPDATE is issued
    as ``... WHERE id = :id AND version = :seen`` and fails with
    ``StaleDataError`` when another writer got there first.
    """

    __tablename__ = "pickups"

    post_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("posts.id", ondelete="RESTRICT"), nullable=False
    )
    giver_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    collector_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    proposed_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    status: Mapped[PickupStatus] = mapped_column(nullable=False, default=PickupStatus.PROPOSED)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Schedule, expressed in the marketplace's local timezone
    pickup_date: Mapped[date] = mapped_column(Date, nullable=False)
    pickup_time: Mapped[time] = mapped_column(Time, nullable=False)
    pickup_location: Mapped[Any] = mapped_column(JSONType, nullable=False)

    # Contact
    contact_person: Mapped[str] = mapped_column(String(200), nullable=False)
    contact_number: Mapped[str] = mapped_column(String(50), nullable=False)
    alternate_contact: Mapped[str | None] = mapped_column(String(50))
    special_instructions: Mapped[str | None] = mapped_column(Text)

    # Transition timestamps
    proposed_at: Mapped[datetime] = mapped_column(AwareDateTime(), nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(AwareDateTime())
    in_transit_at: Mapped[datetime | None] = mapped_column(AwareDateTime())
    picking_started_at: Mapped[datetime | None] = mapped_column(AwareDateTime())
    completed_at: Mapped[datetime | None] = mapped_column(AwareDateTime())
    cancelled_at: Mapped[datetime | None] = mapped_column(AwareDateTime())

    # Cancellation
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Completion record (lines, totals, payment method, notes), embedded
    completion: Mapped[dict | None] = mapped_column(JSONType)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("giver_id <> collector_id", name="ck_pickups_distinct_parties"),
        CheckConstraint(
            "completed_at IS NULL OR cancelled_at IS NULL",
            name="ck_pickups_single_terminal_stamp",
        ),
        Index("ix_pickups_post_id", "post_id"),
        Index("ix_pickups_giver_id", "giver_id"),
        Index("ix_pickups_collector_id", "collector_id"),
        Index("ix_pickups_status", "status"),
        Index(
            "uq_pickups_one_active_per_post",
            "post_id",
            unique=True,
            postgresql_where=_ACTIVE_PICKUP_PREDICATE,
            sqlite_where=_ACTIVE_PICKUP_PREDICATE,
        ),
    )

    def __repr__(self) -> str:
        return f"<Pickup id={self.id} post={self.post_id} status={self.status} v{self.version}>"
