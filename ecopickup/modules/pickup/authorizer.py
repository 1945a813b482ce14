"""Transition authorization for pickups.

``authorize`` is a pure function of the pickup as last read, the acting
user and the requested status. It performs no I/O; the current time is
injectable so lead-time rules can be tested deterministically.

Checks run in a fixed order so the same request always yields the same
denial:

1. ``Proposed`` is never a valid target.
2. The actor's role must be one allowed to request the target status.
3. The actor must be the matching party on this pickup.
4. The pickup must not be Completed or Cancelled.
5. The (current, requested) pair must be in the transition table.
6. A proposal cannot be confirmed by the party who proposed it.
7. Cancelling a Confirmed pickup needs strictly more than the configured
   lead time before the scheduled date and time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

from ecopickup.config import settings
from ecopickup.exceptions import (
    AlreadyTerminalException,
    AppException,
    ForbiddenException,
    LeadTimeTooShortException,
    WrongStateException,
)
from ecopickup.models.enums import ActorRole, DenialReason, PickupStatus
from ecopickup.models.pickup import Pickup
from ecopickup.modules.pickup.constants import (
    LEAD_TIME_GUARDED,
    TARGET_ROLES,
    TERMINAL_STATUSES,
    VALID_PICKUP_TRANSITIONS,
)

_DENIAL_EXCEPTIONS: dict[DenialReason, type[AppException]] = {
    DenialReason.WRONG_ACTOR: ForbiddenException,
    DenialReason.WRONG_STATE: WrongStateException,
    DenialReason.ALREADY_TERMINAL: AlreadyTerminalException,
    DenialReason.LEAD_TIME_TOO_SHORT: LeadTimeTooShortException,
}

_ACTOR_MESSAGES: dict[PickupStatus, str] = {
    PickupStatus.CONFIRMED: "Only the giver on this pickup can confirm it",
    PickupStatus.IN_TRANSIT: "Only the collector on this pickup can mark it in transit",
    PickupStatus.PICKING_ONGOING: "Only the collector on this pickup can start picking",
    PickupStatus.COMPLETED: "Only the giver on this pickup can complete it",
    PickupStatus.CANCELLED: "Only the giver or collector on this pickup can cancel it",
}


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: DenialReason | None = None
    message: str = ""

    @classmethod
    def allow(cls) -> TransitionDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenialReason, message: str) -> TransitionDecision:
        return cls(allowed=False, reason=reason, message=message)

    def raise_for_denial(self) -> None:
        """Raise the domain exception matching the denial reason, if denied."""
        if self.allowed:
            return
        exc_class = _DENIAL_EXCEPTIONS[self.reason]
        raise exc_class(self.message, details=[{"reason": self.reason.value}])


def scheduled_at(pickup: Pickup, timezone: str | None = None) -> datetime:
    """The pickup's scheduled instant, interpreting date and time in the marketplace timezone."""
    zone = ZoneInfo(timezone or settings.pickup_timezone)
    return datetime.combine(pickup.pickup_date, pickup.pickup_time, tzinfo=zone)


def cancellation_deadline(pickup: Pickup) -> datetime:
    """Latest instant (exclusive) at which a Confirmed pickup may still be cancelled."""
    return scheduled_at(pickup) - timedelta(hours=settings.cancellation_lead_hours)


def is_party(pickup: Pickup, actor_id: uuid.UUID) -> bool:
    return actor_id in (pickup.giver_id, pickup.collector_id)


def other_party(pickup: Pickup, actor_id: uuid.UUID) -> uuid.UUID:
    """The party who did not act; notices are addressed to them."""
    return pickup.collector_id if actor_id == pickup.giver_id else pickup.giver_id


def _party_id_for(pickup: Pickup, role: ActorRole) -> uuid.UUID | None:
    if role == ActorRole.GIVER:
        return pickup.giver_id
    if role == ActorRole.COLLECTOR:
        return pickup.collector_id
    return None


def authorize(
    pickup: Pickup,
    actor_id: uuid.UUID,
    actor_role: ActorRole,
    requested: PickupStatus,
    now: datetime | None = None,
) -> TransitionDecision:
    """Decide whether ``actor_id`` acting as ``actor_role`` may move ``pickup`` to ``requested``."""
    if requested == PickupStatus.PROPOSED:
        return TransitionDecision.deny(
            DenialReason.WRONG_STATE, "A pickup cannot be moved back to Proposed"
        )

    if actor_role not in TARGET_ROLES[requested]:
        return TransitionDecision.deny(DenialReason.WRONG_ACTOR, _ACTOR_MESSAGES[requested])

    if _party_id_for(pickup, actor_role) != actor_id:
        return TransitionDecision.deny(DenialReason.WRONG_ACTOR, _ACTOR_MESSAGES[requested])

    current = pickup.status
    if current in TERMINAL_STATUSES:
        return TransitionDecision.deny(
            DenialReason.ALREADY_TERMINAL,
            f"Pickup is already {current.value} and can no longer change",
        )

    if requested not in VALID_PICKUP_TRANSITIONS[current]:
        return TransitionDecision.deny(
            DenialReason.WRONG_STATE,
            f"Cannot move a pickup from {current.value} to {requested.value}",
        )

    if requested == PickupStatus.CONFIRMED and actor_id == pickup.proposed_by:
        return TransitionDecision.deny(
            DenialReason.WRONG_ACTOR,
            "You proposed this pickup; the other party has to confirm it",
        )

    if requested == PickupStatus.CANCELLED and current in LEAD_TIME_GUARDED:
        now = now or datetime.now(UTC)
        remaining = scheduled_at(pickup) - now
        if remaining <= timedelta(hours=settings.cancellation_lead_hours):
            hours_left = max(remaining.total_seconds(), 0) / 3600
            return TransitionDecision.deny(
                DenialReason.LEAD_TIME_TOO_SHORT,
                f"Confirmed pickups can only be cancelled more than "
                f"{settings.cancellation_lead_hours} hours before the scheduled time "
                f"({hours_left:.1f} hours remaining)",
            )

    return TransitionDecision.allow()


def authorize_edit(pickup: Pickup, actor_id: uuid.UUID) -> TransitionDecision:
    """Only the proposer may change the details, and only while the pickup is Proposed."""
    if actor_id != pickup.proposed_by:
        return TransitionDecision.deny(
            DenialReason.WRONG_ACTOR, "Only the party who proposed this pickup can edit it"
        )
    if pickup.status in TERMINAL_STATUSES:
        return TransitionDecision.deny(
            DenialReason.ALREADY_TERMINAL,
            f"Pickup is already {pickup.status.value} and can no longer change",
        )
    if pickup.status != PickupStatus.PROPOSED:
        return TransitionDecision.deny(
            DenialReason.WRONG_STATE,
            f"Pickup details can only be edited while Proposed (currently {pickup.status.value})",
        )
    return TransitionDecision.allow()
