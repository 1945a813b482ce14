"""Pickup state machine transitions, acting roles, event types and notice texts."""

from __future__ import annotations

from ecopickup.models.enums import ActorRole, PickupStatus, PostStatus

# Valid transitions: from_status -> [allowed to_statuses]
VALID_PICKUP_TRANSITIONS: dict[PickupStatus, list[PickupStatus]] = {
    PickupStatus.PROPOSED: [PickupStatus.CONFIRMED, PickupStatus.CANCELLED],
    PickupStatus.CONFIRMED: [PickupStatus.IN_TRANSIT, PickupStatus.CANCELLED],
    PickupStatus.IN_TRANSIT: [
        PickupStatus.PICKING_ONGOING,
        PickupStatus.COMPLETED,
        PickupStatus.CANCELLED,
    ],
    PickupStatus.PICKING_ONGOING: [PickupStatus.COMPLETED, PickupStatus.CANCELLED],
    PickupStatus.COMPLETED: [],
    PickupStatus.CANCELLED: [],
}

# Terminal statuses (no further transitions possible)
TERMINAL_STATUSES: set[PickupStatus] = {
    PickupStatus.COMPLETED,
    PickupStatus.CANCELLED,
}

# Which party may request each target status
TARGET_ROLES: dict[PickupStatus, frozenset[ActorRole]] = {
    PickupStatus.CONFIRMED: frozenset({ActorRole.GIVER}),
    PickupStatus.IN_TRANSIT: frozenset({ActorRole.COLLECTOR}),
    PickupStatus.PICKING_ONGOING: frozenset({ActorRole.COLLECTOR}),
    PickupStatus.COMPLETED: frozenset({ActorRole.GIVER}),
    PickupStatus.CANCELLED: frozenset({ActorRole.GIVER, ActorRole.COLLECTOR}),
}

# Cancelling from these statuses requires settings.cancellation_lead_hours of notice
LEAD_TIME_GUARDED: set[PickupStatus] = {PickupStatus.CONFIRMED}

# Statuses in which the pickup holds its post claimed
CLAIMING_STATUSES: set[PickupStatus] = {
    PickupStatus.CONFIRMED,
    PickupStatus.IN_TRANSIT,
    PickupStatus.PICKING_ONGOING,
}

# Timestamp column written on entering each status
TIMESTAMP_FIELDS: dict[PickupStatus, str] = {
    PickupStatus.PROPOSED: "proposed_at",
    PickupStatus.CONFIRMED: "confirmed_at",
    PickupStatus.IN_TRANSIT: "in_transit_at",
    PickupStatus.PICKING_ONGOING: "picking_started_at",
    PickupStatus.COMPLETED: "completed_at",
    PickupStatus.CANCELLED: "cancelled_at",
}

# Fields the proposer may change while the pickup is still Proposed
EDITABLE_FIELDS: tuple[str, ...] = (
    "pickup_date",
    "pickup_time",
    "pickup_location",
    "contact_person",
    "contact_number",
    "alternate_contact",
    "special_instructions",
)

# Editable fields that may be changed but never cleared
REQUIRED_DETAIL_FIELDS: tuple[str, ...] = (
    "pickup_date",
    "pickup_time",
    "pickup_location",
    "contact_person",
    "contact_number",
)

# Event type strings for the outbox
EVENT_PICKUP_PROPOSED = "pickup.proposed"
EVENT_PICKUP_UPDATED = "pickup.updated"
EVENT_PICKUP_CONFIRMED = "pickup.confirmed"
EVENT_PICKUP_IN_TRANSIT = "pickup.in_transit"
EVENT_PICKUP_PICKING_STARTED = "pickup.picking_started"
EVENT_PICKUP_COMPLETED = "pickup.completed"
EVENT_PICKUP_CANCELLED = "pickup.cancelled"

TRANSITION_EVENTS: dict[PickupStatus, str] = {
    PickupStatus.CONFIRMED: EVENT_PICKUP_CONFIRMED,
    PickupStatus.IN_TRANSIT: EVENT_PICKUP_IN_TRANSIT,
    PickupStatus.PICKING_ONGOING: EVENT_PICKUP_PICKING_STARTED,
    PickupStatus.COMPLETED: EVENT_PICKUP_COMPLETED,
    PickupStatus.CANCELLED: EVENT_PICKUP_CANCELLED,
}

# System notices sent to the other party
NOTICE_PROPOSED = "A new pickup has been scheduled for your post. Please review and confirm."
NOTICE_UPDATED = "The proposed pickup details have been updated. Please review them."
TRANSITION_NOTICES: dict[PickupStatus, str] = {
    PickupStatus.CONFIRMED: "Pickup has been confirmed.",
    PickupStatus.IN_TRANSIT: "Collector is on the way to the pickup location.",
    PickupStatus.PICKING_ONGOING: "Collector has arrived and started picking up the materials.",
    PickupStatus.COMPLETED: "Pickup has been completed successfully.",
    PickupStatus.CANCELLED: "Pickup cancelled by {role}.",
}

NOTICE_ACTIONS: dict[PickupStatus, str] = {
    PickupStatus.CONFIRMED: "pickup_confirmed",
    PickupStatus.IN_TRANSIT: "pickup_in_transit",
    PickupStatus.PICKING_ONGOING: "pickup_picking_started",
    PickupStatus.COMPLETED: "pickup_completed",
    PickupStatus.CANCELLED: "pickup_cancelled",
}


def transition_notice(
    status: PickupStatus, actor_role: ActorRole, reason: str | None = None
) -> str:
    """Notice text for the other party after a transition."""
    text = TRANSITION_NOTICES[status].format(role=actor_role.value)
    if status == PickupStatus.CANCELLED and reason:
        text = f"{text} Reason: {reason}"
    return text


def post_status_after(previous: PickupStatus, current: PickupStatus) -> PostStatus | None:
    """Status the linked post should take after a pickup moves previous -> current."""
    if current == PickupStatus.CONFIRMED:
        return PostStatus.CLAIMED
    if current == PickupStatus.COMPLETED:
        return PostStatus.COMPLETED
    if current == PickupStatus.CANCELLED and previous in CLAIMING_STATUSES:
        return PostStatus.ACTIVE
    return None
