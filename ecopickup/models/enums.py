import enum


class ActorRole(str, enum.Enum):
    GIVER = "Giver"
    COLLECTOR = "Collector"
    ADMIN = "Admin"


class PickupStatus(str, enum.Enum):
    PROPOSED = "Proposed"
    CONFIRMED = "Confirmed"
    IN_TRANSIT = "In-Transit"
    PICKING_ONGOING = "Picking-Ongoing"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class DenialReason(str, enum.Enum):
    WRONG_ACTOR = "WrongActor"
    WRONG_STATE = "WrongState"
    LEAD_TIME_TOO_SHORT = "LeadTimeTooShort"
    ALREADY_TERMINAL = "AlreadyTerminal"


class PostType(str, enum.Enum):
    WASTE = "Waste"
    INITIATIVE = "Initiative"
    FORUM = "Forum"


class PostStatus(str, enum.Enum):
    ACTIVE = "Active"
    CLAIMED = "Claimed"
    COMPLETED = "Completed"
    INACTIVE = "Inactive"


class MessageType(str, enum.Enum):
    TEXT = "text"
    SYSTEM = "system"


class EventStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
