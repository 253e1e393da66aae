"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    MATCHING = "matching"
    ACCEPTED = "accepted"
    DRIVER_EN_ROUTE = "driver_en_route"
    ARRIVED = "arrived"
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})

# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {
        RideStatus.MATCHING,
        RideStatus.ACCEPTED,
        RideStatus.CANCELLED,
    },
    RideStatus.MATCHING: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.DRIVER_EN_ROUTE, RideStatus.CANCELLED},
    RideStatus.DRIVER_EN_ROUTE: {RideStatus.ARRIVED, RideStatus.CANCELLED},
    RideStatus.ARRIVED: {
        RideStatus.WAITING,
        RideStatus.IN_PROGRESS,
        RideStatus.CANCELLED,
    },
    RideStatus.WAITING: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}


class Role(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    SYSTEM = "system"


class RideAction(str, enum.Enum):
    REQUEST = "request"
    BEGIN_MATCHING = "begin_matching"
    ACCEPT = "accept"
    START_PICKUP = "start_pickup"
    MARK_ARRIVED = "mark_arrived"
    START_WAITING = "start_waiting"
    START_TRIP = "start_trip"
    COMPLETE_TRIP = "complete_trip"
    REQUEST_EARLY_END = "request_early_end"
    CANCEL = "cancel"
    TRIGGER_SAFETY_CHECK = "trigger_safety_check"
    RESPOND_SAFETY = "respond_safety"
    SOS = "sos"


# Who may request each action at all (identity is checked separately)
ACTION_PERMISSIONS: dict[RideAction, frozenset[Role]] = {
    RideAction.REQUEST: frozenset({Role.RIDER}),
    RideAction.BEGIN_MATCHING: frozenset({Role.SYSTEM}),
    RideAction.ACCEPT: frozenset({Role.DRIVER}),
    RideAction.START_PICKUP: frozenset({Role.DRIVER}),
    RideAction.MARK_ARRIVED: frozenset({Role.DRIVER}),
    RideAction.START_WAITING: frozenset({Role.DRIVER}),
    RideAction.START_TRIP: frozenset({Role.DRIVER}),
    RideAction.COMPLETE_TRIP: frozenset({Role.DRIVER}),
    RideAction.REQUEST_EARLY_END: frozenset({Role.DRIVER}),
    RideAction.CANCEL: frozenset({Role.RIDER, Role.DRIVER, Role.SYSTEM}),
    RideAction.TRIGGER_SAFETY_CHECK: frozenset(
        {Role.RIDER, Role.DRIVER, Role.SYSTEM}
    ),
    RideAction.RESPOND_SAFETY: frozenset({Role.RIDER, Role.DRIVER}),
    RideAction.SOS: frozenset({Role.RIDER, Role.DRIVER}),
}

# Status required before a driving action, and the status it leads to
ACTION_REQUIRED_STATUS: dict[RideAction, frozenset[RideStatus]] = {
    RideAction.BEGIN_MATCHING: frozenset({RideStatus.REQUESTED}),
    RideAction.ACCEPT: frozenset({RideStatus.REQUESTED, RideStatus.MATCHING}),
    RideAction.START_PICKUP: frozenset({RideStatus.ACCEPTED}),
    RideAction.MARK_ARRIVED: frozenset({RideStatus.DRIVER_EN_ROUTE}),
    RideAction.START_WAITING: frozenset({RideStatus.ARRIVED}),
    RideAction.START_TRIP: frozenset({RideStatus.ARRIVED, RideStatus.WAITING}),
    RideAction.COMPLETE_TRIP: frozenset({RideStatus.IN_PROGRESS}),
    RideAction.REQUEST_EARLY_END: frozenset({RideStatus.IN_PROGRESS}),
}

ACTION_TARGET_STATUS: dict[RideAction, RideStatus] = {
    RideAction.BEGIN_MATCHING: RideStatus.MATCHING,
    RideAction.ACCEPT: RideStatus.ACCEPTED,
    RideAction.START_PICKUP: RideStatus.DRIVER_EN_ROUTE,
    RideAction.MARK_ARRIVED: RideStatus.ARRIVED,
    RideAction.START_WAITING: RideStatus.WAITING,
    RideAction.START_TRIP: RideStatus.IN_PROGRESS,
    RideAction.COMPLETE_TRIP: RideStatus.COMPLETED,
    RideAction.REQUEST_EARLY_END: RideStatus.COMPLETED,
    RideAction.CANCEL: RideStatus.CANCELLED,
}

# Cancellation policy
CANCELLABLE_BY: dict[Role, frozenset[RideStatus]] = {
    Role.RIDER: frozenset(
        {
            RideStatus.REQUESTED,
            RideStatus.MATCHING,
            RideStatus.ACCEPTED,
            RideStatus.DRIVER_EN_ROUTE,
            RideStatus.ARRIVED,
            RideStatus.WAITING,
        }
    ),
    Role.DRIVER: frozenset(
        {
            RideStatus.ACCEPTED,
            RideStatus.DRIVER_EN_ROUTE,
            RideStatus.ARRIVED,
            RideStatus.WAITING,
            RideStatus.IN_PROGRESS,
        }
    ),
    Role.SYSTEM: frozenset(set(RideStatus) - TERMINAL_STATUSES),
}

REASON_REQUIRED_STATUSES = frozenset({RideStatus.IN_PROGRESS})

CANCEL_REASONS: tuple[str, ...] = (
    "rider_no_show",
    "rider_changed_destination",
    "rider_requested_cancellation",
    "vehicle_issue",
    "personal_emergency",
    "unsafe_location",
    "safety_concern",
    "other",
)


class CancelledBy(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
    SYSTEM = "system"


class SafetyState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    RESOLVED_SAFE = "resolved_safe"
    ESCALATED = "escalated"


class SafetyResponse(str, enum.Enum):
    SAFE = "safe"
    NEED_HELP = "need_help"


class WaitingPhase(str, enum.Enum):
    GRACE = "grace"
    PAID = "paid"
    BONUS = "bonus"
    EXPIRED = "expired"


class EventType(str, enum.Enum):
    STATUS_CHANGED = "ride.status_changed"
    FARE_REQUESTED = "ride.fare_requested"
    TERMINAL = "ride.terminal"
    SAFETY_CHECK_REQUESTED = "safety.check_requested"
    SAFETY_RESOLVED = "safety.resolved"
    SAFETY_ESCALATED = "safety.escalated"


class UserRole(str, enum.Enum):
    RIDER = "rider"
    DRIVER = "driver"
