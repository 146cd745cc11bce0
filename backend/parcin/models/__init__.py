from parcin.models.user import User, UserRole
from parcin.models.parking_lot import ParkingLot, LotStatus
from parcin.models.reservation import (
    Reservation,
    ReservationState,
    ReservationEvent,
    PaymentStatus,
    VALID_RESERVATION_TRANSITIONS,
    TERMINAL_STATES,
    ACTIVE_STATES,
)
from parcin.models.subscription import (
    SubscriptionPlan,
    OperatorSubscription,
    SubscriptionStatus,
    LIVE_SUBSCRIPTION_STATES,
    UNLIMITED,
)

__all__ = [
    "User",
    "UserRole",
    "ParkingLot",
    "LotStatus",
    "Reservation",
    "ReservationState",
    "ReservationEvent",
    "PaymentStatus",
    "VALID_RESERVATION_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTIVE_STATES",
    "SubscriptionPlan",
    "OperatorSubscription",
    "SubscriptionStatus",
    "LIVE_SUBSCRIPTION_STATES",
    "UNLIMITED",
]
