# Models package
from .hold import (
    Hold,
    HoldStatus,
    HoldReleaseReason,
    BookingKind,
    HOLD_TRANSITIONS,
    TERMINAL_HOLD_STATUSES,
    InvalidHoldTransition
)
from .unit import Unit
from .order import (
    Order,
    OrderStatus,
    OrderSyncStatus,
    ProviderApproval,
    SYNC_TRANSITIONS,
    InvalidSyncTransition
)
from .user_booking import UserBookingView, UserProfile
from .rate_limit import RateLimitCounter

__all__ = [
    "Hold", "HoldStatus", "HoldReleaseReason", "BookingKind",
    "HOLD_TRANSITIONS", "TERMINAL_HOLD_STATUSES", "InvalidHoldTransition",
    "Unit",
    "Order", "OrderStatus", "OrderSyncStatus", "ProviderApproval",
    "SYNC_TRANSITIONS", "InvalidSyncTransition",
    "UserBookingView", "UserProfile",
    "RateLimitCounter",
]
