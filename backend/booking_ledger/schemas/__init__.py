from booking_ledger.schemas.booking import (
    Booking,
    BookingCreate,
    BookingPatch,
    BookingStatus,
    CancelRequest,
    CancellationReceipt,
    IncompleteBookingCreate,
    OrderCreate,
    OrderResponse,
    MergedBookingList,
    CleanupReport,
    ServiceItem,
)
from booking_ledger.schemas.counter import CounterWindows, CounterResetResponse

__all__ = [
    "Booking", "BookingCreate", "BookingPatch", "BookingStatus",
    "CancelRequest", "CancellationReceipt", "IncompleteBookingCreate",
    "OrderCreate", "OrderResponse", "MergedBookingList", "CleanupReport", "ServiceItem",
    "CounterWindows", "CounterResetResponse",
]
