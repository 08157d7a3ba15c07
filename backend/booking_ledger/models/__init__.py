from booking_ledger.models.booking import (
    Booking,
    ManualBooking,
    CancelledBooking,
    CompletedBooking,
    IncompleteBooking,
    BookingOrder,
)
from booking_ledger.models.counter import WindowCounter, CounterTotal, SequenceRow

__all__ = [
    "Booking", "ManualBooking", "CancelledBooking", "CompletedBooking",
    "IncompleteBooking", "BookingOrder",
    "WindowCounter", "CounterTotal", "SequenceRow",
]
