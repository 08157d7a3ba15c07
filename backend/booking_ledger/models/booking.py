"""
Booking envelope tables.

Key design decisions:
- The full booking document lives gzip-compressed in `compressed_payload`
- A subset of attributes is duplicated into plain columns so lookups, filters
  and the merge view work without decompressing anything
- The duplicated columns are rewritten together with the payload on every write
- `version` enables optimistic locking for concurrent edits
- Terminal bookings are moved (not copied) into the archive tables
"""

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, LargeBinary, JSON, Text,
    Index, CheckConstraint,
)
from sqlalchemy.orm import declared_attr

from booking_ledger.db.base import Base, TimestampMixin

BOOKING_STATUSES = ("pending", "confirmed", "manual", "completed", "cancelled", "incomplete")


class EnvelopeMixin(TimestampMixin):
    store_id = Column(String(32), primary_key=True)
    booking_id = Column(String(64), nullable=False)
    ticket_number = Column(String(64), nullable=True, index=True)
    status = Column(String(20), nullable=False)
    payment_status = Column(String(20), nullable=False, default="unpaid")
    booking_type = Column(String(20), nullable=False, default="online")

    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(32), nullable=True, index=True)
    theater_name = Column(String(255), nullable=True)
    date = Column(String(32), nullable=True)
    time = Column(String(64), nullable=True)
    occasion = Column(String(255), nullable=True)
    number_of_people = Column(Integer, nullable=True)

    total_amount = Column(Float, nullable=True)
    advance_payment = Column(Float, nullable=True)
    venue_payment = Column(Float, nullable=True)

    staff_id = Column(String(64), nullable=True)
    staff_name = Column(String(255), nullable=True)

    compressed_payload = Column(LargeBinary, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    @declared_attr.directive
    def __table_args__(cls):
        return (
            Index(f"ix_{cls.__tablename__}_booking_id", "booking_id", unique=True),
            CheckConstraint(
                "status IN ({})".format(", ".join(f"'{s}'" for s in BOOKING_STATUSES)),
                name=f"check_{cls.__tablename__}_status",
            ),
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(booking_id={self.booking_id}, status={self.status})>"


class Booking(Base, EnvelopeMixin):
    """Canonical store of live bookings."""

    __tablename__ = "bookings"


class ManualBooking(Base, EnvelopeMixin):
    """Manual-entry store kept for bookings captured before they lived in `bookings`."""

    __tablename__ = "manual_bookings"


class CancelledBooking(Base, EnvelopeMixin):
    __tablename__ = "cancelled_bookings"

    cancelled_at = Column(DateTime(timezone=True), nullable=False, index=True)
    cancellation_reason = Column(Text, nullable=True)
    refund_amount = Column(Float, nullable=False, default=0)
    refund_status = Column(String(32), nullable=False, default="non-refundable")
    original_table = Column(String(64), nullable=True)


class CompletedBooking(Base, EnvelopeMixin):
    __tablename__ = "completed_bookings"

    completed_at = Column(DateTime(timezone=True), nullable=False)
    original_table = Column(String(64), nullable=True)


class IncompleteBooking(Base, EnvelopeMixin):
    """Abandoned checkouts, swept once `expires_at` passes."""

    __tablename__ = "incomplete_bookings"

    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)


class BookingOrder(Base, TimestampMixin):
    """Order/add-on records that depend on a live booking."""

    __tablename__ = "booking_orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(String(64), nullable=True, index=True)
    store_booking_id = Column(String(32), nullable=True, index=True)
    ticket_number = Column(String(64), nullable=True, index=True)
    service_name = Column(String(255), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    status = Column(String(20), nullable=False, default="pending")
    notes = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<BookingOrder(id={self.id}, booking={self.booking_id}, service={self.service_name})>"


ARCHIVE_MODELS = {
    "manual": ManualBooking,
    "cancelled": CancelledBooking,
    "completed": CompletedBooking,
    "incomplete": IncompleteBooking,
}
