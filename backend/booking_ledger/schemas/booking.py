"""
Pydantic schemas for the booking document and its request/response shapes.

The document is a fixed core struct plus an explicit open map of named
service-item lists (`serviceItems`). Attributes are snake_case in Python and
camelCase on the wire and inside the compressed payload.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from booking_ledger.core.clock import as_utc


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    MANUAL = "manual"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class BookingType(str, Enum):
    ONLINE = "online"
    MANUAL = "manual"


CREATABLE_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.MANUAL.value, BookingStatus.PENDING.value)
TERMINAL_STATUSES = (BookingStatus.COMPLETED.value, BookingStatus.CANCELLED.value)
SERVICE_ITEM_PREFIX = "selected"

_PARENTHETICAL = re.compile(r"\(.*?\)")
_WHITESPACE = re.compile(r"\s+")


def normalize_status(value: Any) -> str:
    """'Confirmed (Paid) ' -> 'confirmed'. Empty input gives ''."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    text = _PARENTHETICAL.sub("", str(value).lower())
    return _WHITESPACE.sub("", text)


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )


class ServiceItem(CamelModel):
    id: Optional[str] = None
    name: str
    price: float = 0
    quantity: int = Field(default=1, ge=0)

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return None if value is None else str(value)


class BookingFields(CamelModel):
    """Every booking attribute, all optional. Base for the document and for patches."""

    booking_id: Optional[str] = None
    store_id: Optional[str] = None
    ticket_number: Optional[str] = None
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None
    booking_type: Optional[BookingType] = None

    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    theater_name: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    occasion: Optional[str] = None
    number_of_people: Optional[int] = Field(default=None, ge=0)

    total_amount: Optional[float] = None
    advance_payment: Optional[float] = None
    venue_payment: Optional[float] = None
    slot_booking_fee: Optional[float] = None
    decoration_fee: Optional[float] = None
    extra_guests_count: Optional[int] = None
    extra_guest_charges: Optional[float] = None
    penalty_charges: Optional[float] = None
    penalty_reason: Optional[str] = None
    special_discount: Optional[float] = None
    coupon_discount: Optional[float] = None

    payment_method: Optional[str] = None
    paid_by: Optional[str] = None
    paid_at: Optional[datetime] = None

    created_by: Optional[str] = None
    staff_id: Optional[str] = None
    staff_name: Optional[str] = None
    admin_name: Optional[str] = None
    is_manual_booking: Optional[bool] = None
    notes: Optional[str] = None

    occasion_data: Optional[dict[str, str]] = None
    service_items: Optional[dict[str, list[ServiceItem]]] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    cancellation_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_status: Optional[str] = None
    original_table: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _fold_selected_lists(cls, data):
        # top-level selectedX lists (legacy documents) move into serviceItems
        if not isinstance(data, dict):
            return data
        loose = {
            key: value for key, value in data.items()
            if key.startswith(SERVICE_ITEM_PREFIX) and isinstance(value, list)
        }
        if not loose:
            return data
        data = {key: value for key, value in data.items() if key not in loose}
        items = dict(data.pop("serviceItems", None) or data.pop("service_items", None) or {})
        for key, value in loose.items():
            items.setdefault(key, value)
        data["serviceItems"] = items
        return data

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if value is None:
            return None
        return normalize_status(value) or None

    @field_validator("payment_status", mode="before")
    @classmethod
    def _normalize_payment_status(cls, value):
        if isinstance(value, Enum):
            value = value.value
        text = str(value or "").strip().lower()
        known = {member.value for member in PaymentStatus}
        return text if text in known else PaymentStatus.UNPAID.value

    @field_validator("booking_type", mode="before")
    @classmethod
    def _normalize_booking_type(cls, value):
        if value is None:
            return None
        if isinstance(value, Enum):
            value = value.value
        return str(value).strip().lower()

    @field_validator("occasion_data", mode="before")
    @classmethod
    def _trim_occasion_data(cls, value):
        if value is None:
            return None
        cleaned = {}
        for key, raw in dict(value).items():
            if raw is None:
                continue
            text = str(raw).strip()
            if text:
                cleaned[str(key).strip()] = text
        return cleaned

    @field_validator("service_items")
    @classmethod
    def _check_item_list_names(cls, value):
        if value is None:
            return None
        for name in value:
            if not name.startswith(SERVICE_ITEM_PREFIX):
                raise ValueError(f"service item list '{name}' must start with '{SERVICE_ITEM_PREFIX}'")
        return value

    @field_validator("paid_at", "created_at", "updated_at", "completed_at", "cancelled_at", "expires_at")
    @classmethod
    def _store_in_utc(cls, value):
        return as_utc(value)


class Booking(BookingFields):
    """A complete booking document."""

    status: BookingStatus = BookingStatus.CONFIRMED
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    booking_type: BookingType = BookingType.ONLINE
    is_manual_booking: bool = False
    occasion_data: dict[str, str] = Field(default_factory=dict)
    service_items: dict[str, list[ServiceItem]] = Field(default_factory=dict)

    @field_validator("is_manual_booking", mode="before")
    @classmethod
    def _default_flag(cls, value):
        return False if value is None else value

    @field_validator("occasion_data", "service_items", mode="before")
    @classmethod
    def _default_map(cls, value):
        return {} if value is None else value

    def to_document(self) -> dict:
        """JSON-ready dict in wire (camelCase) spelling, None values omitted."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class BookingCreate(Booking):
    @field_validator("status")
    @classmethod
    def _creatable_status(cls, value):
        if value not in CREATABLE_STATUSES:
            raise ValueError(f"new bookings must be one of {', '.join(CREATABLE_STATUSES)}")
        return value


class BookingPatch(BookingFields):
    """Partial update; only explicitly provided attributes are applied."""

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class IncompleteBookingCreate(BookingFields):
    """Abandoned checkout captured before payment."""


class CancelRequest(CamelModel):
    reason: Optional[str] = None


class CancellationReceipt(CamelModel):
    booking_id: str
    store_id: Optional[str] = None
    ticket_number: Optional[str] = None
    cancelled_at: datetime
    cancellation_reason: str
    refund_amount: float
    refund_status: str
    orders_deleted: int = 0


class OrderCreate(CamelModel):
    booking_reference: str
    service_name: str
    items: list[ServiceItem] = Field(default_factory=list)
    status: str = "pending"
    notes: Optional[str] = None


class OrderResponse(CamelModel):
    id: int
    booking_id: Optional[str] = None
    store_booking_id: Optional[str] = None
    ticket_number: Optional[str] = None
    service_name: str
    items: list[ServiceItem]
    status: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MergedBookingList(CamelModel):
    items: list[dict[str, Any]]
    total: int
    sources: dict[str, int] = Field(default_factory=dict)
    cached: bool = False


class CleanupReport(CamelModel):
    incomplete_purged: int
    cancelled_purged: int
