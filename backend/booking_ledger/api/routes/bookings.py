"""
Booking endpoints. Thin pass-through to the booking service.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from booking_ledger.api.deps import get_context, unwrap
from booking_ledger.schemas.booking import (
    Booking,
    BookingCreate,
    BookingPatch,
    CancelRequest,
    CancellationReceipt,
    IncompleteBookingCreate,
    MergedBookingList,
    OrderCreate,
    OrderResponse,
)
from booking_ledger.services import booking_service
from booking_ledger.services.context import BookingContext
from booking_ledger.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=Booking, response_model_exclude_none=True, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    ctx: BookingContext = Depends(get_context),
):
    """
    Create a booking.

    The booking id and ticket number come from the atomic sequence, so
    simultaneous creates never share an identifier.
    """
    return unwrap(await booking_service.create_booking(ctx, booking_data))


@router.get("/", response_model=MergedBookingList)
async def list_bookings_endpoint(
    use_cache: bool = Query(True),
    ctx: BookingContext = Depends(get_context),
):
    """Merged, deduplicated view over the live store and every archive."""
    return unwrap(await booking_service.list_bookings(ctx, use_cache=use_cache))


@router.post("/incomplete", response_model=Booking, response_model_exclude_none=True, status_code=status.HTTP_201_CREATED)
async def save_incomplete_endpoint(
    booking_data: IncompleteBookingCreate,
    ctx: BookingContext = Depends(get_context),
):
    return unwrap(await booking_service.save_incomplete_booking(ctx, booking_data))


@router.delete("/incomplete/{reference}")
async def delete_incomplete_endpoint(reference: str, ctx: BookingContext = Depends(get_context)):
    booking_id = unwrap(await booking_service.delete_incomplete_booking(ctx, reference))
    return {"message": "Incomplete booking deleted", "bookingId": booking_id}


@router.get("/manual", response_model=list[Booking], response_model_exclude_none=True)
async def list_manual_endpoint(ctx: BookingContext = Depends(get_context)):
    return unwrap(await booking_service.list_manual_bookings(ctx))


@router.delete("/manual/{reference}")
async def delete_manual_endpoint(reference: str, ctx: BookingContext = Depends(get_context)):
    booking_id = unwrap(await booking_service.delete_manual_booking(ctx, reference))
    return {"message": "Manual booking deleted", "bookingId": booking_id}


@router.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def save_order_endpoint(order: OrderCreate, ctx: BookingContext = Depends(get_context)):
    return unwrap(await booking_service.save_order(ctx, order))


@router.get("/{reference}", response_model=Booking, response_model_exclude_none=True)
async def get_booking_endpoint(reference: str, ctx: BookingContext = Depends(get_context)):
    """Resolve by store id, booking id, ticket number, then e-mail/phone."""
    return unwrap(await booking_service.get_booking(ctx, reference))


@router.patch("/{reference}", response_model=Booking, response_model_exclude_none=True)
async def update_booking_endpoint(
    reference: str,
    patch: BookingPatch,
    ctx: BookingContext = Depends(get_context),
):
    return unwrap(await booking_service.update_booking(ctx, reference, patch))


@router.post("/{reference}/cancel", response_model=CancellationReceipt)
async def cancel_booking_endpoint(
    reference: str,
    cancel: Optional[CancelRequest] = Body(None),
    ctx: BookingContext = Depends(get_context),
):
    """Move a booking into the cancelled archive and drop its orders."""
    reason = cancel.reason if cancel else None
    return unwrap(await booking_service.cancel_booking(ctx, reference, reason))


@router.post("/{reference}/complete", response_model=Booking, response_model_exclude_none=True)
async def complete_booking_endpoint(reference: str, ctx: BookingContext = Depends(get_context)):
    return unwrap(await booking_service.complete_booking(ctx, reference))


@router.get("/{reference}/orders", response_model=list[OrderResponse])
async def list_orders_endpoint(reference: str, ctx: BookingContext = Depends(get_context)):
    return unwrap(await booking_service.list_orders(ctx, reference))
