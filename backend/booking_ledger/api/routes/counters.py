"""
Counter endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from booking_ledger.api.deps import get_context, unwrap
from booking_ledger.schemas.counter import CounterResetResponse, CounterWindows
from booking_ledger.services import booking_service
from booking_ledger.services.context import BookingContext

router = APIRouter(prefix="/counters", tags=["Counters"])


@router.get("/", response_model=dict[str, CounterWindows])
async def get_counters_endpoint(ctx: BookingContext = Depends(get_context)):
    """Windows roll over on read, so stale days never show up."""
    return unwrap(await booking_service.get_counters(ctx))


@router.post("/reset", response_model=CounterResetResponse)
async def reset_counters_endpoint(ctx: BookingContext = Depends(get_context)):
    counters = unwrap(await booking_service.reset_all_counters(ctx))
    return CounterResetResponse(message="All counters reset", counters=counters)


@router.get("/staff", response_model=dict[str, CounterWindows])
async def get_staff_counters_endpoint(
    staff_id: Optional[str] = Query(None),
    ctx: BookingContext = Depends(get_context),
):
    return unwrap(await booking_service.get_staff_counters(ctx, staff_id))


@router.post("/staff/reset", response_model=CounterResetResponse)
async def reset_staff_counters_endpoint(
    staff_id: Optional[str] = Query(None),
    ctx: BookingContext = Depends(get_context),
):
    counters = unwrap(await booking_service.reset_staff_counters(ctx, staff_id))
    return CounterResetResponse(message="Staff counters reset", counters=counters)
