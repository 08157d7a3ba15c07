"""
Housekeeping endpoints, meant for a scheduler.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from booking_ledger.api.deps import get_context, unwrap
from booking_ledger.schemas.booking import CleanupReport
from booking_ledger.services import booking_service
from booking_ledger.services.context import BookingContext

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/cleanup", response_model=CleanupReport)
async def cleanup_endpoint(
    cancelled_older_than_hours: Optional[int] = Query(None, ge=0),
    ctx: BookingContext = Depends(get_context),
):
    """Purge expired incomplete checkouts and cancelled archive rows past retention."""
    return unwrap(await booking_service.run_cleanup(ctx, cancelled_older_than_hours))
