"""
Public booking operations.

Every call returns an OperationResult instead of raising: expected absence is
`not_found`, a rejected status change is `invalid_transition`, and store
failures are `connection_error` / `store_error`. This layer does not retry;
that is up to the caller. Successful writes invalidate the listing cache.
"""

import time
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from pydantic import ValidationError

from booking_ledger.core.errors import (
    ErrorCode,
    InvalidTransitionError,
    NotFound,
    OperationResult,
    StoreConnectionError,
    StoreError,
    UnknownCounterCategoryError,
)
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import booking_latency, record_booking_operation
from booking_ledger.schemas.booking import (
    Booking,
    BookingCreate,
    BookingPatch,
    CancellationReceipt,
    CleanupReport,
    IncompleteBookingCreate,
    MergedBookingList,
    OrderCreate,
    OrderResponse,
)
from booking_ledger.services.context import BookingContext
from booking_ledger.services.merge_service import SourceInput
from booking_ledger.services.merge_service import merge_booking_sources as _merge

logger = get_logger(__name__)


async def _guarded(
    operation: str,
    call: Callable[[], Awaitable[Any]],
    ctx: Optional[BookingContext] = None,
    invalidates: bool = False,
) -> OperationResult:
    start = time.perf_counter()
    try:
        outcome = await call()
    except InvalidTransitionError as e:
        result = OperationResult.fail(ErrorCode.INVALID_TRANSITION, str(e))
    except (ValidationError, UnknownCounterCategoryError) as e:
        result = OperationResult.fail(ErrorCode.VALIDATION_ERROR, str(e))
    except StoreConnectionError as e:
        logger.error("store_unreachable", operation=operation, error=str(e))
        result = OperationResult.fail(ErrorCode.CONNECTION_ERROR, "Booking store is unreachable")
    except StoreError as e:
        logger.error("store_operation_failed", operation=operation, error=str(e))
        result = OperationResult.fail(ErrorCode.STORE_ERROR, str(e))
    else:
        if isinstance(outcome, NotFound):
            result = OperationResult.not_found(outcome)
        else:
            result = OperationResult.ok(outcome)
            if invalidates and ctx is not None:
                await ctx.cache.invalidate()
    finally:
        booking_latency.labels(operation=operation).observe(time.perf_counter() - start)

    if result.success:
        status = "success"
    elif result.error_code == ErrorCode.NOT_FOUND:
        status = "not_found"
    else:
        status = "error"
    record_booking_operation(operation, status)
    return result


async def create_booking(ctx: BookingContext, data: Union[BookingCreate, dict]) -> OperationResult[Booking]:
    return await _guarded("create", lambda: ctx.repository.create(data), ctx, invalidates=True)


async def update_booking(
    ctx: BookingContext, reference: str, patch: Union[BookingPatch, dict]
) -> OperationResult[Booking]:
    return await _guarded("update", lambda: ctx.repository.update(reference, patch), ctx, invalidates=True)


async def cancel_booking(
    ctx: BookingContext, reference: str, reason: Optional[str] = None
) -> OperationResult[CancellationReceipt]:
    return await _guarded("cancel", lambda: ctx.repository.cancel(reference, reason), ctx, invalidates=True)


async def complete_booking(ctx: BookingContext, reference: str) -> OperationResult[Booking]:
    """Move a booking into the completed archive."""
    return await _guarded("complete", lambda: ctx.repository.archive_completed(reference), ctx, invalidates=True)


async def get_booking(ctx: BookingContext, reference: str) -> OperationResult[Booking]:
    return await _guarded("get", lambda: ctx.repository.get(reference, include_archives=True))


async def get_counters(ctx: BookingContext) -> OperationResult[dict]:
    return await _guarded("get_counters", ctx.counters.get_counters)


async def get_staff_counters(ctx: BookingContext, staff_id: Optional[str] = None) -> OperationResult[dict]:
    return await _guarded("get_staff_counters", lambda: ctx.counters.get_staff_counters(staff_id))


async def reset_all_counters(ctx: BookingContext) -> OperationResult[dict]:
    async def reset():
        await ctx.counters.reset_all_counters()
        return await ctx.counters.get_counters()

    return await _guarded("reset_counters", reset)


async def reset_staff_counters(ctx: BookingContext, staff_id: Optional[str] = None) -> OperationResult[dict]:
    async def reset():
        await ctx.counters.reset_staff_counters(staff_id)
        return await ctx.counters.get_staff_counters(staff_id)

    return await _guarded("reset_staff_counters", reset)


def merge_booking_sources(sources: Iterable[SourceInput]) -> list[dict]:
    return _merge(sources)


async def list_bookings(ctx: BookingContext, use_cache: bool = True) -> OperationResult[MergedBookingList]:
    """Merged view over every store, served from Redis when fresh."""

    async def load() -> MergedBookingList:
        if use_cache:
            cached = await ctx.cache.get_listing()
            if cached is not None:
                return MergedBookingList.model_validate({**cached, "cached": True})

        # read before the stores so a write landing mid-fetch keeps this listing out of the cache
        generation = await ctx.cache.generation()
        sources = await ctx.repository.fetch_sources()
        records = _merge(sources)
        counts = {}
        for record in records:
            counts[record["source"]] = counts.get(record["source"], 0) + 1
        listing = MergedBookingList(items=records, total=len(records), sources=counts)
        await ctx.cache.set_listing(listing.model_dump(by_alias=True), generation)
        return listing

    return await _guarded("list", load)


async def save_incomplete_booking(
    ctx: BookingContext, data: Union[IncompleteBookingCreate, dict]
) -> OperationResult[Booking]:
    return await _guarded("save_incomplete", lambda: ctx.repository.save_incomplete(data), ctx, invalidates=True)


async def delete_incomplete_booking(ctx: BookingContext, reference: str) -> OperationResult[str]:
    return await _guarded("delete_incomplete", lambda: ctx.repository.delete_incomplete(reference), ctx, invalidates=True)


async def list_manual_bookings(ctx: BookingContext) -> OperationResult[list]:
    return await _guarded("list_manual", ctx.repository.list_manual)


async def delete_manual_booking(ctx: BookingContext, reference: str) -> OperationResult[str]:
    return await _guarded("delete_manual", lambda: ctx.repository.delete_manual(reference), ctx, invalidates=True)


async def save_order(ctx: BookingContext, order: OrderCreate) -> OperationResult[OrderResponse]:
    return await _guarded("save_order", lambda: ctx.repository.save_order(order))


async def list_orders(ctx: BookingContext, reference: str) -> OperationResult[list]:
    return await _guarded("list_orders", lambda: ctx.repository.list_orders(reference))


async def run_cleanup(ctx: BookingContext, cancelled_older_than_hours: Optional[int] = None) -> OperationResult[CleanupReport]:
    """Sweep expired incomplete checkouts and old cancelled archive rows."""

    async def sweep() -> CleanupReport:
        report = CleanupReport(
            incomplete_purged=await ctx.repository.purge_expired_incomplete(),
            cancelled_purged=await ctx.repository.purge_cancelled(cancelled_older_than_hours),
        )
        logger.info("cleanup_finished", **report.model_dump())
        return report

    return await _guarded("cleanup", sweep, ctx, invalidates=True)
