"""
Tests for the booking repository: lifecycle moves, lookups, holding area,
retention and the merged listing built from every store.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select

from booking_ledger.core.errors import ErrorCode, InvalidTransitionError, NotFound
from booking_ledger.models.booking import (
    Booking as BookingRecord,
    BookingOrder,
    CancelledBooking,
    CompletedBooking,
    IncompleteBooking,
    ManualBooking,
)
from booking_ledger.schemas.booking import Booking, OrderCreate, ServiceItem
from booking_ledger.services import booking_service
from booking_ledger.services.codec import pack_envelope
from booking_ledger.services.merge_service import merge_booking_sources
from conftest import booking_payload


async def _count(ctx, model) -> int:
    async with ctx.store.transaction() as session:
        return (await session.execute(select(func.count()).select_from(model))).scalar_one()


# --------------------------------------------------------------------- create

@pytest.mark.asyncio
async def test_create_defaults_to_confirmed_and_counts(ctx):
    booking = await ctx.repository.create(booking_payload())

    assert booking.status == "confirmed"
    assert booking.booking_type == "online"
    assert len(booking.store_id) == 32
    assert booking.created_at is not None
    counters = await ctx.counters.get_counters()
    assert counters["confirmed"]["total"] == 1


@pytest.mark.asyncio
async def test_create_pending_increments_nothing(ctx):
    booking = await ctx.repository.create(booking_payload(status="pending"))

    assert booking.status == "pending"
    counters = await ctx.counters.get_counters()
    assert all(values["total"] == 0 for values in counters.values())


@pytest.mark.asyncio
async def test_manual_create_by_staff(ctx):
    booking = await ctx.repository.create(booking_payload(status="manual", staffId="st-7", staffName="Ravi"))

    assert booking.booking_type == "manual"
    assert booking.is_manual_booking is True
    assert booking.created_by == "staff"
    counters = await ctx.counters.get_counters()
    assert counters["manual"]["total"] == 1
    assert (await ctx.counters.get_staff_counters("st-7"))["st-7"]["total"] == 1


@pytest.mark.asyncio
async def test_explicit_booking_id_is_preserved(ctx):
    booking = await ctx.repository.create(booking_payload(bookingId="FMT-2024-999"))

    assert booking.booking_id == "FMT-2024-999"
    assert booking.ticket_number == "FMT0001"


@pytest.mark.asyncio
async def test_create_rejects_terminal_status(ctx):
    with pytest.raises(ValidationError):
        await ctx.repository.create(booking_payload(status="cancelled"))


@pytest.mark.asyncio
async def test_service_items_survive_storage(ctx):
    created = await ctx.repository.create(booking_payload(
        selectedMovies=[{"id": "m1", "name": "Jawan", "price": 0}],
        occasionData={"birthdayName": "  Kabir ", "nickname": "   "},
    ))
    loaded = await ctx.repository.get(created.booking_id)

    assert loaded.service_items["selectedMovies"][0].name == "Jawan"
    assert loaded.occasion_data == {"birthdayName": "Kabir"}


# --------------------------------------------------------------------- lookup

@pytest.mark.asyncio
async def test_lookup_chain(ctx):
    booking = await ctx.repository.create(booking_payload(email="Asha@Example.com", phone="98765 43210"))

    for reference in (booking.store_id, booking.booking_id, booking.ticket_number, "asha@example.com", "98765 43210"):
        found = await ctx.repository.get(reference)
        assert found.booking_id == booking.booking_id, reference

    missing = await ctx.repository.get("FMT-1999-1")
    assert isinstance(missing, NotFound)
    assert not missing


@pytest.mark.asyncio
async def test_contact_lookup_returns_newest(ctx, clock):
    await ctx.repository.create(booking_payload())
    clock.advance(hours=1)
    newer = await ctx.repository.create(booking_payload())

    assert (await ctx.repository.get("asha@example.com")).booking_id == newer.booking_id


# --------------------------------------------------------------------- update

@pytest.mark.asyncio
async def test_update_merges_patch_over_snapshot(ctx):
    booking = await ctx.repository.create(booking_payload(
        selectedMovies=[{"id": "m1", "name": "Jawan", "price": 0}],
    ))
    updated = await ctx.repository.update(booking.booking_id, {
        "paymentStatus": "PAID",
        "serviceItems": {"selectedCakes": [{"name": "Truffle", "price": 700}]},
    })

    assert updated.payment_status == "paid"
    assert updated.name == "Asha Rao"
    assert set(updated.service_items) == {"selectedMovies", "selectedCakes"}
    reloaded = await ctx.repository.get(booking.store_id)
    assert reloaded.payment_status == "paid"
    assert reloaded.theater_name == "EROS Theatre"


@pytest.mark.asyncio
async def test_update_bumps_version(ctx):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.update(booking.booking_id, {"notes": "first"})
    await ctx.repository.update(booking.booking_id, {"notes": "second"})

    async with ctx.store.transaction() as session:
        version = (await session.execute(
            select(BookingRecord.version).where(BookingRecord.booking_id == booking.booking_id)
        )).scalar_one()
    assert version == 3


@pytest.mark.asyncio
async def test_update_unknown_booking_is_not_found(ctx):
    result = await ctx.repository.update("FMT-2025-404", {"notes": "x"})
    assert isinstance(result, NotFound)


@pytest.mark.asyncio
async def test_pending_to_confirmed_counts_confirmed(ctx):
    booking = await ctx.repository.create(booking_payload(status="pending"))
    await ctx.repository.update(booking.booking_id, {"status": "confirmed"})

    counters = await ctx.counters.get_counters()
    assert counters["confirmed"]["total"] == 1


@pytest.mark.asyncio
async def test_completion_counts_completed_and_releases_incomplete(ctx):
    await ctx.repository.save_incomplete(booking_payload())
    booking = await ctx.repository.create(booking_payload())

    updated = await ctx.repository.update(booking.booking_id, {"status": "completed"})

    assert updated.completed_at is not None
    counters = await ctx.counters.get_counters()
    assert counters["completed"]["total"] == 1
    assert counters["incomplete"]["total"] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["pending", "cancelled", "incomplete"])
async def test_disallowed_transitions(ctx, target):
    booking = await ctx.repository.create(booking_payload())

    with pytest.raises(InvalidTransitionError):
        await ctx.repository.update(booking.booking_id, {"status": target})
    assert (await ctx.repository.get(booking.booking_id)).status == "confirmed"


@pytest.mark.asyncio
async def test_completed_booking_is_frozen(ctx):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.update(booking.booking_id, {"status": "completed"})

    with pytest.raises(InvalidTransitionError):
        await ctx.repository.update(booking.booking_id, {"status": "confirmed"})


# --------------------------------------------------------------------- cancel

@pytest.mark.asyncio
async def test_cancel_moves_booking_and_cascades_orders(ctx):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.save_order(OrderCreate(
        booking_reference=booking.booking_id,
        service_name="Cakes",
        items=[ServiceItem(name="Truffle", price=700)],
    ))

    receipt = await ctx.repository.cancel(booking.booking_id, "  ")

    assert receipt.cancellation_reason == "Cancelled by Customer"
    assert receipt.orders_deleted == 1
    assert await _count(ctx, BookingRecord) == 0
    assert await _count(ctx, CancelledBooking) == 1
    assert await _count(ctx, BookingOrder) == 0
    archived = await ctx.repository.get(booking.booking_id, include_archives=True)
    assert archived.status == "cancelled"
    assert archived.original_table == "bookings"
    counters = await ctx.counters.get_counters()
    assert counters["cancelled"]["total"] == 1


@pytest.mark.asyncio
async def test_cancel_is_idempotent(ctx):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.cancel(booking.booking_id, "Change of plans")

    again = await ctx.repository.cancel(booking.booking_id, "Change of plans")

    assert isinstance(again, NotFound)
    assert await _count(ctx, CancelledBooking) == 1
    assert (await ctx.counters.get_counters())["cancelled"]["total"] == 1


@pytest.mark.asyncio
async def test_moves_and_deletes_never_match_by_contact(ctx, clock):
    first = await ctx.repository.create(booking_payload())
    clock.advance(hours=1)
    second = await ctx.repository.create(booking_payload())
    held = await ctx.repository.save_incomplete(booking_payload(email="held@example.com"))

    for _ in range(2):
        assert isinstance(await ctx.repository.cancel("asha@example.com"), NotFound)
    assert isinstance(await ctx.repository.archive_completed("9876543210"), NotFound)
    assert isinstance(await ctx.repository.delete_incomplete("held@example.com"), NotFound)

    assert await _count(ctx, BookingRecord) == 2
    assert await _count(ctx, CancelledBooking) == 0
    assert (await ctx.repository.get("asha@example.com")).booking_id == second.booking_id
    assert (await ctx.repository.cancel(first.booking_id)).booking_id == first.booking_id
    assert await ctx.repository.delete_incomplete(held.booking_id) == held.booking_id


@pytest.mark.asyncio
async def test_refund_when_cancelled_well_ahead(ctx):
    # booked for 2025-03-25, clock is 2025-03-12
    booking = await ctx.repository.create(booking_payload(totalAmount=2000))
    receipt = await ctx.repository.cancel(booking.booking_id)

    assert receipt.refund_status == "refundable"
    assert receipt.refund_amount == 500


@pytest.mark.asyncio
async def test_no_refund_inside_window(ctx):
    booking = await ctx.repository.create(booking_payload(date="2025-03-14"))
    receipt = await ctx.repository.cancel(booking.booking_id)

    assert receipt.refund_status == "non-refundable"
    assert receipt.refund_amount == 0


# ------------------------------------------------------------------- complete

@pytest.mark.asyncio
async def test_archive_completed(ctx):
    booking = await ctx.repository.create(booking_payload())
    archived = await ctx.repository.archive_completed(booking.ticket_number)

    assert archived.status == "completed"
    assert await _count(ctx, CompletedBooking) == 1
    assert await _count(ctx, BookingRecord) == 0
    assert (await ctx.counters.get_counters())["completed"]["total"] == 1
    assert isinstance(await ctx.repository.archive_completed(booking.ticket_number), NotFound)


@pytest.mark.asyncio
async def test_archive_after_in_place_completion_counts_once(ctx):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.update(booking.booking_id, {"status": "completed"})
    await ctx.repository.archive_completed(booking.booking_id)

    assert (await ctx.counters.get_counters())["completed"]["total"] == 1


# ----------------------------------------------------------------- incomplete

@pytest.mark.asyncio
async def test_save_incomplete_upserts_same_checkout(ctx, clock):
    first = await ctx.repository.save_incomplete(booking_payload())
    clock.advance(hours=1)
    second = await ctx.repository.save_incomplete(booking_payload(email="ASHA@example.com", numberOfPeople=6))

    assert first.booking_id == "INC0001"
    assert second.booking_id == first.booking_id
    assert second.number_of_people == 6
    assert second.expires_at == clock.utcnow() + timedelta(hours=12)
    assert await _count(ctx, IncompleteBooking) == 1
    assert (await ctx.counters.get_counters())["incomplete"]["total"] == 1


@pytest.mark.asyncio
async def test_purge_expired_incomplete(ctx, clock):
    await ctx.repository.save_incomplete(booking_payload())
    clock.advance(hours=11)
    assert await ctx.repository.purge_expired_incomplete() == 0

    clock.advance(hours=2)
    assert await ctx.repository.purge_expired_incomplete() == 1
    assert await _count(ctx, IncompleteBooking) == 0


@pytest.mark.asyncio
async def test_delete_incomplete(ctx):
    saved = await ctx.repository.save_incomplete(booking_payload())

    assert await ctx.repository.delete_incomplete(saved.booking_id) == saved.booking_id
    assert isinstance(await ctx.repository.delete_incomplete(saved.booking_id), NotFound)


# ------------------------------------------------------------------ retention

@pytest.mark.asyncio
async def test_purge_cancelled_after_retention(ctx, clock):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.cancel(booking.booking_id)

    clock.advance(hours=6)
    assert await ctx.repository.purge_cancelled() == 0
    clock.advance(hours=7)
    assert await ctx.repository.purge_cancelled() == 1


# ------------------------------------------------------------- manual store

async def _insert_legacy_manual(ctx, booking_id="MAN-17"):
    legacy = Booking(
        booking_id=booking_id,
        store_id="b" * 32,
        status="manual",
        name="Legacy Guest",
        created_at=ctx.clock.utcnow(),
        updated_at=ctx.clock.utcnow(),
    )
    async with ctx.store.transaction() as session:
        session.add(ManualBooking(store_id=legacy.store_id, version=1, **pack_envelope(legacy)))


@pytest.mark.asyncio
async def test_manual_store_list_and_delete(ctx):
    await _insert_legacy_manual(ctx)

    listed = await ctx.repository.list_manual()
    assert [b.booking_id for b in listed] == ["MAN-17"]
    assert await ctx.repository.delete_manual("MAN-17") == "MAN-17"
    assert await ctx.repository.list_manual() == []


# --------------------------------------------------------------------- orders

@pytest.mark.asyncio
async def test_orders_attach_to_live_booking(ctx):
    booking = await ctx.repository.create(booking_payload())
    saved = await ctx.repository.save_order(OrderCreate(booking_reference=booking.ticket_number, service_name="Decor"))

    assert saved.booking_id == booking.booking_id
    orders = await ctx.repository.list_orders(booking.booking_id)
    assert [o.id for o in orders] == [saved.id]
    assert isinstance(
        await ctx.repository.save_order(OrderCreate(booking_reference="FMT-0-0", service_name="Decor")),
        NotFound,
    )


# -------------------------------------------------------------- merged view

@pytest.mark.asyncio
async def test_fetch_sources_feeds_merged_view(ctx):
    live = await ctx.repository.create(booking_payload())
    gone = await ctx.repository.create(booking_payload(email="gone@example.com"))
    await ctx.repository.cancel(gone.booking_id)
    await ctx.repository.save_incomplete(booking_payload(email="later@example.com"))
    await _insert_legacy_manual(ctx)

    sources = await ctx.repository.fetch_sources()
    merged = merge_booking_sources(sources)

    by_key = {record["mergeKey"]: record for record in merged}
    assert by_key[live.booking_id]["status"] == "confirmed"
    assert by_key[gone.booking_id]["status"] == "cancelled"
    assert by_key["INC0001"]["status"] == "incomplete"
    assert by_key["MAN-17"]["source"] == "manual"
    assert len(merged) == 4


# ---------------------------------------------------------------- facade

@pytest.mark.asyncio
async def test_facade_wraps_outcomes(ctx):
    created = await booking_service.create_booking(ctx, booking_payload())
    assert created.success
    booking_id = created.data.booking_id

    missing = await booking_service.update_booking(ctx, "FMT-2025-404", {"notes": "x"})
    assert (missing.success, missing.error_code) == (False, ErrorCode.NOT_FOUND)

    rejected = await booking_service.update_booking(ctx, booking_id, {"status": "pending"})
    assert rejected.error_code == ErrorCode.INVALID_TRANSITION

    invalid = await booking_service.create_booking(ctx, booking_payload(status="cancelled"))
    assert invalid.error_code == ErrorCode.VALIDATION_ERROR

    cancelled = await booking_service.cancel_booking(ctx, booking_id, "Change of plans")
    assert cancelled.success
    assert (await booking_service.cancel_booking(ctx, booking_id, None)).error_code == ErrorCode.NOT_FOUND


def test_facade_merge_is_pure():
    merged = booking_service.merge_booking_sources([
        [{"bookingId": "FMT-2025-57", "status": "confirmed", "updatedAt": "2025-03-12T08:00:00Z"}],
        [{"bookingId": "FMT-2025-57", "status": "cancelled", "updatedAt": "2025-03-11T08:00:00Z"}],
    ])
    assert [(r["mergeKey"], r["status"]) for r in merged] == [("FMT-2025-57", "cancelled")]


@pytest.mark.asyncio
async def test_cleanup_sweeps_both_stores(ctx, clock):
    booking = await ctx.repository.create(booking_payload())
    await ctx.repository.cancel(booking.booking_id)
    await ctx.repository.save_incomplete(booking_payload(email="late@example.com"))
    clock.advance(hours=13)

    result = await booking_service.run_cleanup(ctx)

    assert result.success
    assert (result.data.incomplete_purged, result.data.cancelled_purged) == (1, 1)
