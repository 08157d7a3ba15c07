"""
Booking repository: canonical store plus its satellite archives.

CONCURRENCY STRATEGY
====================
- Identifiers come from the sequence generator (one atomic statement each)
- In-place edits use optimistic locking on `version`:
    UPDATE bookings SET ..., version = version + 1
     WHERE store_id = :id AND version = :seen
  rows_affected == 0 means someone else wrote first -> re-read and retry
- Moves into an archive start with a conditional DELETE of the canonical row.
  Only the caller whose DELETE hit the row inserts the archive copy, so a
  retried or concurrent cancel can never produce two archive rows; the loser
  gets NotFound
- Counter updates join the same transaction as the write they describe
"""

import asyncio
import uuid
from datetime import datetime, time, timedelta
from typing import Optional, Union

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_ledger.core.clock import CivilClock
from booking_ledger.core.config import Settings
from booking_ledger.core.errors import InvalidTransitionError, Maybe, NotFound, StoreError
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import db_retries
from booking_ledger.db.store import BookingStore
from booking_ledger.models.booking import (
    ARCHIVE_MODELS,
    Booking as BookingRecord,
    BookingOrder,
    CancelledBooking,
    CompletedBooking,
    IncompleteBooking,
    ManualBooking,
)
from booking_ledger.schemas.booking import (
    Booking,
    BookingCreate,
    BookingPatch,
    BookingStatus,
    CancellationReceipt,
    IncompleteBookingCreate,
    OrderCreate,
    OrderResponse,
    TERMINAL_STATUSES,
)
from booking_ledger.services.codec import pack_envelope, unpack_envelope
from booking_ledger.services.counter_service import CounterStore, staff_category
from booking_ledger.services.lookup import IDENTITY_CHAIN, resolve
from booking_ledger.services.merge_service import BookingSource
from booking_ledger.services.sequence_service import SequenceGenerator

logger = get_logger(__name__)

CANONICAL_TABLE = BookingRecord.__tablename__
DEFAULT_CANCEL_REASON = "Cancelled by Customer"

# current status -> statuses reachable through update()
ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "manual", "completed"},
    "manual": {"confirmed", "completed"},
    "confirmed": {"completed"},
}
COUNTED_STATUSES = ("confirmed", "manual")

# attributes a patch may never change
IDENTITY_FIELDS = ("store_id", "booking_id", "created_at")

BOOKED_DATE_FORMATS = ("%Y-%m-%d", "%A, %B %d, %Y", "%B %d, %Y", "%d %B %Y", "%d/%m/%Y", "%d-%m-%Y")

# source name, table, forced status, default status
SOURCE_TABLES = (
    ("bookings", BookingRecord, None, None),
    ("manual", ManualBooking, None, "manual"),
    ("completed", CompletedBooking, "completed", None),
    ("cancelled", CancelledBooking, "cancelled", None),
    ("incomplete", IncompleteBooking, "incomplete", None),
)


def check_transition(current: str, requested: str) -> None:
    if current == requested:
        return
    if current in TERMINAL_STATUSES or requested not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(current, requested)


def merge_patch(current: Booking, changes: dict) -> Booking:
    """Overlay `changes` on `current`; attributes absent from the patch are kept."""
    changes = {key: value for key, value in changes.items() if key not in IDENTITY_FIELDS}
    data = current.model_dump()
    for map_field in ("service_items", "occasion_data"):
        incoming = changes.pop(map_field, None)
        if incoming is not None:
            data[map_field] = {**(data.get(map_field) or {}), **incoming}
    data.update(changes)
    return Booking.model_validate(data)


def _new_store_id() -> str:
    return uuid.uuid4().hex


class BookingRepository:
    def __init__(
        self,
        store: BookingStore,
        counters: CounterStore,
        sequences: SequenceGenerator,
        clock: CivilClock,
        settings: Settings,
    ):
        self.store = store
        self.counters = counters
        self.sequences = sequences
        self.clock = clock
        self.settings = settings

    def _now(self) -> datetime:
        return self.clock.utcnow()

    # ------------------------------------------------------------------ reads

    async def get(self, reference: str, include_archives: bool = False) -> Maybe[Booking]:
        tables = [BookingRecord]
        if include_archives:
            tables += list(ARCHIVE_MODELS.values())
        async with self.store.transaction() as session:
            for model in tables:
                row = await resolve(session, model, reference)
                if not isinstance(row, NotFound):
                    return unpack_envelope(row)
        return NotFound(reference)

    async def _load(self, model) -> list[Booking]:
        async with self.store.transaction() as session:
            rows = await session.execute(select(model).order_by(model.created_at.desc()))
            return [unpack_envelope(row) for row in rows.scalars().all()]

    async def fetch_sources(self) -> list[BookingSource]:
        """Read every store concurrently, one session each."""
        loaded = await asyncio.gather(*(self._load(model) for _, model, _, _ in SOURCE_TABLES))
        return [
            BookingSource(name=name, records=records, status_override=forced, default_status=default)
            for (name, _, forced, default), records in zip(SOURCE_TABLES, loaded)
        ]

    # ----------------------------------------------------------------- create

    async def create(self, data: Union[BookingCreate, dict]) -> Booking:
        draft = data if isinstance(data, BookingCreate) else BookingCreate.model_validate(data)

        sequence = None
        booking_id = draft.booking_id
        if not booking_id:
            issued = await self.sequences.next_booking_id()
            booking_id, sequence = issued.booking_id, issued.sequence
        ticket_number = draft.ticket_number or await self.sequences.ticket_number(sequence)

        now = self._now()
        values = {
            **draft.model_dump(),
            "booking_id": booking_id,
            "store_id": _new_store_id(),
            "ticket_number": ticket_number,
            "created_at": draft.created_at or now,
            "updated_at": now,
        }
        if draft.status == BookingStatus.MANUAL.value:
            values["booking_type"] = "manual"
            values["is_manual_booking"] = True
            values["created_by"] = draft.created_by or ("staff" if draft.staff_id else "admin")
        booking = Booking.model_validate(values)

        async with self.store.transaction() as session:
            session.add(BookingRecord(store_id=booking.store_id, version=1, **pack_envelope(booking)))
            await session.flush()
            if booking.status in COUNTED_STATUSES:
                await self.counters.increment(booking.status, session=session)
                if booking.staff_id:
                    await self.counters.increment(staff_category(booking.staff_id), session=session)

        logger.info(
            "booking_created",
            booking_id=booking.booking_id,
            ticket_number=booking.ticket_number,
            status=booking.status,
            sequence=sequence,
        )
        return booking

    # ----------------------------------------------------------------- update

    async def update(self, reference: str, patch: Union[BookingPatch, dict]) -> Maybe[Booking]:
        if not isinstance(patch, BookingPatch):
            patch = BookingPatch.model_validate(patch)
        changes = patch.changes()

        for attempt in range(1, self.settings.UPDATE_MAX_RETRIES + 1):
            async with self.store.transaction() as session:
                row = await resolve(session, BookingRecord, reference)
                if isinstance(row, NotFound):
                    return row

                current = unpack_envelope(row)
                updated = merge_patch(current, changes)
                check_transition(current.status, updated.status)

                now = self._now()
                becomes_completed = updated.status == "completed" and current.status != "completed"
                stamps = {"updated_at": now}
                if becomes_completed and updated.completed_at is None:
                    stamps["completed_at"] = now
                updated = updated.model_copy(update=stamps)

                result = await session.execute(
                    update(BookingRecord)
                    .where(BookingRecord.store_id == row.store_id, BookingRecord.version == row.version)
                    .values(**pack_envelope(updated), version=row.version + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await self._count_transition(session, current, updated)
                    logger.info(
                        "booking_updated",
                        booking_id=updated.booking_id,
                        status=updated.status,
                        previous_status=current.status,
                        attempt=attempt,
                    )
                    return updated

            db_retries.inc()
            logger.info("booking_update_retry", reference=reference, attempt=attempt, reason="version_conflict")

        raise StoreError(f"Booking {reference} is being modified concurrently; try again")

    async def _count_transition(self, session: AsyncSession, before: Booking, after: Booking) -> None:
        if before.status == after.status:
            return
        if after.status == "completed":
            # incomplete -> confirmed -> completed
            await self.counters.increment("completed", session=session)
            await self.counters.decrement("incomplete", session=session)
        elif after.status in COUNTED_STATUSES and before.status not in COUNTED_STATUSES:
            await self.counters.increment(after.status, session=session)
            if after.staff_id:
                await self.counters.increment(staff_category(after.staff_id), session=session)

    # ------------------------------------------------------------------ moves

    def refund_for(self, booking: Booking, now: datetime) -> tuple[float, str]:
        booked_at = self._booked_at(booking.date)
        window = timedelta(hours=self.settings.REFUND_WINDOW_HOURS)
        if booked_at is None or booked_at - now <= window:
            return 0.0, "non-refundable"
        return float(round((booking.total_amount or 0) * self.settings.REFUND_ADVANCE_RATE)), "refundable"

    def _booked_at(self, booked_date: Optional[str]) -> Optional[datetime]:
        """Civil midnight of the booked date."""
        if not booked_date:
            return None
        text = booked_date.strip()
        for fmt in BOOKED_DATE_FORMATS:
            try:
                day = datetime.strptime(text, fmt).date()
            except ValueError:
                continue
            return datetime.combine(day, time.min, tzinfo=self.clock.tz)
        logger.warning("booked_date_unparseable", date=booked_date)
        return None

    async def _take_canonical(self, session: AsyncSession, reference: str):
        """Resolve and delete the canonical row; NotFound if another caller got there first."""
        row = await resolve(session, BookingRecord, reference, IDENTITY_CHAIN)
        if isinstance(row, NotFound):
            return row, None
        booking = unpack_envelope(row)
        deleted = await session.execute(
            delete(BookingRecord)
            .where(BookingRecord.store_id == row.store_id)
            .execution_options(synchronize_session=False)
        )
        if deleted.rowcount == 0:
            return NotFound(reference), None
        return row, booking

    async def cancel(self, reference: str, reason: Optional[str] = None) -> Maybe[CancellationReceipt]:
        reason = (reason or "").strip() or DEFAULT_CANCEL_REASON
        async with self.store.transaction() as session:
            row, booking = await self._take_canonical(session, reference)
            if isinstance(row, NotFound):
                return row

            now = self._now()
            refund_amount, refund_status = self.refund_for(booking, now)
            archived = booking.model_copy(update={
                "status": "cancelled",
                "cancelled_at": now,
                "updated_at": now,
                "cancellation_reason": reason,
                "refund_amount": refund_amount,
                "refund_status": refund_status,
                "original_table": CANONICAL_TABLE,
            })
            session.add(CancelledBooking(
                store_id=row.store_id,
                version=1,
                cancelled_at=now,
                cancellation_reason=reason,
                refund_amount=refund_amount,
                refund_status=refund_status,
                original_table=CANONICAL_TABLE,
                **pack_envelope(archived),
            ))
            await session.flush()
            orders_deleted = await self._delete_orders(session, booking)
            await self.counters.increment("cancelled", session=session)

        logger.info(
            "booking_cancelled",
            booking_id=booking.booking_id,
            refund_status=refund_status,
            refund_amount=refund_amount,
            orders_deleted=orders_deleted,
        )
        return CancellationReceipt(
            booking_id=booking.booking_id,
            store_id=booking.store_id,
            ticket_number=booking.ticket_number,
            cancelled_at=now,
            cancellation_reason=reason,
            refund_amount=refund_amount,
            refund_status=refund_status,
            orders_deleted=orders_deleted,
        )

    async def archive_completed(self, reference: str) -> Maybe[Booking]:
        async with self.store.transaction() as session:
            row, booking = await self._take_canonical(session, reference)
            if isinstance(row, NotFound):
                return row

            now = self._now()
            completed_at = booking.completed_at or now
            archived = booking.model_copy(update={
                "status": "completed",
                "completed_at": completed_at,
                "updated_at": now,
                "original_table": CANONICAL_TABLE,
            })
            session.add(CompletedBooking(
                store_id=row.store_id,
                version=1,
                completed_at=completed_at,
                original_table=CANONICAL_TABLE,
                **pack_envelope(archived),
            ))
            await session.flush()
            if booking.status != "completed":
                await self._count_transition(session, booking, archived)

        logger.info("booking_archived", booking_id=booking.booking_id, previous_status=booking.status)
        return archived

    async def _delete_orders(self, session: AsyncSession, booking: Booking) -> int:
        matches = [BookingOrder.booking_id == booking.booking_id]
        if booking.store_id:
            matches.append(BookingOrder.store_booking_id == booking.store_id)
        if booking.ticket_number:
            matches.append(BookingOrder.ticket_number == booking.ticket_number)
        result = await session.execute(
            delete(BookingOrder).where(or_(*matches)).execution_options(synchronize_session=False)
        )
        return result.rowcount

    # ------------------------------------------------------ incomplete holding

    async def _find_incomplete(self, session: AsyncSession, draft: IncompleteBookingCreate):
        if draft.booking_id:
            result = await session.execute(
                select(IncompleteBooking).where(IncompleteBooking.booking_id == draft.booking_id)
            )
            row = result.scalars().first()
            if row is not None:
                return row
        if draft.email and draft.theater_name and draft.date and draft.time:
            result = await session.execute(
                select(IncompleteBooking)
                .where(
                    func.lower(IncompleteBooking.email) == draft.email.lower(),
                    IncompleteBooking.theater_name == draft.theater_name,
                    IncompleteBooking.date == draft.date,
                    IncompleteBooking.time == draft.time,
                )
                .order_by(IncompleteBooking.created_at.desc())
            )
            return result.scalars().first()
        return None

    async def save_incomplete(self, data: Union[IncompleteBookingCreate, dict]) -> Booking:
        """Upsert an abandoned checkout; each save pushes its expiry out again."""
        draft = data if isinstance(data, IncompleteBookingCreate) else IncompleteBookingCreate.model_validate(data)
        changes = draft.model_dump(exclude_unset=True)
        changes.pop("status", None)
        hold = timedelta(hours=self.settings.INCOMPLETE_HOLD_HOURS)

        async with self.store.transaction() as session:
            row = await self._find_incomplete(session, draft)
            if row is not None:
                now = self._now()
                refreshed = merge_patch(unpack_envelope(row), changes).model_copy(
                    update={"status": "incomplete", "updated_at": now, "expires_at": now + hold}
                )
                await session.execute(
                    update(IncompleteBooking)
                    .where(IncompleteBooking.store_id == row.store_id)
                    .values(**pack_envelope(refreshed), expires_at=now + hold, version=IncompleteBooking.version + 1)
                    .execution_options(synchronize_session=False)
                )
                logger.info("incomplete_booking_refreshed", booking_id=refreshed.booking_id)
                return refreshed

        booking_id = draft.booking_id or await self.sequences.next_incomplete_id()
        now = self._now()
        booking = Booking.model_validate({
            **changes,
            "booking_id": booking_id,
            "store_id": _new_store_id(),
            "status": "incomplete",
            "created_at": now,
            "updated_at": now,
            "expires_at": now + hold,
        })
        async with self.store.transaction() as session:
            session.add(IncompleteBooking(
                store_id=booking.store_id,
                version=1,
                expires_at=booking.expires_at,
                **pack_envelope(booking),
            ))
            await session.flush()
            await self.counters.increment("incomplete", session=session)

        logger.info("incomplete_booking_saved", booking_id=booking.booking_id, expires_at=booking.expires_at)
        return booking

    async def delete_incomplete(self, reference: str) -> Maybe[str]:
        return await self._delete_from(IncompleteBooking, reference)

    async def purge_expired_incomplete(self) -> int:
        async with self.store.transaction() as session:
            result = await session.execute(
                delete(IncompleteBooking)
                .where(IncompleteBooking.expires_at < self._now())
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("incomplete_bookings_purged", count=result.rowcount)
        return result.rowcount

    async def purge_cancelled(self, older_than_hours: Optional[int] = None) -> int:
        hours = self.settings.CANCELLED_RETENTION_HOURS if older_than_hours is None else older_than_hours
        cutoff = self._now() - timedelta(hours=hours)
        async with self.store.transaction() as session:
            result = await session.execute(
                delete(CancelledBooking)
                .where(CancelledBooking.cancelled_at < cutoff)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info("cancelled_bookings_purged", count=result.rowcount, older_than_hours=hours)
        return result.rowcount

    # --------------------------------------------------------- manual store

    async def list_manual(self) -> list[Booking]:
        return await self._load(ManualBooking)

    async def delete_manual(self, reference: str) -> Maybe[str]:
        return await self._delete_from(ManualBooking, reference)

    async def _delete_from(self, model, reference: str) -> Maybe[str]:
        async with self.store.transaction() as session:
            row = await resolve(session, model, reference, IDENTITY_CHAIN)
            if isinstance(row, NotFound):
                return row
            result = await session.execute(
                delete(model).where(model.store_id == row.store_id).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return NotFound(reference)
        logger.info("booking_deleted", table=model.__tablename__, booking_id=row.booking_id)
        return row.booking_id

    # ------------------------------------------------------------------ orders

    async def save_order(self, order: OrderCreate) -> Maybe[OrderResponse]:
        async with self.store.transaction() as session:
            row = await resolve(session, BookingRecord, order.booking_reference)
            if isinstance(row, NotFound):
                return row
            record = BookingOrder(
                booking_id=row.booking_id,
                store_booking_id=row.store_id,
                ticket_number=row.ticket_number,
                service_name=order.service_name,
                items=[item.model_dump(by_alias=True) for item in order.items],
                status=order.status,
                notes=order.notes,
                created_at=self._now(),
                updated_at=self._now(),
            )
            session.add(record)
            await session.flush()
            saved = OrderResponse.model_validate(record)
        logger.info("order_saved", booking_id=saved.booking_id, order_id=saved.id, service=saved.service_name)
        return saved

    async def list_orders(self, reference: str) -> Maybe[list[OrderResponse]]:
        async with self.store.transaction() as session:
            row = await resolve(session, BookingRecord, reference)
            if isinstance(row, NotFound):
                return row
            matches = [BookingOrder.booking_id == row.booking_id, BookingOrder.store_booking_id == row.store_id]
            if row.ticket_number:
                matches.append(BookingOrder.ticket_number == row.ticket_number)
            result = await session.execute(
                select(BookingOrder).where(or_(*matches)).order_by(BookingOrder.id)
            )
            return [OrderResponse.model_validate(record) for record in result.scalars().all()]
