"""
Monotonic identifier issuance.

CONCURRENCY STRATEGY: one atomic UPDATE ... RETURNING
=====================================================

Problem:
  Two admins create a booking in the same instant. Reading the sequence,
  adding one and writing it back hands both of them the same number.

Solution:
  The whole step runs as a single statement:

    UPDATE sequences
       SET seq = greatest(coalesce(seq, T), T) + 1
     WHERE name = 'booking'
    RETURNING seq

  where T is the confirmed+manual total, evaluated as a scalar subquery in the
  same statement. The row lock taken by the UPDATE serialises concurrent
  callers, so every caller gets a distinct value, and the floor keeps the
  sequence ahead of the domain total even when the stored value lags or was
  never initialised.

Fallback:
  Dialects without UPDATE ... RETURNING (or a rejected atomic statement) use a
  bounded compare-and-set loop:  UPDATE ... WHERE seq IS :observed.
  When the retry budget runs out, one plain increment followed by a read is
  used. That last step has a narrow race between the write and the read; it is
  logged and counted as a SequenceFallbackWarning.

The sequence is always issued in its own short transaction, before the
booking write. A failed booking write leaves a gap, never a duplicate.
"""

import time
import warnings
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_ledger.core.clock import CivilClock
from booking_ledger.core.config import Settings
from booking_ledger.core.errors import SequenceFallbackWarning, StoreConnectionError, StoreError
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import db_retries, record_sequence_fallback
from booking_ledger.db.store import BookingStore
from booking_ledger.models.booking import Booking
from booking_ledger.models.counter import SequenceRow
from booking_ledger.services.counter_service import domain_total_query

logger = get_logger(__name__)

BOOKING_SEQUENCE = "booking"
INCOMPLETE_SEQUENCE = "incomplete"


@dataclass(frozen=True)
class IssuedBookingId:
    booking_id: str
    sequence: Optional[int]  # None when the timestamp fallback was used


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class SequenceGenerator:
    def __init__(
        self,
        store: BookingStore,
        clock: CivilClock,
        settings: Settings,
        atomic: Optional[bool] = None,
    ):
        self.store = store
        self.clock = clock
        self.settings = settings
        # None: use RETURNING whenever the dialect has it
        self._atomic = atomic

    @property
    def atomic(self) -> bool:
        if self._atomic is None:
            return self.store.supports_update_returning
        return self._atomic

    @staticmethod
    def _floor(name: str):
        if name == BOOKING_SEQUENCE:
            return domain_total_query().scalar_subquery()
        return literal(0)

    def _next_expression(self, name: str):
        floor = self._floor(name)
        current = func.coalesce(SequenceRow.seq, floor)
        return case((current > floor, current), else_=floor) + 1

    async def next_value(self, name: str = BOOKING_SEQUENCE) -> int:
        """Issue the next value of a named sequence."""
        if self.atomic:
            try:
                async with self.store.transaction() as session:
                    return await self._issue_atomic(session, name)
            except StoreConnectionError:
                raise
            except StoreError as exc:
                self._warn(name, "atomic_rejected", str(exc))
        else:
            self._warn(name, "no_returning", self.store.dialect_name)
        return await self._issue_checked(name)

    async def _issue_atomic(self, session: AsyncSession, name: str) -> int:
        await self.store.ensure_row(session, SequenceRow, {"name": name, "seq": None})
        result = await session.execute(
            update(SequenceRow)
            .where(SequenceRow.name == name)
            .values(seq=self._next_expression(name))
            .returning(SequenceRow.seq)
            .execution_options(synchronize_session=False)
        )
        value = result.scalar_one()
        logger.debug("sequence_issued", name=name, value=value, path="atomic")
        return value

    async def _issue_checked(self, name: str) -> int:
        for attempt in range(1, self.settings.SEQUENCE_MAX_RETRIES + 1):
            async with self.store.transaction() as session:
                await self.store.ensure_row(session, SequenceRow, {"name": name, "seq": None})
                observed = (
                    await session.execute(select(SequenceRow.seq).where(SequenceRow.name == name))
                ).scalar_one_or_none()
                floor = (await session.execute(select(self._floor(name)))).scalar_one()
                candidate = max(observed if observed is not None else floor, floor) + 1
                guard = SequenceRow.seq.is_(None) if observed is None else SequenceRow.seq == observed
                result = await session.execute(
                    update(SequenceRow)
                    .where(SequenceRow.name == name, guard)
                    .values(seq=candidate)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    record_sequence_fallback("cas")
                    logger.info("sequence_issued", name=name, value=candidate, path="cas", attempt=attempt)
                    return candidate
            db_retries.inc()
            logger.info("sequence_retry", name=name, attempt=attempt, reason="seq_changed")

        record_sequence_fallback("unchecked")
        self._warn(name, "retries_exhausted", f"{self.settings.SEQUENCE_MAX_RETRIES} attempts")
        async with self.store.transaction() as session:
            await session.execute(
                update(SequenceRow)
                .where(SequenceRow.name == name)
                .values(seq=self._next_expression(name))
                .execution_options(synchronize_session=False)
            )
            value = (
                await session.execute(select(SequenceRow.seq).where(SequenceRow.name == name))
            ).scalar_one()
        logger.warning("sequence_issued", name=name, value=value, path="unchecked")
        return value

    @staticmethod
    def _warn(name: str, reason: str, detail: str) -> None:
        logger.warning("sequence_fallback", name=name, reason=reason, detail=detail)
        warnings.warn(
            f"sequence '{name}' left the atomic path ({reason}: {detail})",
            SequenceFallbackWarning,
            stacklevel=3,
        )

    async def next_booking_id(self) -> IssuedBookingId:
        """PREFIX-YEAR-N; never fails, degrades to a timestamp-derived id."""
        prefix = self.settings.BOOKING_ID_PREFIX
        year = self.clock.year()
        try:
            value = await self.next_value(BOOKING_SEQUENCE)
        except StoreError as exc:
            record_sequence_fallback("timestamp")
            logger.error("booking_id_fallback", error=str(exc))
            return IssuedBookingId(f"{prefix}-{year}-FALLBACK-{str(_epoch_ms())[-6:]}", None)
        return IssuedBookingId(f"{prefix}-{year}-{value}", value)

    def format_ticket(self, value: int) -> str:
        width = self.settings.TICKET_NUMBER_WIDTH
        return f"{self.settings.TICKET_PREFIX}{value:0{width}d}"

    async def ticket_number(self, sequence: Optional[int] = None) -> str:
        """
        Ticket number for a new booking.

        Reuses the sequence issued for the same request; otherwise the domain
        total + 1, then the booking count + 1, then a timestamp suffix.
        """
        if sequence is not None:
            return self.format_ticket(sequence)

        try:
            async with self.store.transaction() as session:
                total = (await session.execute(domain_total_query())).scalar_one()
            return self.format_ticket(int(total or 0) + 1)
        except StoreError as exc:
            logger.warning("ticket_fallback", source="domain_total", error=str(exc))

        try:
            async with self.store.transaction() as session:
                count = (await session.execute(select(func.count()).select_from(Booking))).scalar_one()
            return self.format_ticket(int(count) + 1)
        except StoreError as exc:
            logger.warning("ticket_fallback", source="booking_count", error=str(exc))

        record_sequence_fallback("timestamp")
        return f"{self.settings.TICKET_PREFIX}{str(_epoch_ms())[-6:]}"

    async def next_incomplete_id(self) -> str:
        prefix = self.settings.INCOMPLETE_ID_PREFIX
        try:
            value = await self.next_value(INCOMPLETE_SEQUENCE)
        except StoreError as exc:
            record_sequence_fallback("timestamp")
            logger.error("incomplete_id_fallback", error=str(exc))
            return f"{prefix}{str(_epoch_ms())[-6:]}"
        return f"{prefix}{value:04d}"
