"""
Time-windowed counters.

Each category has four windows (today/week/month/year) with their own reset
marker, plus an independent all-time total.

CONCURRENCY STRATEGY: single-statement updates
==============================================

Problem:
  Two bookings created in the same instant both read today=4, both write 5.

Solution:
  The rollover check is folded into the arithmetic of one UPDATE:

    UPDATE window_counters SET
      today = CASE WHEN last_reset_date = :day THEN today + 1 ELSE 1 END,
      last_reset_date = :day, ...
    WHERE category = :category

  SQL evaluates every right-hand side against the pre-update row, so the
  marker comparison and the increment see the same state and the database
  serialises concurrent writers on the row. Decrements use the same shape with
  a floor at zero. Totals live in another table and never roll over.
"""

from typing import Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_ledger.core.clock import CivilClock, WindowBoundary
from booking_ledger.core.errors import UnknownCounterCategoryError
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import record_counter_mutation
from booking_ledger.db.store import BookingStore
from booking_ledger.models.counter import CounterTotal, WindowCounter

logger = get_logger(__name__)

CATEGORIES = ("confirmed", "manual", "completed", "cancelled", "incomplete")
DOMAIN_CATEGORIES = ("confirmed", "manual")
STAFF_PREFIX = "staff:"

# window column -> (marker column, WindowBoundary attribute)
WINDOWS = {
    "today": ("last_reset_date", "day"),
    "week": ("last_reset_week", "week"),
    "month": ("last_reset_month", "month"),
    "year": ("last_reset_year", "year"),
}


def staff_category(staff_id: str) -> str:
    return f"{STAFF_PREFIX}{staff_id}"


def domain_total_query():
    """SELECT of the confirmed+manual total; usable as a scalar subquery."""
    return select(func.coalesce(func.sum(CounterTotal.total), 0)).where(
        CounterTotal.category.in_(DOMAIN_CATEGORIES)
    )


def _window_values(boundary: WindowBoundary, delta: int) -> dict:
    values = {}
    for window, (marker, boundary_attr) in WINDOWS.items():
        column = getattr(WindowCounter, window)
        current = getattr(WindowCounter, marker) == getattr(boundary, boundary_attr)
        if delta > 0:
            values[window] = case((current, column + 1), else_=1)
        elif delta < 0:
            values[window] = case((and_(current, column > 0), column - 1), else_=0)
        else:
            values[window] = case((current, column), else_=0)
        values[marker] = getattr(boundary, boundary_attr)
    return values


def _zeroed_values(boundary: WindowBoundary) -> dict:
    values = {}
    for window, (marker, boundary_attr) in WINDOWS.items():
        values[window] = 0
        values[marker] = getattr(boundary, boundary_attr)
    return values


class CounterStore:
    def __init__(self, store: BookingStore, clock: CivilClock):
        self.store = store
        self.clock = clock

    @staticmethod
    def check_category(category: str) -> None:
        if category in CATEGORIES:
            return
        if category.startswith(STAFF_PREFIX) and len(category) > len(STAFF_PREFIX):
            return
        raise UnknownCounterCategoryError(f"Unknown counter category '{category}'")

    async def _ensure(self, session: AsyncSession, category: str, boundary: WindowBoundary) -> None:
        await self.store.ensure_row(session, WindowCounter, {"category": category, **_zeroed_values(boundary)})
        await self.store.ensure_row(session, CounterTotal, {"category": category, "total": 0})

    async def seed(self, session: Optional[AsyncSession] = None) -> None:
        """Make sure every built-in category has its rows."""
        boundary = self.clock.boundary()
        async with self.store.transaction(session) as s:
            for category in CATEGORIES:
                await self._ensure(s, category, boundary)

    async def _apply(self, session: AsyncSession, category: str, delta: int, touch_total: bool) -> None:
        boundary = self.clock.boundary()
        windows = (
            update(WindowCounter)
            .where(WindowCounter.category == category)
            .values(**_window_values(boundary, delta))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(windows)
        if result.rowcount == 0:
            await self._ensure(session, category, boundary)
            await session.execute(windows)

        if not touch_total or delta == 0:
            return
        if delta > 0:
            new_total = CounterTotal.total + 1
        else:
            new_total = case((CounterTotal.total > 0, CounterTotal.total - 1), else_=0)
        totals = (
            update(CounterTotal)
            .where(CounterTotal.category == category)
            .values(total=new_total)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(totals)
        if result.rowcount == 0:
            await self._ensure(session, category, boundary)
            await session.execute(totals)

    async def increment(self, category: str, also_total: bool = True, session: Optional[AsyncSession] = None) -> None:
        self.check_category(category)
        async with self.store.transaction(session) as s:
            await self._apply(s, category, 1, also_total)
        record_counter_mutation(category, "up")
        logger.debug("counter_incremented", category=category, total=also_total)

    async def decrement(self, category: str, also_total: bool = True, session: Optional[AsyncSession] = None) -> None:
        self.check_category(category)
        async with self.store.transaction(session) as s:
            await self._apply(s, category, -1, also_total)
        record_counter_mutation(category, "down")
        logger.debug("counter_decremented", category=category, total=also_total)

    async def rollover(self, category: Optional[str] = None, session: Optional[AsyncSession] = None) -> int:
        """Zero every window whose boundary has passed. Returns rows touched."""
        boundary = self.clock.boundary()
        stale = [
            getattr(WindowCounter, marker) != getattr(boundary, boundary_attr)
            for marker, boundary_attr in WINDOWS.values()
        ]
        stmt = (
            update(WindowCounter)
            .where(or_(*stale))
            .values(**_window_values(boundary, 0))
            .execution_options(synchronize_session=False)
        )
        if category is not None:
            self.check_category(category)
            stmt = stmt.where(WindowCounter.category == category)
        async with self.store.transaction(session) as s:
            result = await s.execute(stmt)
        if result.rowcount:
            logger.info("counter_rollover", rows=result.rowcount, day=boundary.day)
        return result.rowcount

    async def _read(self, session: AsyncSession, categories) -> dict:
        windows = await session.execute(
            select(
                WindowCounter.category, WindowCounter.today, WindowCounter.week,
                WindowCounter.month, WindowCounter.year,
            ).where(WindowCounter.category.in_(categories))
        )
        totals = dict(
            (await session.execute(
                select(CounterTotal.category, CounterTotal.total).where(CounterTotal.category.in_(categories))
            )).all()
        )
        counters = {}
        for category, today, week, month, year in windows.all():
            counters[category] = {
                "today": today, "week": week, "month": month, "year": year,
                "total": totals.get(category, 0),
            }
        return counters

    async def get_counters(self, session: Optional[AsyncSession] = None) -> dict:
        """{category: {today, week, month, year, total}} for the five built-in categories."""
        async with self.store.transaction(session) as s:
            await self.seed(s)
            await self.rollover(session=s)
            counters = await self._read(s, CATEGORIES)
        return {category: counters[category] for category in CATEGORIES}

    async def get_staff_counters(self, staff_id: Optional[str] = None, session: Optional[AsyncSession] = None) -> dict:
        async with self.store.transaction(session) as s:
            await self.rollover(session=s)
            if staff_id is not None:
                categories = [staff_category(staff_id)]
            else:
                rows = await s.execute(
                    select(WindowCounter.category).where(WindowCounter.category.startswith(STAFF_PREFIX))
                )
                categories = list(rows.scalars().all())
            counters = await self._read(s, categories) if categories else {}
        return {category[len(STAFF_PREFIX):]: values for category, values in counters.items()}

    async def reset_windows(self, category: Optional[str] = None, session: Optional[AsyncSession] = None) -> None:
        """Zero the time windows only; totals are untouched."""
        stmt = update(WindowCounter).values(**_zeroed_values(self.clock.boundary()))
        if category is not None:
            self.check_category(category)
            stmt = stmt.where(WindowCounter.category == category)
        async with self.store.transaction(session) as s:
            await s.execute(stmt.execution_options(synchronize_session=False))
        logger.info("counter_windows_reset", category=category or "all")

    async def reset_all_counters(self, session: Optional[AsyncSession] = None) -> None:
        """Zero windows and totals of the built-in categories."""
        boundary = self.clock.boundary()
        async with self.store.transaction(session) as s:
            await self.seed(s)
            await s.execute(
                update(WindowCounter)
                .where(WindowCounter.category.in_(CATEGORIES))
                .values(**_zeroed_values(boundary))
                .execution_options(synchronize_session=False)
            )
            await s.execute(
                update(CounterTotal)
                .where(CounterTotal.category.in_(CATEGORIES))
                .values(total=0)
                .execution_options(synchronize_session=False)
            )
        logger.warning("counters_reset", categories=list(CATEGORIES))

    async def reset_staff_counters(self, staff_id: Optional[str] = None, session: Optional[AsyncSession] = None) -> None:
        if staff_id is not None:
            window_filter = WindowCounter.category == staff_category(staff_id)
            total_filter = CounterTotal.category == staff_category(staff_id)
        else:
            window_filter = WindowCounter.category.startswith(STAFF_PREFIX)
            total_filter = CounterTotal.category.startswith(STAFF_PREFIX)
        async with self.store.transaction(session) as s:
            await s.execute(
                update(WindowCounter).where(window_filter)
                .values(**_zeroed_values(self.clock.boundary()))
                .execution_options(synchronize_session=False)
            )
            await s.execute(
                update(CounterTotal).where(total_filter).values(total=0)
                .execution_options(synchronize_session=False)
            )
        logger.warning("staff_counters_reset", staff_id=staff_id or "all")

    async def domain_total(self, session: Optional[AsyncSession] = None) -> int:
        """confirmed + manual all-time total."""
        async with self.store.transaction(session) as s:
            result = await s.execute(domain_total_query())
            return int(result.scalar_one() or 0)
