"""
Pytest fixtures for the store, booking context, clock, and HTTP client.

Each test gets its own file-backed SQLite database (aiosqlite) so concurrent
tasks really use separate connections, and a FixedClock so window rollovers
can be driven explicitly.
"""

from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from booking_ledger.core.clock import FixedClock
from booking_ledger.core.config import Settings
from booking_ledger.db.store import BookingStore
from booking_ledger.main import app
from booking_ledger.models.counter import CounterTotal
from booking_ledger.services.context import BookingContext, build_context

# Wednesday, 10:00 in the civil zone
FIXED_NOW = datetime(2025, 3, 12, 10, 0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        REDIS_ENABLED=False,
        ENVIRONMENT="test",
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest_asyncio.fixture
async def ctx(settings: Settings, clock: FixedClock) -> AsyncGenerator[BookingContext, None]:
    """Booking context on a fresh schema with seeded counter rows."""
    store = BookingStore(settings.DATABASE_URL, connect_args={"timeout": 30})
    context = build_context(settings, clock=clock, store=store)
    await context.start(create_schema=True)
    yield context
    await context.close()


@pytest_asyncio.fixture
async def client(ctx: BookingContext) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the test context (ASGITransport skips the lifespan)."""
    app.state.booking_context = ctx
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del app.state.booking_context


async def set_totals(ctx: BookingContext, **totals: int) -> None:
    """Force counter totals, e.g. set_totals(ctx, confirmed=40, manual=2)."""
    async with ctx.store.transaction() as session:
        for category, total in totals.items():
            await ctx.store.ensure_row(session, CounterTotal, {"category": category, "total": 0})
            await session.execute(
                CounterTotal.__table__.update()
                .where(CounterTotal.__table__.c.category == category)
                .values(total=total)
            )


def booking_payload(**overrides) -> dict:
    payload = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "phone": "9876543210",
        "theaterName": "EROS Theatre",
        "date": "2025-03-25",
        "time": "6:00 PM - 9:00 PM",
        "occasion": "Birthday Party",
        "numberOfPeople": 4,
        "totalAmount": 2000,
        "advancePayment": 500,
        "venuePayment": 1500,
    }
    payload.update(overrides)
    return payload
