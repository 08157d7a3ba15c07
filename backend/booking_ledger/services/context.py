"""
Explicit wiring of the booking subsystem.

Everything that holds a connection lives on a BookingContext created by
`build_context()` and torn down with `close()`. Nothing is a module global.
"""

from dataclasses import dataclass
from typing import Optional

from booking_ledger.core.clock import CivilClock
from booking_ledger.core.config import Settings, get_settings
from booking_ledger.core.logging import get_logger
from booking_ledger.db.store import BookingStore
from booking_ledger.services.booking_repository import BookingRepository
from booking_ledger.services.cache_service import ListingCache
from booking_ledger.services.counter_service import CounterStore
from booking_ledger.services.sequence_service import SequenceGenerator

logger = get_logger(__name__)


@dataclass
class BookingContext:
    settings: Settings
    store: BookingStore
    clock: CivilClock
    counters: CounterStore
    sequences: SequenceGenerator
    repository: BookingRepository
    cache: ListingCache

    async def start(self, create_schema: Optional[bool] = None) -> None:
        """Connect the store; optionally create tables and seed counter rows."""
        await self.store.connect()
        if create_schema if create_schema is not None else self.settings.DB_CREATE_SCHEMA:
            await self.store.create_schema()
            await self.counters.seed()
            logger.info("schema_ready")

    async def close(self) -> None:
        await self.cache.close()
        await self.store.dispose()


def build_context(
    settings: Optional[Settings] = None,
    *,
    clock: Optional[CivilClock] = None,
    store: Optional[BookingStore] = None,
) -> BookingContext:
    settings = settings or get_settings()
    clock = clock or CivilClock(settings.CIVIL_UTC_OFFSET_MINUTES)
    store = store or BookingStore(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        echo=settings.DEBUG,
    )
    counters = CounterStore(store, clock)
    sequences = SequenceGenerator(store, clock, settings)
    repository = BookingRepository(store, counters, sequences, clock, settings)
    return BookingContext(
        settings=settings,
        store=store,
        clock=clock,
        counters=counters,
        sequences=sequences,
        repository=repository,
        cache=ListingCache(settings),
    )
