"""
Store handle: lazily-created async engine plus session factory.

The handle is created explicitly, connects on first use (or on `connect()`),
and is torn down with `dispose()`. All mutual exclusion is delegated to the
database; this module only owns connection lifecycle, transactions and the
translation of driver errors into StoreError / StoreConnectionError.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from booking_ledger.core.errors import StoreConnectionError, StoreError
from booking_ledger.core.logging import get_logger
from booking_ledger.db.base import Base

logger = get_logger(__name__)


# operational errors that mean "busy", not "unreachable"
LOCK_CONTENTION_MARKERS = (
    "database is locked",
    "database table is locked",
    "lock timeout",
    "lock not available",
    "could not obtain lock",
    "deadlock detected",
    "could not serialize access",
)


def is_lock_contention(exc: BaseException) -> bool:
    message = str(getattr(exc, "orig", None) or exc).lower()
    return any(marker in message for marker in LOCK_CONTENTION_MARKERS)


def translate_error(exc: BaseException) -> StoreError:
    """Map a driver/SQLAlchemy failure onto the store error taxonomy."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StoreConnectionError(str(exc))
    if isinstance(exc, (InterfaceError, OSError, asyncio.TimeoutError)):
        return StoreConnectionError(str(exc))
    if isinstance(exc, OperationalError) and not is_lock_contention(exc):
        return StoreConnectionError(str(exc))
    return StoreError(str(exc))


class BookingStore:
    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 20,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        echo: bool = False,
        connect_args: Optional[dict] = None,
    ):
        self.database_url = database_url
        self._engine_options = {
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "pool_timeout": pool_timeout,
            "pool_recycle": pool_recycle,
        }
        self._echo = echo
        self._connect_args = connect_args or {}
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            options = {"echo": self._echo, "pool_pre_ping": True}
            if not self.database_url.startswith("sqlite"):
                options.update(self._engine_options)
            if self._connect_args:
                options["connect_args"] = self._connect_args
            self._engine = create_async_engine(self.database_url, **options)
            self._sessionmaker = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_update_returning(self) -> bool:
        return bool(getattr(self.engine.dialect, "update_returning", False))

    async def connect(self) -> None:
        """Create the engine and prove the database answers."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.error("store_connection_failed", error=str(exc))
            raise translate_error(exc) from exc
        logger.info("store_connected", dialect=self.dialect_name)

    async def create_schema(self) -> None:
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as exc:
            raise translate_error(exc) from exc

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("store_disposed")

    @asynccontextmanager
    async def transaction(self, existing: Optional[AsyncSession] = None) -> AsyncIterator[AsyncSession]:
        """
        Yield a session inside a transaction.

        When `existing` is given the caller already owns a transaction and this
        simply joins it; otherwise a new session is opened and committed on
        exit (rolled back on any error).
        """
        if existing is not None:
            yield existing
            return

        self.engine  # make sure the session factory exists
        async with self._sessionmaker() as session:
            try:
                async with session.begin():
                    yield session
            except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
                raise translate_error(exc) from exc

    async def ensure_row(self, session: AsyncSession, model, values: dict) -> None:
        """Insert `values` unless a row with the same primary key already exists."""
        table = model.__table__
        if self.dialect_name == "postgresql":
            await session.execute(pg_insert(table).values(**values).on_conflict_do_nothing())
        elif self.dialect_name == "sqlite":
            await session.execute(sqlite_insert(table).values(**values).on_conflict_do_nothing())
        else:
            # No portable upsert: check then insert; a concurrent insert of the same key
            # surfaces as StoreError from the enclosing transaction.
            pk_filter = [column == values[column.name] for column in table.primary_key.columns]
            existing = await session.execute(select(*table.primary_key.columns).where(*pk_filter))
            if existing.first() is None:
                await session.execute(table.insert().values(**values))
