"""
Booking reference resolution.

A caller may hand us an internal store id, a human booking id, a ticket number
or, as a last resort, the customer's e-mail or phone. Each strategy is tried in
order and the first hit wins.
"""

import re
from typing import Awaitable, Callable, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_ledger.core.errors import Maybe, NotFound
from booking_ledger.core.logging import get_logger

logger = get_logger(__name__)

STORE_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{32}$")
_NON_DIGITS = re.compile(r"\D")

Strategy = Callable[[AsyncSession, type, str], Awaitable[Optional[object]]]


async def _first(session: AsyncSession, stmt):
    result = await session.execute(stmt.limit(1).execution_options(populate_existing=True))
    return result.scalars().first()


async def by_store_id(session: AsyncSession, model, reference: str):
    if not STORE_ID_PATTERN.match(reference):
        return None
    return await _first(session, select(model).where(model.store_id == reference.lower()))


async def by_booking_id(session: AsyncSession, model, reference: str):
    return await _first(session, select(model).where(model.booking_id == reference))


async def by_ticket_number(session: AsyncSession, model, reference: str):
    return await _first(
        session,
        select(model).where(model.ticket_number == reference).order_by(model.created_at.desc()),
    )


async def by_contact(session: AsyncSession, model, reference: str):
    if "@" in reference:
        condition = func.lower(model.email) == reference.lower()
    else:
        digits = _NON_DIGITS.sub("", reference)
        if not digits:
            return None
        condition = or_(model.phone == reference, model.phone == digits)
    return await _first(session, select(model).where(condition).order_by(model.created_at.desc()))


LOOKUP_CHAIN: Sequence[tuple[str, Strategy]] = (
    ("store_id", by_store_id),
    ("booking_id", by_booking_id),
    ("ticket_number", by_ticket_number),
    ("contact", by_contact),
)

# deletes and archive moves resolve by identity only
IDENTITY_CHAIN: Sequence[tuple[str, Strategy]] = LOOKUP_CHAIN[:3]


async def resolve(
    session: AsyncSession,
    model,
    reference: Optional[str],
    chain: Sequence[tuple[str, Strategy]] = LOOKUP_CHAIN,
) -> Maybe[object]:
    reference = (reference or "").strip()
    if not reference:
        return NotFound(reference)
    for name, strategy in chain:
        row = await strategy(session, model, reference)
        if row is not None:
            logger.debug("booking_resolved", strategy=name, reference=reference, table=model.__tablename__)
            return row
    return NotFound(reference)
