"""
Reconciliation of booking records spread over several sources.

A booking moves between stores during its life (canonical -> cancelled or
completed archive, incomplete holding area -> canonical, legacy manual store),
so a listing that reads every store sees the same logical booking more than
once. This module folds those copies into one representative per booking.

Key design decisions:
- The winner is the max of (status rank, activity timestamp, canonical JSON,
  source name), a total order, so the result never depends on input order
- Archive sources force their status (a row in the cancelled archive is
  cancelled whatever its payload says)
- Records without a derivable key pass through untouched
- Pure function: no I/O, safe to call from anywhere
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

from booking_ledger.core.clock import as_utc
from booking_ledger.schemas.booking import normalize_status

STATUS_RANK = {
    "completed": 60,
    "cancelled": 55,
    "confirmed": 50,
    "manual": 40,
    "pending": 30,
    "incomplete": 10,
}
UNKNOWN_STATUS = "unknown"

KEY_FIELDS = ("bookingId", "originalBookingId", "id", "booking_id", "bookingID", "storeId", "_id")
TIMESTAMP_FIELDS = ("updatedAt", "completedAt", "createdAt", "updated_at", "completed_at", "created_at")

# epoch values above this are milliseconds
_MILLISECOND_THRESHOLD = 1e11


@dataclass
class BookingSource:
    name: str
    records: Iterable[Any] = field(default_factory=list)
    status_override: Optional[str] = None
    default_status: Optional[str] = None


SourceInput = Union[BookingSource, Iterable[Any]]


def status_rank(status: Optional[str]) -> int:
    return STATUS_RANK.get(normalize_status(status), 0)


def merge_key(record: Mapping[str, Any]) -> Optional[str]:
    for key_field in KEY_FIELDS:
        value = record.get(key_field)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


def _epoch_seconds(number: float) -> float:
    return number / 1000 if number > _MILLISECOND_THRESHOLD else float(number)


def parse_timestamp(value: Any) -> Optional[float]:
    """Seconds since the epoch, or None when the value is not a timestamp."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value).timestamp()
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp()
    if isinstance(value, (int, float)):
        return _epoch_seconds(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return _epoch_seconds(float(text))
    except ValueError:
        pass
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return as_utc(datetime.fromisoformat(text)).timestamp()
    except ValueError:
        return None


def activity_timestamp(record: Mapping[str, Any]) -> float:
    for ts_field in TIMESTAMP_FIELDS:
        parsed = parse_timestamp(record.get(ts_field))
        if parsed is not None:
            return parsed
    return 0.0


def canonical_json(record: Mapping[str, Any]) -> str:
    return json.dumps(record, sort_keys=True, default=str, separators=(",", ":"))


def _as_record(record: Any) -> dict:
    if isinstance(record, BaseModel):
        return record.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(record, Mapping):
        return dict(record)
    raise TypeError(f"cannot merge a {type(record).__name__}; expected a mapping or a booking model")


def _normalize_source(source: SourceInput) -> BookingSource:
    if isinstance(source, BookingSource):
        return source
    if isinstance(source, (Mapping, BaseModel)):
        return BookingSource(name=None, records=[source])
    return BookingSource(name=None, records=source)


def merge_booking_sources(sources: Iterable[SourceInput]) -> list[dict]:
    """
    Collapse several lists of booking records into one deduplicated list.

    Each output record carries `status`/`resolvedStatus` (the status it won
    with), `mergeKey` and `source`. Output is ordered newest activity first;
    records without a key come last.
    """
    winners: dict[str, tuple[tuple, dict]] = {}
    keyless: list[tuple[str, dict]] = []

    for source in map(_normalize_source, sources):
        for raw in source.records:
            record = _as_record(raw)
            resolved = (
                normalize_status(source.status_override)
                or normalize_status(record.get("status"))
                or normalize_status(source.default_status)
                or UNKNOWN_STATUS
            )
            key = merge_key(record)
            tagged = {
                **record,
                "status": resolved,
                "resolvedStatus": resolved,
                "mergeKey": key,
                "source": source.name,
            }
            if key is None:
                keyless.append((canonical_json(tagged), tagged))
                continue

            order = (status_rank(resolved), activity_timestamp(record), canonical_json(record), source.name or "")
            current = winners.get(key)
            if current is None or order > current[0]:
                winners[key] = (order, tagged)

    ranked = sorted(winners.items(), key=lambda item: (-item[1][0][1], item[0]))
    merged = [tagged for _, (_, tagged) in ranked]
    merged.extend(tagged for _, tagged in sorted(keyless, key=lambda item: item[0]))
    return merged
