"""
Compressed envelope codec.

A booking is stored as gzip(compact UTF-8 JSON) in `compressed_payload`, next to
plain "hot" columns duplicated from the document for querying.

Key design decisions:
- Compression is deterministic (mtime=0): same document, same bytes
- Decoding accepts whatever the driver hands back (bytes, memoryview, wrapper
  objects, strings, int arrays) and coerces it before decompressing
- `decompress` never raises; callers fall back to the hot columns
"""

import gzip
import json
import zlib
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from booking_ledger.core.errors import CodecError
from booking_ledger.core.logging import get_logger
from booking_ledger.core.metrics import codec_failures
from booking_ledger.schemas.booking import Booking

logger = get_logger(__name__)

HOT_FIELDS = (
    "booking_id", "ticket_number", "status", "payment_status", "booking_type",
    "name", "email", "phone", "theater_name", "date", "time", "occasion",
    "number_of_people", "total_amount", "advance_payment", "venue_payment",
    "staff_id", "staff_name",
)
TIMESTAMP_FIELDS = ("created_at", "updated_at")
# columns that only exist on some archive tables
ARCHIVE_FIELDS = (
    "cancelled_at", "cancellation_reason", "refund_amount", "refund_status",
    "completed_at", "expires_at", "original_table",
)


def _json_default(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def compress(document: Mapping[str, Any]) -> bytes:
    body = json.dumps(document, separators=(",", ":"), ensure_ascii=False, default=_json_default)
    return gzip.compress(body.encode("utf-8"), mtime=0)


def _coerce_bytes(raw: Any) -> bytes:
    if isinstance(raw, bytes):
        return raw
    if isinstance(raw, (bytearray, memoryview)):
        return bytes(raw)
    if hasattr(raw, "tobytes"):
        return bytes(raw.tobytes())
    if hasattr(raw, "__bytes__"):
        return bytes(raw)
    if isinstance(raw, str):
        return raw.encode("utf-8")
    if isinstance(raw, (list, tuple)):
        return bytes(raw)
    return str(raw).encode("utf-8")


def decode_payload(raw: Any) -> dict:
    """Strict decode. Raises CodecError on anything that is not a gzip'd JSON object."""
    if raw is None:
        raise CodecError("payload is empty")
    try:
        data = _coerce_bytes(raw)
        document = json.loads(gzip.decompress(data).decode("utf-8"))
    except (OSError, EOFError, ValueError, TypeError, zlib.error) as exc:
        raise CodecError(f"cannot decode payload: {exc}") from exc
    if not isinstance(document, dict):
        raise CodecError(f"payload decoded to {type(document).__name__}, expected an object")
    return document


def decompress(raw: Any, fallback: Optional[dict] = None) -> Optional[dict]:
    try:
        return decode_payload(raw)
    except CodecError as exc:
        codec_failures.inc()
        logger.warning("codec_decode_failed", error=str(exc))
        return fallback


def _alias(field: str) -> str:
    return Booking.model_fields[field].alias or field


def pack_envelope(booking: Booking) -> dict:
    """Column values for an envelope row: hot columns plus the compressed document."""
    columns = {field: getattr(booking, field) for field in HOT_FIELDS}
    for field in TIMESTAMP_FIELDS:
        value = getattr(booking, field)
        if value is not None:
            columns[field] = value
    columns["compressed_payload"] = compress(booking.to_document())
    return columns


def unpack_envelope(row: Any) -> Booking:
    """
    Rebuild a Booking from an envelope row.

    Hot columns overlay the decoded document. If the payload is unreadable the
    hot columns alone become the record.
    """
    hot = {"storeId": row.store_id}
    for field in HOT_FIELDS + TIMESTAMP_FIELDS + ARCHIVE_FIELDS:
        value = getattr(row, field, None)
        if value is not None:
            hot[_alias(field)] = value

    document = decompress(row.compressed_payload, fallback={}) if row.compressed_payload is not None else {}
    try:
        return Booking.model_validate({**document, **hot})
    except ValidationError as exc:
        logger.warning("envelope_payload_invalid", store_id=row.store_id, error=str(exc))
        return Booking.model_validate(hot)
