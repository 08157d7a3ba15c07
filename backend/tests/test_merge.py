"""
Tests for merging booking sources into one ranked, deduplicated list.
"""

from datetime import datetime, timezone
from itertools import permutations

from booking_ledger.schemas.booking import Booking
from booking_ledger.services.merge_service import (
    BookingSource,
    activity_timestamp,
    merge_booking_sources,
    merge_key,
    parse_timestamp,
)


def _record(status, updated_at="2025-03-10T10:00:00Z", booking_id="FMT-2025-57", **extra):
    return {"bookingId": booking_id, "status": status, "updatedAt": updated_at, **extra}


def test_higher_rank_wins_regardless_of_order():
    confirmed = _record("confirmed", updated_at="2025-03-11T10:00:00Z")
    completed = _record("completed", updated_at="2025-03-10T10:00:00Z")

    forward = merge_booking_sources([[confirmed], [completed]])
    backward = merge_booking_sources([[completed], [confirmed]])

    assert forward == backward
    assert len(forward) == 1
    assert forward[0]["status"] == "completed"
    assert forward[0]["resolvedStatus"] == "completed"


def test_cancelled_outranks_confirmed():
    merged = merge_booking_sources([
        BookingSource("bookings", [_record("confirmed", updated_at="2025-03-12T08:00:00Z")]),
        BookingSource("cancelled", [_record("confirmed", updated_at="2025-03-11T08:00:00Z")], status_override="cancelled"),
    ])

    assert len(merged) == 1
    assert merged[0]["status"] == "cancelled"
    assert merged[0]["source"] == "cancelled"


def test_equal_rank_prefers_latest_activity():
    older = _record("confirmed", updated_at="2025-03-10T10:00:00Z", name="old")
    newer = _record("confirmed", updated_at="2025-03-11T10:00:00Z", name="new")

    for ordering in permutations([older, newer]):
        merged = merge_booking_sources([list(ordering)])
        assert merged[0]["name"] == "new"


def test_result_is_independent_of_input_order():
    records = [
        _record("pending", booking_id="A", updated_at=1741600000000),
        _record("confirmed", booking_id="A", updated_at=1741500000000),
        _record("confirmed", booking_id="B", updated_at="2025-03-01T00:00:00Z", note="x"),
        _record("confirmed", booking_id="B", updated_at="2025-03-01T00:00:00Z", note="y"),
        {"name": "walk-in without any id", "status": "manual"},
    ]

    results = {
        repr(merge_booking_sources([[r] for r in ordering]))
        for ordering in permutations(records)
    }
    assert len(results) == 1


def test_status_is_normalised():
    merged = merge_booking_sources([[_record("Confirmed (Paid) ")], [_record(" PENDING")]])
    assert merged[0]["status"] == "confirmed"


def test_records_without_key_pass_through_last():
    keyless = {"name": "no id", "status": "confirmed"}
    merged = merge_booking_sources([[keyless, keyless], [_record("confirmed")]])

    assert [r["mergeKey"] for r in merged] == ["FMT-2025-57", None, None]


def test_output_is_newest_first():
    merged = merge_booking_sources([[
        _record("confirmed", booking_id="old", updated_at="2025-01-01T00:00:00Z"),
        _record("confirmed", booking_id="new", updated_at="2025-02-01T00:00:00Z"),
    ]])
    assert [r["mergeKey"] for r in merged] == ["new", "old"]


def test_unknown_and_empty_status_rank_lowest():
    merged = merge_booking_sources([[_record(""), _record("incomplete", updated_at="2020-01-01T00:00:00Z")]])
    assert merged[0]["status"] == "incomplete"

    alone = merge_booking_sources([[_record(None)]])
    assert alone[0]["resolvedStatus"] == "unknown"


def test_manual_source_defaults_status():
    merged = merge_booking_sources([BookingSource("manual", [{"bookingId": "M-1"}], default_status="manual")])
    assert merged[0]["status"] == "manual"


def test_key_derivation_priority():
    assert merge_key({"bookingId": "A", "id": "B"}) == "A"
    assert merge_key({"originalBookingId": "O", "id": "B"}) == "O"
    assert merge_key({"id": 42, "storeId": "s"}) == "42"
    assert merge_key({"bookingID": "legacy"}) == "legacy"
    assert merge_key({"storeId": "f" * 32}) == "f" * 32
    assert merge_key({"name": "nobody"}) is None


def test_timestamp_parsing():
    expected = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc).timestamp()

    assert parse_timestamp("2025-03-10T10:00:00Z") == expected
    assert parse_timestamp("2025-03-10T15:30:00+05:30") == expected
    assert parse_timestamp(expected * 1000) == expected
    assert parse_timestamp(expected) == expected
    assert parse_timestamp(datetime(2025, 3, 10, 10, 0)) == expected
    assert parse_timestamp("not a date") is None


def test_activity_timestamp_priority():
    assert activity_timestamp({"updatedAt": "2025-03-02T00:00:00Z", "createdAt": "2025-03-05T00:00:00Z"}) == (
        parse_timestamp("2025-03-02T00:00:00Z")
    )
    assert activity_timestamp({"completedAt": "garbage", "createdAt": "2025-03-05T00:00:00Z"}) == (
        parse_timestamp("2025-03-05T00:00:00Z")
    )
    assert activity_timestamp({}) == 0.0


def test_accepts_booking_models():
    booking = Booking(booking_id="FMT-2025-9", status="manual", name="Zoya")
    merged = merge_booking_sources([[booking], [_record("pending", booking_id="FMT-2025-9")]])

    assert merged[0]["status"] == "manual"
    assert merged[0]["name"] == "Zoya"
