"""Initial schema: live bookings, archives, orders, counters and sequences.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

STATUS_CHECK = "status IN ('pending', 'confirmed', 'manual', 'completed', 'cancelled', 'incomplete')"


def _envelope_columns() -> list:
    """Compressed payload plus the hot columns duplicated from it."""
    return [
        sa.Column("store_id", sa.String(32), primary_key=True),
        sa.Column("booking_id", sa.String(64), nullable=False),
        sa.Column("ticket_number", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'unpaid'")),
        sa.Column("booking_type", sa.String(20), nullable=False, server_default=sa.text("'online'")),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("theater_name", sa.String(255), nullable=True),
        sa.Column("date", sa.String(32), nullable=True),
        sa.Column("time", sa.String(64), nullable=True),
        sa.Column("occasion", sa.String(255), nullable=True),
        sa.Column("number_of_people", sa.Integer(), nullable=True),
        sa.Column("total_amount", sa.Float(), nullable=True),
        sa.Column("advance_payment", sa.Float(), nullable=True),
        sa.Column("venue_payment", sa.Float(), nullable=True),
        sa.Column("staff_id", sa.String(64), nullable=True),
        sa.Column("staff_name", sa.String(255), nullable=True),
        sa.Column("compressed_payload", sa.LargeBinary(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _create_envelope_table(name: str, *extra) -> None:
    op.create_table(
        name,
        *_envelope_columns(),
        *extra,
        sa.CheckConstraint(STATUS_CHECK, name=f"check_{name}_status"),
    )
    # Lookups resolve by booking id first, then ticket number, then contact details.
    op.create_index(f"ix_{name}_booking_id", name, ["booking_id"], unique=True)
    op.create_index(f"ix_{name}_ticket_number", name, ["ticket_number"])
    op.create_index(f"ix_{name}_email", name, ["email"])
    op.create_index(f"ix_{name}_phone", name, ["phone"])


def upgrade() -> None:
    _create_envelope_table("bookings")
    _create_envelope_table("manual_bookings")
    _create_envelope_table(
        "cancelled_bookings",
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("refund_status", sa.String(32), nullable=False, server_default=sa.text("'non-refundable'")),
        sa.Column("original_table", sa.String(64), nullable=True),
    )
    # The retention sweep deletes by cancelled_at.
    op.create_index("ix_cancelled_bookings_cancelled_at", "cancelled_bookings", ["cancelled_at"])
    _create_envelope_table(
        "completed_bookings",
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_table", sa.String(64), nullable=True),
    )
    _create_envelope_table(
        "incomplete_bookings",
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_incomplete_bookings_expires_at", "incomplete_bookings", ["expires_at"])

    op.create_table(
        "booking_orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.String(64), nullable=True),
        sa.Column("store_booking_id", sa.String(32), nullable=True),
        sa.Column("ticket_number", sa.String(64), nullable=True),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("items", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_booking_orders_booking_id", "booking_orders", ["booking_id"])
    op.create_index("ix_booking_orders_store_booking_id", "booking_orders", ["store_booking_id"])
    op.create_index("ix_booking_orders_ticket_number", "booking_orders", ["ticket_number"])

    op.create_table(
        "window_counters",
        sa.Column("category", sa.String(80), primary_key=True),
        sa.Column("today", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("week", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("month", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("year", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_reset_date", sa.String(10), nullable=False),
        sa.Column("last_reset_week", sa.String(10), nullable=False),
        sa.Column("last_reset_month", sa.String(10), nullable=False),
        sa.Column("last_reset_year", sa.String(10), nullable=False),
        sa.CheckConstraint(
            "today >= 0 AND week >= 0 AND month >= 0 AND year >= 0",
            name="check_window_counters_non_negative",
        ),
    )
    op.create_table(
        "counter_totals",
        sa.Column("category", sa.String(80), primary_key=True),
        sa.Column("total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.CheckConstraint("total >= 0", name="check_counter_totals_non_negative"),
    )
    # seq stays NULL until first issued; the floor is taken from counter_totals.
    op.create_table(
        "sequences",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("seq", sa.Integer(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("sequences")
    op.drop_table("counter_totals")
    op.drop_table("window_counters")
    op.drop_table("booking_orders")
    op.drop_table("incomplete_bookings")
    op.drop_table("completed_bookings")
    op.drop_table("cancelled_bookings")
    op.drop_table("manual_bookings")
    op.drop_table("bookings")
