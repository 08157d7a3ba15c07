"""
Counter and sequence rows.

Key design decisions:
- Window values and their reset markers live on one row per category so the
  rollover check and the +1/-1 fold into a single UPDATE statement
- Totals live in their own table: rollover never touches them
- `sequences.seq` is nullable so an uninitialised sequence is distinguishable
  from one that was issued up to zero
"""

from sqlalchemy import Column, Integer, String, CheckConstraint

from booking_ledger.db.base import Base


class WindowCounter(Base):
    __tablename__ = "window_counters"

    category = Column(String(80), primary_key=True)
    today = Column(Integer, nullable=False, default=0)
    week = Column(Integer, nullable=False, default=0)
    month = Column(Integer, nullable=False, default=0)
    year = Column(Integer, nullable=False, default=0)
    last_reset_date = Column(String(10), nullable=False)
    last_reset_week = Column(String(10), nullable=False)
    last_reset_month = Column(String(10), nullable=False)
    last_reset_year = Column(String(10), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "today >= 0 AND week >= 0 AND month >= 0 AND year >= 0",
            name="check_window_counters_non_negative",
        ),
    )

    def __repr__(self) -> str:
        return f"<WindowCounter({self.category}: {self.today}/{self.week}/{self.month}/{self.year})>"


class CounterTotal(Base):
    __tablename__ = "counter_totals"

    category = Column(String(80), primary_key=True)
    total = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("total >= 0", name="check_counter_totals_non_negative"),
    )


class SequenceRow(Base):
    __tablename__ = "sequences"

    name = Column(String(64), primary_key=True)
    seq = Column(Integer, nullable=True)
