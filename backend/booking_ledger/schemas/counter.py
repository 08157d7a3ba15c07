"""
Pydantic schemas for counter responses.
"""

from pydantic import BaseModel


class CounterWindows(BaseModel):
    today: int = 0
    week: int = 0
    month: int = 0
    year: int = 0
    total: int = 0


class CounterResetResponse(BaseModel):
    message: str
    counters: dict[str, CounterWindows]
