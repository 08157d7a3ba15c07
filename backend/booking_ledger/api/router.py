"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from booking_ledger.api.routes import bookings, counters, maintenance

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(counters.router)
api_router.include_router(maintenance.router)
