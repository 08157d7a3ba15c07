"""
Booking Ledger API - Main Application Entry Point

Booking lifecycle service demonstrating:
- Gap-free, collision-free booking identifiers under concurrent writers
- Compressed booking documents with hot-column fallback
- Time-windowed counters updated in single atomic statements
- A deterministic merged view over the live store and its archives
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from booking_ledger.core.config import get_settings
from booking_ledger.core.errors import StoreError
from booking_ledger.core.logging import setup_logging, get_logger
from booking_ledger.core.metrics import metrics_endpoint
from booking_ledger.api.router import api_router
from booking_ledger.api.middleware import RequestLoggingMiddleware
from booking_ledger.services.context import build_context

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    ctx = build_context(settings)
    await ctx.start()
    app.state.booking_context = ctx

    if await ctx.cache.get_redis():
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    yield

    await ctx.close()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Booking lifecycle API: identifiers, counters, archives and merged listings",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for Docker and load balancers."""
    ctx = request.app.state.booking_context
    try:
        await ctx.store.connect()
        store_status = "connected"
    except StoreError as e:
        store_status = f"error: {e}"
    return {
        "status": "healthy" if store_status == "connected" else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "store": store_status,
        "cache": await ctx.cache.stats(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
