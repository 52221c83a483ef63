"""
Entitlements API - Subscription usage limits

Main FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import api_router
from app.config import settings
from app.utils.dates import utcnow

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup and shutdown.
    """
    # Startup
    logger.info("Entitlements API starting up...")

    # Create database tables
    from app.database import engine, Base
    from app.models import Subscription, UsageLimit  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")

    if not settings.stripe_secret_key or not settings.stripe_webhook_secret:
        logger.warning("Stripe keys not configured: sync, checkout and webhooks will fail")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set: maintenance endpoints reject every call")
    logger.info(f"Usage sweep grace period: {settings.usage_sweep_grace_minutes} minutes")

    yield

    # Shutdown
    logger.info("Entitlements API shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Entitlements API",
    description="Subscription entitlement windows and usage limits",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(",") if settings.cors_origins else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc) if settings.debug else "Internal server error",
            "type": type(exc).__name__,
        },
    )


# Include API routes
app.include_router(api_router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Entitlements API",
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
        "health": "/api/v1/webhooks/health",
    }


# Health check at root level
@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "version": "1.0.0",
    }
