"""
Event media pipeline - ops API.

Upload and delete flows enqueue jobs through `eventmedia.jobs.producer`;
this app only exposes health checks and queue operations for admins.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from eventmedia.core.config import get_settings
from eventmedia.core.database import Database
from eventmedia.core.logging import setup_logging
from eventmedia.jobs.views import router as pipeline_router

settings = get_settings()
API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown events."""
    setup_logging()
    await Database.connect()
    yield
    await Database.disconnect()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
## Event Media Pipeline

Background processing for event photo uploads.

- **Variants**: preview plus small/medium/large images in WebP and JPEG
- **Progress**: live processing updates per event over Redis pub/sub
- **Cleanup**: storage reconciliation when photos are removed
    """,
    lifespan=lifespan,
    docs_url=f"{API_PREFIX}/docs",
    redoc_url=f"{API_PREFIX}/redoc",
)

app.include_router(pipeline_router, prefix=API_PREFIX)


@app.get("/", tags=["Health"])
async def root():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "database": "connected" if Database.client else "disconnected",
        "version": settings.APP_VERSION,
    }
