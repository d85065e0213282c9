"""Field Jobs - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import get_settings
from app.core.database import dispose_engine
from app.core.env_validation import validate_environment
from app.routers import catalog_router, events_router, jobs_router

# CRITICAL: Validate environment before proceeding
# This will hard-fail (exit 1) if required configuration is missing
validate_environment()

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"{settings.app_name} starting (storage={settings.storage_provider.value})")
    yield
    # Shutdown
    await dispose_engine()


app = FastAPI(
    title=settings.app_name,
    description="Field job lifecycle with photo-gated transitions, timed work and live updates.",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS - Dynamically configured from ALLOWED_ORIGINS environment variable
# In production, wildcard (*) is blocked by env_validation.py
allowed_origins = [origin.strip() for origin in settings.allowed_origins.split(",")]
logger.info(f"CORS configured with origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API v1 routers
app.include_router(jobs_router, prefix=settings.api_v1_prefix)
app.include_router(events_router, prefix=settings.api_v1_prefix)  # SSE
app.include_router(catalog_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs" if settings.debug else "Disabled in production",
    }
