"""Main FastAPI application for the Academy Progress Service."""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import structlog
from prometheus_fastapi_instrumentator import Instrumentator

from academy.core.config import settings
from academy.core.logging import setup_logging
from academy.core.database import init_db, dispose_db, get_db
from academy.core.dependencies import get_redis_cache
from academy.core.exceptions import (
    CatalogConflictError,
    ConflictError,
    InvalidLessonReferenceError,
    LessonLockedError,
    NotFoundError,
    ProgressionError,
    StorageTimeoutError,
)
from academy.routers import catalog, gamification, progress, submissions

# Setup structured logging
setup_logging()
logger = structlog.get_logger()

ERROR_STATUS = {
    NotFoundError: 404,
    InvalidLessonReferenceError: 422,
    LessonLockedError: 409,
    ConflictError: 409,
    CatalogConflictError: 409,
    StorageTimeoutError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager."""
    # Startup
    logger.info("Starting Academy Progress Service", version=settings.APP_VERSION)

    await init_db()
    app.state.redis_cache = await get_redis_cache()

    logger.info("Progress service initialized successfully")

    yield

    # Shutdown
    logger.info("Shutting down Academy Progress Service")
    await dispose_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="XP, levels, path progress, submissions and leaderboards for the coding academy",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus metrics
if settings.ENABLE_METRICS:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.exception_handler(ProgressionError)
async def progression_error_handler(request: Request, exc: ProgressionError):
    status_code = ERROR_STATUS.get(type(exc), 400)
    headers = {"Retry-After": "1"} if exc.retryable else None

    log = logger.warning if status_code < 500 else logger.error
    log("Request failed", path=request.url.path, error=exc.code, detail=exc.message)

    return JSONResponse(content=exc.to_dict(), status_code=status_code, headers=headers)


# Include routers
app.include_router(progress.router, prefix="/api/progress", tags=["progress"])
app.include_router(gamification.router, prefix="/api/gamification", tags=["gamification"])
app.include_router(submissions.router, prefix="/api/submissions", tags=["submissions"])
app.include_router(catalog.router, prefix="/api/catalog", tags=["catalog"])


@app.get("/", tags=["root"])
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "status": "operational"
    }


async def _probe_database() -> None:
    async for db in get_db():
        await db.execute(text("SELECT 1"))


async def _probe_cache(request: Request) -> None:
    cache = getattr(request.app.state, "redis_cache", None)
    if cache is None:
        raise RuntimeError("cache not initialized")
    await cache.exists("health_check")


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Database and cache reachability; 503 when either is down."""
    probes = {
        "database": _probe_database(),
        "cache": _probe_cache(request),
    }

    checks = {}
    for name, probe in probes.items():
        try:
            await asyncio.wait_for(probe, timeout=settings.STORAGE_TIMEOUT_SECONDS)
            checks[name] = "healthy"
        except Exception as e:
            logger.warning("Health probe failed", probe=name, error=str(e))
            checks[name] = f"unhealthy: {e}"

    healthy = all(state == "healthy" for state in checks.values())
    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.APP_VERSION,
            "checks": checks,
        },
        status_code=200 if healthy else 503,
    )


@app.get("/config", tags=["debug"])
async def get_config():
    """Get current progression configuration (development only)."""
    if settings.is_production():
        return JSONResponse(
            content={"error": "Not available in production"},
            status_code=403
        )

    return {
        "environment": settings.ENVIRONMENT,
        "xp_curve": {
            "base": settings.XP_CURVE_BASE,
            "growth": settings.XP_CURVE_GROWTH,
        },
        "tier_level_thresholds": settings.TIER_LEVEL_THRESHOLDS,
        "streak_bonus_xp": settings.STREAK_BONUS_XP,
        "enforce_chapter_locks": settings.ENFORCE_CHAPTER_LOCKS,
        "concurrency": {
            "storage_timeout_seconds": settings.STORAGE_TIMEOUT_SECONDS,
            "conflict_max_retries": settings.CONFLICT_MAX_RETRIES,
        },
        "leaderboard_size": settings.LEADERBOARD_SIZE,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "academy.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_config=None  # Use structlog instead
    )
