"""
Product Imagery API - Main Application

FastAPI application with:
- Image transforms (resize, optimize, adjust, hero, lifestyle, isometric)
- Background removal via local rembg, Azure Vision or PhotoRoom
- Batch processing
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Static serving of processed and uploaded images
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from product_imagery.api.dependencies import get_gateway
from product_imagery.api.routes import api_router
from product_imagery.core.config import settings
from product_imagery.core.exceptions import register_exception_handlers
from product_imagery.core.logging import get_logger, setup_logging
from product_imagery.core.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    set_app_info,
)
from product_imagery.core.telemetry import UsageTracker
from product_imagery.engines.background.providers import build_registry


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    startup_start = time.time()

    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    app.state.providers = build_registry(settings, get_gateway())
    app.state.usage = UsageTracker()
    logger.info("providers_registered", providers=app.state.providers.names())

    # The service still starts without rembg; only /api/remove-background fails
    await app.state.providers.get("local").detect_version()

    startup_time = time.time() - startup_start
    logger.info("application_ready", startup_time_seconds=startup_time)

    yield

    logger.info("application_shutting_down")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Product imagery service for e-commerce catalogs:

    - **Background Removal**: local rembg, Azure Computer Vision, PhotoRoom
    - **Transforms**: resize, optimize, color adjustment
    - **Compositions**: hero banners, lifestyle scenes, isometric frames
    - **Batch**: ordered operations over up to 10 images
    - **Observability**: Structured logging, Prometheus metrics

    Processed images are served from `/processed/`, originals from `/uploads/`.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

# CORS
cors_origins = settings.CORS_ORIGINS.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics and per-client request counts.

    Upload volume is recorded by ImageReader once an image has been read.
    """
    start_time = time.time()
    client = request.client.host if request.client else "unknown"

    usage = getattr(request.app.state, "usage", None)
    if usage is not None:
        usage.record_request(client)

    response = await call_next(request)
    duration = time.time() - start_time

    # Label by route template so static file names do not become label values
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)

    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_router)


# =============================================================================
# Static Files
# =============================================================================
storage_root = Path(settings.LOCAL_STORAGE_PATH)
for folder in (settings.PROCESSED_FOLDER, settings.UPLOADS_FOLDER):
    (storage_root / folder).mkdir(parents=True, exist_ok=True)
    app.mount(f"/{folder}", StaticFiles(directory=storage_root / folder), name=folder)


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api": "/api",
        "metrics": "/api/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/debug/stats", tags=["debug"])
async def debug_stats(request: Request):
    """Per-client request and upload volume. Only available in DEBUG mode."""
    if not settings.DEBUG:
        return JSONResponse(status_code=404, content={"detail": "Not Found"})

    usage: UsageTracker = request.app.state.usage
    return {
        "success": True,
        "stats": usage.snapshot()
    }


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "product_imagery.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
