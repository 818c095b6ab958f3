"""
Ashiato Memo - Backend API
FastAPI service for the outing-memo app with multiple storage backends:
SQLite (default), JSON files and Google Sheets.

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import contextvars
import logging
import os
import time
import uuid
from collections import defaultdict

from models.catalog import DEFAULT_CATALOG
from settings import Settings, get_settings

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)
request_start_time_var = contextvars.ContextVar('request_start_time', default=None)

# ========== Metrics Storage ==========
request_metrics = {
    "total_requests": defaultdict(int),  # by endpoint
    "total_latency": defaultdict(float),  # by endpoint
    "status_codes": defaultdict(int),  # by status code
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# BACKEND CONFIGURATION
# ============================================================================
settings = get_settings()


def build_storage_adapter(cfg: Settings):
    """Create the storage adapter selected by STORAGE_BACKEND."""
    backend = cfg.storage_backend
    logger.info(f"Storage Backend: {backend.upper()}")

    if backend == "sheets":
        from adapters.sheets import SheetsAdapter

        sa_json = cfg.resolved_google_sa_json()
        if not sa_json or not cfg.sheets_spreadsheet_id:
            raise ValueError("Google Sheets requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")
        try:
            adapter = SheetsAdapter(google_sa_json=sa_json, spreadsheet_id=cfg.sheets_spreadsheet_id)
        except Exception as e:
            logger.error(f"Failed to initialize Google Sheets: {e}")
            raise
        logger.info("Google Sheets adapter initialized")
        return adapter

    if backend == "sqlite":
        from adapters.sqlite import SqliteAdapter

        logger.info(f"Database: {cfg.db_url.split('://')[0]}")
        return SqliteAdapter.from_url(cfg.db_url)

    if backend == "json":
        from adapters.json import JsonAdapter

        return JsonAdapter(cfg.json_data_dir)

    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")


# ---- DI helpers (used by routers/*) ----
def get_storage_adapter(request: Request):
    return request.app.state.storage_adapter


def get_image_storage(request: Request):
    return request.app.state.image_storage


def get_catalog(request: Request):
    return request.app.state.catalog


# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="Ashiato Memo API",
    description="Backend API for the outing memo app (wizard, memos, feed, analysis)",
    version="1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)
app.state.catalog = DEFAULT_CATALOG

# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    request_start_time_var.set(time.time())

    response = await call_next(request)

    latency = time.time() - request_start_time_var.get()

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({round(latency * 1000, 2)}ms) [{request_id}]"
    )

    # Update metrics
    endpoint = f"{request.method} {request.url.path}"
    request_metrics["total_requests"][endpoint] += 1
    request_metrics["total_latency"][endpoint] += latency
    request_metrics["status_codes"][response.status_code] += 1

    response.headers["X-Request-ID"] = request_id

    return response


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )

# Locally stored images are served from /uploads
if settings.image_storage_backend == "local":
    app.mount(
        "/uploads",
        StaticFiles(directory=settings.image_upload_dir, check_dir=False),
        name="uploads",
    )

# ============================================================================
# ENDPOINTS
# ============================================================================
@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint"""
    try:
        request.app.state.storage_adapter.ping()
        return {
            "status": "healthy",
            "backend": settings.storage_backend,
            "version": "1.0"
        }
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "backend": settings.storage_backend, "error": str(e)}
        )


@app.get("/healthz")
async def healthz():
    """
    Liveness probe: is the process alive and responding?
    """
    return {
        "status": "ok",
        "timestamp": time.time(),
        "version": "1.0"
    }


@app.get("/readyz")
async def readyz(request: Request):
    """
    Readiness probe: can the storage backend serve traffic?
    Returns 200 if ready, 503 if not ready.
    """
    from routers.wizard import wizard_sessions

    try:
        request.app.state.storage_adapter.ping()
        return {
            "status": "ready",
            "backend": settings.storage_backend,
            "wizard_sessions": len(wizard_sessions),
            "timestamp": time.time()
        }
    except Exception as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "backend": settings.storage_backend,
                "error": str(e),
                "timestamp": time.time()
            }
        )


@app.get("/metrics")
async def get_metrics():
    """
    Request counts, latencies and wizard session stats.
    """
    from routers.wizard import wizard_sessions

    avg_latencies = {}
    for endpoint, total_latency in request_metrics["total_latency"].items():
        count = request_metrics["total_requests"][endpoint]
        avg_latencies[endpoint] = round((total_latency / count) * 1000, 2) if count > 0 else 0

    total = sum(request_metrics["total_requests"].values())
    return {
        "timestamp": time.time(),
        "uptime_seconds": round(time.time() - startup_time, 2),
        "backend": settings.storage_backend,
        "requests": {
            "by_endpoint": dict(request_metrics["total_requests"]),
            "by_status": dict(request_metrics["status_codes"]),
            "total": total,
        },
        "latency": {
            "by_endpoint_ms": avg_latencies,
            "average_ms": round(
                sum(request_metrics["total_latency"].values()) / total * 1000, 2
            ) if total > 0 else 0,
        },
        "wizard_sessions": {
            "active": len(wizard_sessions),
            "max": wizard_sessions.maxsize,
            "ttl_seconds": wizard_sessions.ttl,
        },
    }


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": "Ashiato Memo API",
        "version": "1.0",
        "backend": settings.storage_backend,
        "status": "running",
        "docs": "/docs"
    }


from routers import catalog as catalog_router
app.include_router(catalog_router.router)

from routers import wizard as wizard_router
app.include_router(wizard_router.router)

from routers import memos as memos_router
app.include_router(memos_router.router)

from routers import images as images_router
app.include_router(images_router.router)

from routers import analysis as analysis_router
app.include_router(analysis_router.router)

from routers import profile as profile_router
app.include_router(profile_router.router)

startup_time = time.time()

@app.on_event("startup")
async def startup_event():
    global startup_time
    startup_time = time.time()
    logger.info("Ashiato Memo API starting up...")

    # Tests (or an embedding app) may inject their own backends
    if getattr(app.state, "storage_adapter", None) is None:
        app.state.storage_adapter = build_storage_adapter(settings)
    if getattr(app.state, "image_storage", None) is None:
        from core.image_storage import get_image_storage as build_image_storage
        app.state.image_storage = build_image_storage(settings)

    from core.report_pdf import resolve_font_path
    font_path = resolve_font_path(settings.pdf_font_path)
    if font_path:
        logger.info(f"PDF font: {font_path}")
    elif settings.pdf_font_required:
        raise RuntimeError("PDF_FONT_REQUIRED is set but no Japanese-capable font was found; set PDF_FONT_PATH")
    else:
        logger.error("No Japanese-capable font found; PDF export of Japanese memos will fail until PDF_FONT_PATH is set")

    logger.info(f"Image storage: {settings.image_storage_backend}")
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")

@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Ashiato Memo API shutting down...")
    engine = getattr(getattr(app.state, "storage_adapter", None), "engine", None)
    if engine is not None:
        engine.dispose()

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
