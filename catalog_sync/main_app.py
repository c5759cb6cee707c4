#=================================================================
# catalog_sync/main_app.py
# FastAPI application entry-point (no static serving).
#=================================================================

import logging, asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

# Public webhooks (HMAC-verified, no Basic auth)
from catalog_sync.webhooks.shopify import router as shopify_webhooks_router

# Public API under /api/* (HTTP Basic inside the routers)
from catalog_sync.routes import router as api_router
from catalog_sync.importer.import_api import router as import_router
from catalog_sync.providers_api import router as providers_router

from catalog_sync.errors import CatalogSyncError
from catalog_sync.logging_filters import install_log_filters
from catalog_sync.workers.jobs_worker import worker_loop
from catalog_sync.db import init_db, dispose_engine
from catalog_sync.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Catalog Sync Service",
    description="Imports, maps and reconciles external product catalogs into the canonical catalog.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
install_log_filters()

# --- CORS ---
origins = settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------

# Webhooks (public)
app.include_router(shopify_webhooks_router)  # /webhooks/shopify/*

# API
app.include_router(api_router)        # /api/integrations/shopify/*, /api/sync/*, /api/cron/*
app.include_router(import_router)     # /api/products/import, /api/import/*
app.include_router(providers_router)  # /api/branches/{tenant}/api-integration*

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Catalog Sync"}

# --- Domain errors carry their own status ---
@app.exception_handler(CatalogSyncError)
async def catalog_sync_error_handler(request: Request, exc: CatalogSyncError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc)
    else:
        logger.warning("%s on %s %s: %s", exc.__class__.__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": f"Internal error: {str(exc)}"},
    )

# ---- Background worker lifecycle ----
_worker_task: asyncio.Task | None = None
_worker_stop: asyncio.Event | None = None

@app.on_event("startup")
async def _startup():
    # Init DB tables (catalog, integrations, jobs)
    await init_db()
    if not settings.WORKER_ENABLED:
        logger.info("[WORKER] disabled by WORKER_ENABLED=false")
        return
    global _worker_task, _worker_stop
    _worker_stop = asyncio.Event()
    _worker_task = asyncio.create_task(worker_loop(_worker_stop))

@app.on_event("shutdown")
async def _shutdown():
    global _worker_task, _worker_stop
    if _worker_stop:
        _worker_stop.set()
    if _worker_task:
        try:
            await asyncio.wait_for(_worker_task, timeout=5.0)
        except Exception:
            _worker_task.cancel()
    await dispose_engine()

