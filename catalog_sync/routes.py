#=======================================================================================
# catalog_sync/routes.py
# FastAPI routes for the Shopify integration lifecycle, manual sync, durable jobs
# and the provider auto-sync cron trigger.
#
# ✅ Everything under /api/* requires HTTP Basic (admin)
# ✅ Except the OAuth callback, which Shopify reaches through the merchant's browser
#
# IMPORTANT: In main_app.py, include with NO extra prefix to avoid /api/api duplication:
#   from catalog_sync.routes import router as api_router
#   app.include_router(api_router)   # <-- no prefix here
#=======================================================================================

import json
import secrets
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

from fastapi import APIRouter, Query, Request, Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.responses import JSONResponse, RedirectResponse

from catalog_sync.config import settings
from catalog_sync.errors import ValidationError
from catalog_sync.store import open_store
from catalog_sync.sync.connections import (
    complete_shopify_oauth,
    disconnect_shopify_integration,
    start_shopify_connection,
)
from catalog_sync.sync.product_sync import load_integration, sync_shopify_integration
from catalog_sync.sync.provider_sync import run_due_provider_syncs
from catalog_sync.workers.jobs_worker import enqueue_job, get_job, list_jobs, retry_job

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Catalog Sync API"])

# ---------------------------
# HTTP Basic
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------------------
# Helpers
# ---------------------------
async def _safe_json(req: Request) -> Dict[str, Any]:
    """Best-effort JSON body parsing with fallbacks."""
    try:
        data = await req.json()
        return data if isinstance(data, dict) else {}
    except Exception:
        try:
            raw = (await req.body()).decode("utf-8", "ignore")
            return json.loads(raw) if raw.strip() else {}
        except Exception:
            return {}

def _get_bool(payload: Dict[str, Any], *keys: str, default: bool = False) -> bool:
    for k in keys:
        if k in payload:
            return bool(payload.get(k))
    return default

def _tenant_from(payload: Dict[str, Any]) -> str:
    tenant = payload.get("businessId") or payload.get("business_id")
    if not tenant:
        raise ValidationError("businessId is required")
    return str(tenant)

# ----------------------------------------------------------------------
# Shopify connection lifecycle
# ----------------------------------------------------------------------

@router.post("/integrations/shopify/connect", dependencies=[Depends(verify_admin)])
async def api_shopify_connect(request: Request):
    payload = await _safe_json(request)
    out = await start_shopify_connection(_tenant_from(payload), payload.get("shop") or "")
    return JSONResponse(content={"success": True, **out})


@router.get("/integrations/shopify/callback")
async def api_shopify_callback(
    shop: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
):
    """
    OAuth redirect target. Always answers with a redirect back to the
    dashboard: success page, or the error page with a message.
    """
    try:
        integ = await complete_shopify_oauth(shop, code, state)
        job_id = await enqueue_job("shopify.initial_sync", {"integration_id": integ.id, "tenant_id": integ.tenant_id})
        logger.info(f"[OAUTH] initial sync queued for integration {integ.id}: job {job_id}")
    except Exception as e:
        logger.error(f"[OAUTH] callback failed for shop={shop!r}: {e}")
        return RedirectResponse(f"{settings.APP_URL}/error?message={quote(str(e) or 'OAuth failed')}")
    return RedirectResponse(f"{settings.APP_URL}/dashboard/{integ.tenant_id}/products/shopify?success=true")


@router.get("/integrations/shopify/{integration_id}", dependencies=[Depends(verify_admin)])
async def api_shopify_integration(integration_id: int, businessId: Optional[str] = Query(None)):
    async with open_store() as store:
        integ = await load_integration(store, integration_id, businessId, require_active=False)
        return JSONResponse(content={"success": True, "integration": integ.summary()})


@router.post("/integrations/shopify/{integration_id}/sync", dependencies=[Depends(verify_admin)])
async def api_shopify_sync(integration_id: int, request: Request):
    """
    Manual full sync of one integration.

    Body:
      {
        "businessId": str,
        "background": bool (default False)  # when true, queue a job and return 202
      }
    """
    payload = await _safe_json(request)
    tenant = _tenant_from(payload)

    if _get_bool(payload, "background", default=False):
        # validate up front so a bad id is a 404/400 now, not a failed job later
        async with open_store() as store:
            await load_integration(store, integration_id, tenant)
        job_id = await enqueue_job("shopify.manual_sync", {"integration_id": integration_id, "tenant_id": tenant})
        return JSONResponse(
            status_code=202,
            content={"job_id": job_id, "status": "queued"},
            headers={"Location": f"/api/sync/status/{job_id}"},
        )

    result = await sync_shopify_integration(integration_id, tenant)
    return JSONResponse(content={"success": True, "message": "Sync completed", "stats": result.to_stats()})


@router.post("/integrations/shopify/{integration_id}/disconnect", dependencies=[Depends(verify_admin)])
async def api_shopify_disconnect(integration_id: int, request: Request):
    payload = await _safe_json(request)
    await disconnect_shopify_integration(integration_id, _tenant_from(payload))
    return JSONResponse(content={"success": True})

# ----------------------------------------------------------------------
# Durable jobs (admin-only)
# ----------------------------------------------------------------------

@router.get("/sync/jobs", dependencies=[Depends(verify_admin)])
async def api_sync_jobs(
    status_filter: Optional[str] = Query(None, alias="status"),
    kind: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
):
    """Most recent jobs first."""
    jobs = await list_jobs(status=status_filter, kind=kind, limit=limit)
    return JSONResponse(content={"jobs": jobs})


@router.get("/sync/status/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_status(job_id: str):
    return JSONResponse(content=await get_job(job_id))


@router.post("/sync/retry/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_retry(job_id: str):
    """Re-queue a failed job with its original request."""
    job = await retry_job(job_id)
    return JSONResponse(status_code=202, content={"job_id": job_id, "status": job["status"]})

# ----------------------------------------------------------------------
# Cron
# ----------------------------------------------------------------------

@router.post("/cron/sync-products", dependencies=[Depends(verify_admin)])
async def api_cron_sync_products():
    """Run every auto-sync provider integration whose frequency window has elapsed."""
    report = await run_due_provider_syncs()
    return JSONResponse(content={"success": True, "synced": len(report), "results": report})
