# catalog_sync/providers_api.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from catalog_sync.errors import IntegrationNotFoundError
from catalog_sync.models.integrations import ApiIntegration
from catalog_sync.routes import _safe_json, verify_admin
from catalog_sync.store import open_store
from catalog_sync.sync.provider_sync import check_api_integration, sync_api_integration, upsert_api_integration

router = APIRouter(prefix="/api/branches", tags=["API Integrations"], dependencies=[Depends(verify_admin)])


@router.get("/{tenant_id}/api-integration")
async def get_api_integration(tenant_id: str):
    async with open_store() as store:
        integ = await store.find_one(ApiIntegration, tenant_id=tenant_id)
        if integ is None:
            raise IntegrationNotFoundError("API integration not found")
        return JSONResponse(content={"success": True, "integration": integ.summary()})


@router.put("/{tenant_id}/api-integration")
async def put_api_integration(tenant_id: str, request: Request):
    """
    Body: {provider, apiUrl, apiKey, apiSecret?, additionalParams?, syncFrequency?, autoSync?}
    Secrets are stored encrypted and never echoed back.
    """
    integ = await upsert_api_integration(tenant_id, await _safe_json(request))
    return JSONResponse(content={"success": True, "integration": integ.summary()})


@router.post("/{tenant_id}/api-integration/test")
async def test_api_integration_connection(tenant_id: str):
    return JSONResponse(content=await check_api_integration(tenant_id))


@router.post("/{tenant_id}/api-integration/sync")
async def sync_api_integration_now(tenant_id: str):
    result = await sync_api_integration(tenant_id)
    return JSONResponse(content={"success": True, "message": "Sync completed", "stats": result.to_stats()})
