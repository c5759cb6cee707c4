# catalog_sync/sync/provider_sync.py
# =======================================================
# Generic API provider sync (shopify / woocommerce / magento /
# wondersign / custom), matched by SKU within the tenant.
# Also: provider config upsert, connectivity test, and the
# auto-sync scheduler tick used by the worker and the cron route.
# =======================================================
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from catalog_sync.credentials import open_secret, seal_secret
from catalog_sync.db import utcnow
from catalog_sync.errors import IntegrationNotFoundError, ValidationError
from catalog_sync.mapping.field_mapping import resolve_references
from catalog_sync.mapping.provider_mapping import map_provider_product
from catalog_sync.models.integrations import ApiIntegration
from catalog_sync.providers import SUPPORTED_PROVIDERS, fetch_provider_products
from catalog_sync.store import CatalogStore, open_store
from catalog_sync.sync.product_sync import integration_lock
from catalog_sync.sync.reconcile import (
    MATCH_BY_SKU_THEN_NAME,
    SKIPPED,
    SkuIdentity,
    StatusPolicy,
    SyncRunResult,
    reconcile_each,
    reconcile_product,
)

logger = logging.getLogger("uvicorn.error")

FREQUENCY_HOURS = {"hourly": 1, "daily": 24, "weekly": 168}
SYNC_FREQUENCIES = tuple(FREQUENCY_HOURS)

# provider items always land as draft and keep their status afterwards
_PROVIDER_POLICY = StatusPolicy(on_create="draft", on_update=None)
# second-level categories hold the product subcategories
_SUBCATEGORY_LEVEL = 2


def is_sync_due(last_sync_at: Optional[datetime], frequency: Optional[str], now: Optional[datetime] = None) -> bool:
    if last_sync_at is None:
        return True
    now = now or utcnow()
    hours = FREQUENCY_HOURS.get((frequency or "").lower(), FREQUENCY_HOURS["daily"])
    return now - last_sync_at >= timedelta(hours=hours)

# ---- config ----

def _parse_additional_params(value: Any) -> Optional[Dict[str, Any]]:
    """Free-form provider params arrive as an object or as a JSON string."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError("Invalid JSON in additional parameters")
    if not isinstance(value, dict):
        raise ValidationError("additionalParams must be a JSON object")
    return value or None


async def upsert_api_integration(tenant_id: str, data: Dict[str, Any]) -> ApiIntegration:
    provider = (data.get("provider") or "").strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValidationError(f"Unsupported provider: {provider!r}", supported=list(SUPPORTED_PROVIDERS))
    api_url = (data.get("apiUrl") or "").strip()
    if not api_url:
        raise ValidationError("apiUrl is required")
    frequency = (data.get("syncFrequency") or "daily").lower()
    if frequency not in SYNC_FREQUENCIES:
        raise ValidationError(f"Invalid syncFrequency: {frequency!r}", supported=list(SYNC_FREQUENCIES))

    values: Dict[str, Any] = {
        "provider": provider,
        "api_url": api_url,
        "additional_params": _parse_additional_params(data.get("additionalParams")),
        "sync_frequency": frequency,
        "auto_sync": bool(data.get("autoSync", False)),
    }
    # blank secrets on update keep the stored ones
    if data.get("apiKey"):
        values["api_key"] = seal_secret(data["apiKey"])
    if data.get("apiSecret"):
        values["api_secret"] = seal_secret(data["apiSecret"])

    async with open_store() as store:
        integ = await store.find_one(ApiIntegration, tenant_id=str(tenant_id))
        if integ is None:
            if "api_key" not in values:
                raise ValidationError("apiKey is required")
            integ = await store.insert(ApiIntegration, tenant_id=str(tenant_id), **values)
            logger.info("[PROVIDER] integration created for tenant %s (%s)", tenant_id, provider)
        else:
            await store.update(integ, **values)
            logger.info("[PROVIDER] integration updated for tenant %s (%s)", tenant_id, provider)
    return integ


async def _load_config(store: CatalogStore, tenant_id: str) -> Dict[str, Any]:
    integ = await store.find_one(ApiIntegration, tenant_id=str(tenant_id))
    if integ is None:
        raise IntegrationNotFoundError("API integration not found")
    return {
        "id": integ.id,
        "provider": integ.provider,
        "api_url": integ.api_url,
        "api_key": open_secret(integ.api_key),
        "api_secret": open_secret(integ.api_secret) or None,
        "mapping_config": (integ.additional_params or {}).get("mapping") or integ.additional_params,
    }


async def check_api_integration(tenant_id: str) -> Dict[str, Any]:
    """Fetch once and report how many items the provider returned."""
    async with open_store() as store:
        cfg = await _load_config(store, tenant_id)
    items = await fetch_provider_products(cfg["provider"], cfg["api_url"], cfg["api_key"], cfg["api_secret"])
    return {"success": True, "provider": cfg["provider"], "productCount": len(items)}

# ---- sync ----

async def sync_api_integration(tenant_id: str) -> SyncRunResult:
    async with open_store() as store:
        cfg = await _load_config(store, tenant_id)
    tenant = str(tenant_id)

    async with integration_lock(f"api:{cfg['id']}"):
        items = await fetch_provider_products(cfg["provider"], cfg["api_url"], cfg["api_key"], cfg["api_secret"])
        result = SyncRunResult(total=len(items))

        async def handle(store: CatalogStore, raw: Dict[str, Any]) -> str:
            payload = map_provider_product(
                cfg["provider"], raw, mapping_config=cfg["mapping_config"], api_url=cfg["api_url"]
            )
            sku = payload.first_sku() if payload else None
            if not sku:
                logger.warning("[PROVIDER] item without SKU skipped: %r", raw.get("id") or raw.get("name"))
                return SKIPPED
            await resolve_references(
                store, payload, create_brand=False, case_insensitive=True, category_level=_SUBCATEGORY_LEVEL
            )
            res = await reconcile_product(
                store,
                payload,
                SkuIdentity(tenant, sku),
                tenant_id=tenant,
                policy=_PROVIDER_POLICY,
                option_match=MATCH_BY_SKU_THEN_NAME,
            )
            return res.outcome

        await reconcile_each(
            items, handle, result, describe=lambda raw: raw.get("id") or raw.get("sku"), label="PROVIDER"
        )

        async with open_store() as store:
            await store.update_where(ApiIntegration, {"last_sync_at": utcnow()}, id=cfg["id"])

    logger.info(
        f"✅ {cfg['provider']} sync complete for tenant {tenant}. Created: {result.created} "
        f"Updated: {result.updated} Skipped: {result.skipped} Errors: {result.errors}"
    )
    return result


async def run_due_provider_syncs(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Sync every auto-sync integration whose frequency window has elapsed."""
    now = now or utcnow()
    async with open_store() as store:
        rows = await store.find_all(ApiIntegration, order_by=ApiIntegration.id, auto_sync=True)
        due = [r.tenant_id for r in rows if is_sync_due(r.last_sync_at, r.sync_frequency, now)]

    report: List[Dict[str, Any]] = []
    for tenant in due:
        try:
            res = await sync_api_integration(tenant)
            report.append({"tenantId": tenant, "success": True, "stats": res.to_stats()})
        except Exception as e:
            logger.exception("[PROVIDER] scheduled sync failed for tenant %s", tenant)
            report.append({"tenantId": tenant, "success": False, "error": str(e)})
    if due:
        logger.info("[PROVIDER] scheduled syncs run: %d", len(due))
    return report
