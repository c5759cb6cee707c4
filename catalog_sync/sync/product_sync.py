# catalog_sync/sync/product_sync.py
# =======================================================
# Shopify → Catalog Product/Variant Sync Orchestrators
# - Manual full sync (single page, sequential, per-item isolation)
# - Initial sync after OAuth (same pass, driven by the job worker)
# - Webhook create/update (single item) and delete (deactivate + unmap)
# - Integration bookkeeping (last_synced, active product count)
# =======================================================
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from catalog_sync.credentials import open_secret
from catalog_sync.db import utcnow
from catalog_sync.errors import IntegrationNotFoundError, IntegrationStateError
from catalog_sync.mapping.field_mapping import map_shopify_product
from catalog_sync.models.catalog import Product
from catalog_sync.models.integrations import ExternalProductMapping, ShopifyIntegration
from catalog_sync.shopify import list_products
from catalog_sync.store import CatalogStore, open_store
from catalog_sync.sync.reconcile import (
    SKIPPED,
    ExternalIdentity,
    SyncRunResult,
    reconcile_each,
    reconcile_product,
)

logger = logging.getLogger("uvicorn.error")

# ---- one pass per integration at a time (per process) ----

_LOCKS: Dict[str, asyncio.Lock] = {}


def integration_lock(key: str) -> asyncio.Lock:
    lock = _LOCKS.get(key)
    if lock is None:
        lock = _LOCKS[key] = asyncio.Lock()
    return lock

# ---- lookups ----

async def load_integration(
    store: CatalogStore,
    integration_id: int,
    tenant_id: Optional[str] = None,
    *,
    require_active: bool = True,
) -> ShopifyIntegration:
    integ = await store.get(ShopifyIntegration, integration_id)
    if integ is None or (tenant_id is not None and integ.tenant_id != str(tenant_id)):
        raise IntegrationNotFoundError("Integration not found")
    if require_active and integ.status != "active":
        raise IntegrationStateError(f"Integration is not active (status={integ.status})")
    return integ


async def find_active_integration_by_shop(store: CatalogStore, shop: str) -> Optional[ShopifyIntegration]:
    return await store.find_one(
        ShopifyIntegration,
        order_by=ShopifyIntegration.id.desc(),
        shop_domain=(shop or "").strip().lower(),
        status="active",
    )


async def refresh_integration_counters(store: CatalogStore, integration_id: int) -> int:
    """Recount active products from the store (not from the run's tallies)."""
    count = await store.count(Product, integration_id=integration_id, status="active")
    integ = await store.get(ShopifyIntegration, integration_id)
    if integ is not None:
        await store.update(integ, product_count=count, last_synced=utcnow())
    return count

# ---- single item ----

async def _reconcile_shopify_item(
    store: CatalogStore, integration_id: int, tenant_id: str, product: Dict[str, Any]
) -> str:
    if product.get("id") is None:
        logger.warning("[SYNC] Shopify product without id skipped: %r", product.get("title"))
        return SKIPPED
    payload = await map_shopify_product(store, product)
    res = await reconcile_product(
        store, payload, ExternalIdentity(integration_id, product["id"]), tenant_id=tenant_id
    )
    return res.outcome

# ---- full pass (manual + initial) ----

async def sync_shopify_integration(integration_id: int, tenant_id: Optional[str] = None) -> SyncRunResult:
    """
    Fetch one page of products and reconcile them one by one. Upstream
    failures abort the pass (UpstreamHttpError propagates); item failures
    are counted and skipped.
    """
    async with integration_lock(f"shopify:{integration_id}"):
        async with open_store() as store:
            integ = await load_integration(store, integration_id, tenant_id)
            shop = integ.shop_domain
            tenant = integ.tenant_id
            token = open_secret(integ.access_token)

        logger.info("[SYNC] Shopify pass starting: integration=%s shop=%s", integration_id, shop)
        products = await list_products(shop, token)
        result = SyncRunResult(total=len(products))

        async def handle(store: CatalogStore, product: Dict[str, Any]) -> str:
            return await _reconcile_shopify_item(store, integration_id, tenant, product)

        await reconcile_each(products, handle, result, describe=lambda p: p.get("id"), label="SYNC")

        async with open_store() as store:
            active = await refresh_integration_counters(store, integration_id)

    logger.info(
        f"✅ Shopify sync complete for {shop}. Created: {result.created} Updated: {result.updated} "
        f"Skipped: {result.skipped} Errors: {result.errors} Active products: {active}"
    )
    return result

# ---- webhooks ----

async def apply_product_upsert(shop: str, product: Dict[str, Any]) -> str:
    """products/create and products/update: reconcile a single product."""
    async with open_store() as store:
        integ = await find_active_integration_by_shop(store, shop)
        if integ is None:
            raise IntegrationNotFoundError(f"No active integration for {shop}")
        integration_id, tenant = integ.id, integ.tenant_id

    async with integration_lock(f"shopify:{integration_id}"):
        async with open_store() as store:
            outcome = await _reconcile_shopify_item(store, integration_id, tenant, product)
        async with open_store() as store:
            await refresh_integration_counters(store, integration_id)
    logger.info("[HOOK] product %s %s for %s", product.get("id"), outcome, shop)
    return outcome


async def apply_product_delete(shop: str, external_id: Any) -> bool:
    """
    products/delete: mark the canonical product inactive and drop the
    mapping. Returns False when nothing was mapped to that id.
    """
    external_id = str(external_id)
    async with open_store() as store:
        integ = await find_active_integration_by_shop(store, shop)
        if integ is None:
            raise IntegrationNotFoundError(f"No active integration for {shop}")

        mapping = await store.find_one(ExternalProductMapping, integration_id=integ.id, external_id=external_id)
        product_id = mapping.product_id if mapping else None
        if product_id is None:
            product = await store.find_one(Product, integration_id=integ.id, external_id=external_id)
            product_id = product.id if product else None

        if product_id is not None:
            await store.update_where(Product, {"status": "inactive"}, id=product_id)
        await store.delete_where(ExternalProductMapping, integration_id=integ.id, external_id=external_id)
        await refresh_integration_counters(store, integ.id)

    logger.info("[HOOK] product %s deleted upstream → %s", external_id,
                f"product #{product_id} inactive" if product_id else "no mapped product")
    return product_id is not None
