# catalog_sync/sync/connections.py
# =======================================================
# Shopify connection lifecycle: connect (pending + state),
# OAuth callback (exchange, shop info, webhooks → active), disconnect.
# =======================================================
from __future__ import annotations

import logging
import secrets
from typing import Any, Dict

from catalog_sync.config import settings
from catalog_sync.credentials import seal_secret
from catalog_sync.errors import IntegrationStateError, ValidationError
from catalog_sync.models.integrations import ShopifyIntegration
from catalog_sync.shopify import (
    build_authorize_url,
    exchange_code_for_token,
    get_shop_info,
    normalize_shop_domain,
    register_product_webhooks,
)
from catalog_sync.store import open_store
from catalog_sync.sync.product_sync import load_integration

logger = logging.getLogger("uvicorn.error")


async def start_shopify_connection(tenant_id: str, shop: str) -> Dict[str, Any]:
    """Create a pending integration carrying a fresh state token; return the authorize URL."""
    if not tenant_id:
        raise ValidationError("businessId is required")
    shop = normalize_shop_domain(shop)
    async with open_store() as store:
        active = await store.find_one(ShopifyIntegration, tenant_id=str(tenant_id), shop_domain=shop, status="active")
        if active is not None:
            raise IntegrationStateError("This Shopify store is already connected")
        state = secrets.token_hex(16)
        integ = await store.insert(
            ShopifyIntegration,
            tenant_id=str(tenant_id),
            shop_domain=shop,
            status="pending",
            state=state,
            scopes=settings.SHOPIFY_SCOPES,
        )
        integration_id = integ.id
    logger.info("[OAUTH] connection started: tenant=%s shop=%s integration=%s", tenant_id, shop, integration_id)
    return {"authUrl": build_authorize_url(shop, state), "integrationId": integration_id}


async def complete_shopify_oauth(shop: str | None, code: str | None, state: str | None) -> ShopifyIntegration:
    """
    Match the pending row by (state, shop), burn the state, exchange the
    code, read shop metadata, register product webhooks and mark active.
    """
    if not (shop and code and state):
        raise ValidationError("Missing shop, code or state")
    shop = normalize_shop_domain(shop)

    async with open_store() as store:
        pending = await store.find_one(ShopifyIntegration, state=state, shop_domain=shop, status="pending")
        if pending is None:
            raise ValidationError("Invalid or expired state")
        # single use, committed before the exchange so a replay cannot match again
        await store.update(pending, state=None)
        integration_id = pending.id

    token = await exchange_code_for_token(shop, code)
    info = await get_shop_info(shop, token)
    hooks = await register_product_webhooks(shop, token)
    failed = [h["topic"] for h in hooks if not h.get("ok")]
    if failed:
        logger.warning("[OAUTH] webhook registration failed for %s: %s", shop, failed)

    async with open_store() as store:
        integ = await store.get(ShopifyIntegration, integration_id)
        await store.update(
            integ,
            status="active",
            access_token=seal_secret(token),
            shop_name=info.get("name"),
            shop_owner=info.get("shop_owner"),
            shop_email=info.get("email"),
            plan_name=info.get("plan_name"),
            currency=info.get("currency"),
            timezone=info.get("timezone") or info.get("iana_timezone"),
            primary_locale=info.get("primary_locale"),
        )
    logger.info("[OAUTH] integration %s active for %s", integration_id, shop)
    return integ


async def disconnect_shopify_integration(integration_id: int, tenant_id: str) -> ShopifyIntegration:
    async with open_store() as store:
        integ = await load_integration(store, integration_id, tenant_id, require_active=False)
        await store.update(integ, status="disconnected", access_token=None, state=None)
    logger.info("[OAUTH] integration %s disconnected", integration_id)
    return integ
