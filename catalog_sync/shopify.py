#==========================================================================================
# catalog_sync/shopify.py
# Shopify Admin REST interface module.
# Product listing, OAuth code exchange, webhook registration and shop metadata.
#==========================================================================================
import re
import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx

from catalog_sync.config import settings
from catalog_sync.errors import UpstreamHttpError, ValidationError

logger = logging.getLogger("uvicorn.error")

_SHOP_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)


def _admin_url(shop: str, path: str) -> str:
    return f"https://{shop}/admin/api/{settings.SHOPIFY_API_VERSION}/{path.lstrip('/')}"


def _headers(access_token: str) -> Dict[str, str]:
    return {"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"}


def _raise_for_status(resp: httpx.Response) -> None:
    if resp.is_success:
        return
    raise UpstreamHttpError(resp.status_code, resp.reason_phrase or "", url=str(resp.request.url), body=resp.text[:500])


def normalize_shop_domain(shop: str | None) -> str:
    """'Acme.myshopify.com/' | 'https://acme.myshopify.com' | 'acme' → 'acme.myshopify.com'."""
    s = (shop or "").strip().lower()
    s = re.sub(r"^https?://", "", s).split("/", 1)[0]
    if s and "." not in s:
        s = f"{s}.myshopify.com"
    if not _SHOP_RE.match(s):
        raise ValidationError(f"Invalid shop domain: {shop!r}")
    return s


def build_authorize_url(shop: str, state: str, redirect_uri: str | None = None) -> str:
    redirect_uri = redirect_uri or f"{settings.PUBLIC_API_URL}/api/integrations/shopify/callback"
    query = urlencode({
        "client_id": settings.SHOPIFY_API_KEY,
        "scope": settings.SHOPIFY_SCOPES,
        "redirect_uri": redirect_uri,
        "state": state,
    })
    return f"https://{shop}/admin/oauth/authorize?{query}"

# ---- Products ----

async def list_products(shop: str, access_token: str, limit: int | None = None) -> List[Dict[str, Any]]:
    """Fetch the first page of products (no cursor pagination)."""
    limit = limit or settings.SHOPIFY_PAGE_LIMIT
    url = _admin_url(shop, f"products.json?limit={limit}")
    async with _client() as client:
        try:
            resp = await client.get(url, headers=_headers(access_token))
        except httpx.HTTPError as e:
            logger.error("[SHOPIFY] product listing failed for %s: %s", shop, e)
            raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=url)
    _raise_for_status(resp)
    products = (resp.json() or {}).get("products") or []
    logger.info("[SHOPIFY] fetched %d products from %s", len(products), shop)
    return products

# ---- OAuth ----

async def exchange_code_for_token(shop: str, code: str) -> str:
    """One-time authorization-code → offline access token exchange."""
    url = f"https://{shop}/admin/oauth/access_token"
    body = {
        "client_id": settings.SHOPIFY_API_KEY,
        "client_secret": settings.SHOPIFY_API_SECRET,
        "code": code,
    }
    async with _client() as client:
        try:
            resp = await client.post(url, json=body)
        except httpx.HTTPError as e:
            raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=url)
    _raise_for_status(resp)
    token = (resp.json() or {}).get("access_token")
    if not token:
        raise UpstreamHttpError(resp.status_code, "token missing from response", url=url)
    return token

# ---- Shop ----

async def get_shop_info(shop: str, access_token: str) -> Dict[str, Any]:
    url = _admin_url(shop, "shop.json")
    async with _client() as client:
        try:
            resp = await client.get(url, headers=_headers(access_token))
        except httpx.HTTPError as e:
            raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=url)
    _raise_for_status(resp)
    return (resp.json() or {}).get("shop") or {}

# ---- Webhooks ----

def webhook_address(topic: str) -> str:
    # products/create → {PUBLIC_API_URL}/webhooks/shopify/products/create
    return f"{settings.PUBLIC_API_URL}/webhooks/shopify/{topic}"


async def register_product_webhooks(shop: str, access_token: str, topics: List[str] | None = None) -> List[Dict[str, Any]]:
    """
    Subscribe to product events. One failing topic does not stop the others;
    the per-topic outcome is returned for logging.
    """
    topics = topics or settings.SHOPIFY_WEBHOOK_TOPICS
    url = _admin_url(shop, "webhooks.json")
    report: List[Dict[str, Any]] = []
    async with _client() as client:
        for topic in topics:
            payload = {"webhook": {"topic": topic, "address": webhook_address(topic), "format": "json"}}
            try:
                resp = await client.post(url, headers=_headers(access_token), json=payload)
                ok = resp.is_success
                report.append({"topic": topic, "ok": ok, "status_code": resp.status_code})
                if not ok:
                    logger.warning("[SHOPIFY] webhook %s registration failed: %s %s", topic, resp.status_code, resp.text[:200])
            except httpx.HTTPError as e:
                logger.warning("[SHOPIFY] webhook %s registration error: %s", topic, e)
                report.append({"topic": topic, "ok": False, "error": str(e)})
    return report
