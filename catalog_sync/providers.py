#==========================================================================================
# catalog_sync/providers.py
# Product listing for the generic "API integration" providers configured per branch.
# Each fetcher returns the raw product list or raises UpstreamHttpError.
#==========================================================================================
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from catalog_sync.config import settings
from catalog_sync.errors import UpstreamHttpError, ValidationError

logger = logging.getLogger("uvicorn.error")

SUPPORTED_PROVIDERS = ("shopify", "woocommerce", "magento", "wondersign", "custom")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)


async def _get_json(url: str, *, provider: str, headers: Dict[str, str] | None = None,
                    auth: Optional[tuple] = None) -> Any:
    async with _client() as client:
        try:
            resp = await client.get(url, headers=headers or {}, auth=auth)
        except httpx.HTTPError as e:
            logger.error("[PROVIDER] %s request failed: %s", provider, e)
            raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=url)
    if not resp.is_success:
        logger.error("[PROVIDER] %s API error %s: %s", provider, resp.status_code, resp.text[:300])
        raise UpstreamHttpError(resp.status_code, resp.reason_phrase or "", url=url, body=resp.text[:500])
    return resp.json()

# ---- per-provider fetchers ----

async def fetch_shopify(api_url: str, api_key: str, api_secret: str | None = None) -> List[Dict[str, Any]]:
    data = await _get_json(f"{api_url.rstrip('/')}/products.json", provider="shopify",
                           headers={"X-Shopify-Access-Token": api_key})
    return (data or {}).get("products") or []


async def fetch_woocommerce(api_url: str, api_key: str, api_secret: str | None = None) -> List[Dict[str, Any]]:
    data = await _get_json(f"{api_url.rstrip('/')}/wp-json/wc/v3/products", provider="woocommerce",
                           auth=(api_key, api_secret or ""))
    return data or []


async def fetch_magento(api_url: str, api_key: str, api_secret: str | None = None) -> List[Dict[str, Any]]:
    base = api_url.rstrip("/")
    token_url = f"{base}/rest/V1/integration/admin/token"
    async with _client() as client:
        try:
            resp = await client.post(token_url, json={"username": api_key, "password": api_secret or ""})
        except httpx.HTTPError as e:
            raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=token_url)
    if not resp.is_success:
        raise UpstreamHttpError(resp.status_code, resp.reason_phrase or "auth failed", url=token_url)
    token = resp.text.strip().strip('"')
    data = await _get_json(f"{base}/rest/V1/products?searchCriteria[pageSize]=100", provider="magento",
                           headers={"Authorization": f"Bearer {token}"})
    return (data or {}).get("items") or []


async def fetch_wondersign(api_url: str, api_key: str, api_secret: str | None = None) -> List[Dict[str, Any]]:
    data = await _get_json(f"{api_url.rstrip('/')}/products", provider="wondersign",
                           headers={"Authorization": f"Bearer {api_key}"})
    if isinstance(data, dict):
        data = data.get("products") or data.get("data") or []
    return data or []


async def fetch_custom(api_url: str, api_key: str, api_secret: str | None = None) -> List[Dict[str, Any]]:
    headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
    data = await _get_json(api_url, provider="custom", headers=headers)
    if isinstance(data, dict):
        products = data.get("products") or data.get("items") or data
    else:
        products = data
    return products if isinstance(products, list) else [products]


_FETCHERS: Dict[str, Callable[..., Awaitable[List[Dict[str, Any]]]]] = {
    "shopify": fetch_shopify,
    "woocommerce": fetch_woocommerce,
    "magento": fetch_magento,
    "wondersign": fetch_wondersign,
    "custom": fetch_custom,
}


async def fetch_provider_products(provider: str, api_url: str, api_key: str,
                                  api_secret: str | None = None) -> List[Dict[str, Any]]:
    fetcher = _FETCHERS.get((provider or "").strip().lower())
    if fetcher is None:
        raise ValidationError(f"Unsupported provider: {provider!r}")
    logger.info("[PROVIDER] fetching products from %s (%s)", provider, api_url)
    return await fetcher(api_url, api_key, api_secret)
