# catalog_sync/importer/enrichment.py
# =======================================================
# AI-assisted enrichment of one raw import row into a canonical product.
# The model call goes to an OpenAI-compatible /chat/completions endpoint;
# a malformed reply is repaired when possible, otherwise a minimal product
# built from the raw row is returned together with a warning.
# =======================================================
from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError as PydanticValidationError

from catalog_sync.config import settings
from catalog_sync.errors import UpstreamHttpError
from catalog_sync.mapping.canonical import DEFAULT_NAME, CanonicalProduct
from catalog_sync.storage import is_temporary_url, stage_remote_image
from catalog_sync.store import CatalogStore
from catalog_sync.sync.components.brands import resolve_brand, resolve_category
from catalog_sync.sync.components.util import normalize_images

logger = logging.getLogger("uvicorn.error")

# raw row → model reply text
Enricher = Callable[[Dict[str, Any]], Awaitable[str]]

WARNING_REPAIRED = "Product processed from a repaired model reply"
WARNING_FALLBACK = "Product processed with the fallback method due to errors"
DEFAULT_STOCK = 10

PROMPT = """You are a product data processor. Transform the raw product data below into one JSON object
with the fields: name, short_name, description, short_description, brand_name, category_hint,
keywords (array of strings), dimensions (optional object, Spanish keys: ancho, altura, profundidad, peso),
specs (optional object), images_url (array of strings), shipping_cost (integer) and
variants: [{name, display_name, position, options: [{name, display_name, price, stock, is_default, sku, images_url}]}].

Rules:
- Every variant has at least one option. Do not put dimensions or any other field inside variants.
- Prices are integers in cents ($13.45 → 1345, $13 → 1300). Estimate a price if it is missing.
- Stock defaults to 10. Generate a SKU if it is missing.
- Only process data that belongs to the product; never invent products that are not in the data.
- Return ONLY the JSON object.

Raw product data:
{raw}
"""

# ---------------------------
# Structure helpers
# ---------------------------

def _new_sku() -> str:
    return uuid.uuid4().hex[:8]


def _default_option(price: Any = 0) -> Dict[str, Any]:
    return {
        "name": DEFAULT_NAME,
        "display_name": DEFAULT_NAME,
        "price": price or 0,
        "stock": DEFAULT_STOCK,
        "position": 0,
        "is_default": True,
        "sku": _new_sku(),
        "images_url": None,
    }


def ensure_valid_product_structure(product: Dict[str, Any]) -> Dict[str, Any]:
    """
    variants is a list of dicts; no variants → one Default variant; every
    variant has an options list; no options → one Default option.
    """
    product = dict(product or {})
    variants = product.get("variants")
    if not isinstance(variants, list):
        variants = []
    variants = [dict(v) for v in variants if isinstance(v, dict)]
    if not variants:
        variants.append({"name": DEFAULT_NAME, "display_name": DEFAULT_NAME, "position": 0, "options": []})

    for pos, variant in enumerate(variants):
        variant.setdefault("name", DEFAULT_NAME)
        variant.setdefault("display_name", variant["name"])
        variant.setdefault("position", pos)
        options = variant.get("options")
        options = [dict(o) for o in options if isinstance(o, dict)] if isinstance(options, list) else []
        if not options:
            options.append(_default_option(product.get("shipping_cost")))
        for i, opt in enumerate(options):
            opt.setdefault("position", i)
            if not opt.get("sku"):
                opt["sku"] = _new_sku()
        variant["options"] = options
        # dimensions belong to the product, never to a variant
        variant.pop("dimensions", None)

    product["variants"] = variants
    return product


_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_REPAIRS = [
    (re.compile(r""","dimensions['"]:\{[^}]*\}\}\]\}"""), "}]}"),
    (re.compile(r""",\"\]\}\"?"""), "}"),
    (re.compile(r"\}+\s*\]+\s*\}+\s*\"+\s*$"), "}]}"),
    (re.compile(r"\}+\s*\"+\s*$"), "}"),
    (re.compile(r",\s*([}\]])"), r"\1"),  # trailing commas
]


def repair_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parse a model reply; on failure apply the known fix-ups once. None when unrecoverable."""
    if not text:
        return None
    candidate = _FENCE_RE.sub("", text.strip())
    try:
        data = json.loads(candidate)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    # keep only the outermost object when the model wrapped it in prose
    start, end = candidate.find("{"), candidate.rfind("}")
    if start != -1 and end > start:
        candidate = candidate[start:end + 1]
    for pattern, replacement in _REPAIRS:
        candidate = pattern.sub(replacement, candidate)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.warning("[IMPORT] model reply could not be repaired: %s", e)
        return None
    return data if isinstance(data, dict) else None

# ---------------------------
# Model client
# ---------------------------

class ChatCompletionEnricher:
    """Enricher backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(self, api_url: str, api_key: str, model: str, *, timeout: float | None = None):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout or max(settings.HTTP_TIMEOUT, 60.0)

    @classmethod
    def from_settings(cls) -> Optional["ChatCompletionEnricher"]:
        if not settings.ENRICHMENT_API_KEY:
            return None
        return cls(settings.ENRICHMENT_API_URL, settings.ENRICHMENT_API_KEY, settings.ENRICHMENT_MODEL)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout)

    async def __call__(self, raw: Dict[str, Any]) -> str:
        url = f"{self.api_url}/chat/completions"
        body = {
            "model": self.model,
            "temperature": 0.1,
            "max_tokens": 2000,
            "response_format": {"type": "json_object"},
            "messages": [{"role": "user", "content": PROMPT.replace("{raw}", json.dumps(raw, ensure_ascii=False, indent=2))}],
        }
        async with self._client() as client:
            try:
                resp = await client.post(url, json=body, headers={"Authorization": f"Bearer {self.api_key}"})
            except httpx.HTTPError as e:
                raise UpstreamHttpError(None, str(e) or e.__class__.__name__, url=url)
        if not resp.is_success:
            raise UpstreamHttpError(resp.status_code, resp.reason_phrase or "", url=url, body=resp.text[:500])
        choices = (resp.json() or {}).get("choices") or []
        return ((choices[0] if choices else {}).get("message") or {}).get("content") or ""

# ---------------------------
# Processing
# ---------------------------

def fallback_product(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": raw.get("name") or raw.get("nombre") or "Unprocessed product",
        "short_name": raw.get("short_name") or raw.get("nombre_corto") or "Product",
        "description": raw.get("description") or raw.get("descripcion") or "",
        "short_description": raw.get("short_description") or raw.get("descripcion_corta") or "",
        "brand_name": raw.get("brand") or raw.get("marca") or "",
        "images_url": [""],
        "shipping_cost": 0,
        "variants": [{"name": DEFAULT_NAME, "display_name": DEFAULT_NAME, "position": 0, "options": [_default_option()]}],
    }


async def _stage_images(urls: Any) -> list[str]:
    out: list[str] = []
    for url in urls or []:
        if not isinstance(url, str) or not url.strip():
            continue
        url = url.strip()
        if url.startswith(("http://", "https://")) and not is_temporary_url(url):
            try:
                url = await stage_remote_image(url)
            except Exception as e:
                logger.warning("[IMPORT] image download failed %s: %s", url, e)
                continue
        out.append(url)
    return out


async def process_product(
    store: CatalogStore,
    raw: Dict[str, Any],
    enricher: Optional[Enricher] = None,
) -> Tuple[Dict[str, Any], Optional[str]]:
    """
    Returns (processed_product, warning). The processed product carries
    brand_id / subcategory_id and temp image URLs, ready for the save step.
    """
    enricher = enricher or ChatCompletionEnricher.from_settings()
    warning: Optional[str] = None
    product: Optional[CanonicalProduct] = None

    reply: Optional[str] = None
    if enricher is None:
        logger.warning("[IMPORT] no enrichment backend configured; using fallback")
    else:
        try:
            reply = await enricher(raw)
        except Exception as e:
            logger.error("[IMPORT] enrichment call failed: %s", e)

    if reply:
        try:
            data = json.loads(reply)
        except json.JSONDecodeError:
            data = repair_json(reply)
            warning = WARNING_REPAIRED
        if isinstance(data, dict):
            try:
                product = CanonicalProduct.model_validate(ensure_valid_product_structure(data))
            except PydanticValidationError as e:
                logger.warning("[IMPORT] model reply failed validation: %s", e)

    if product is None:
        warning = WARNING_FALLBACK
        product = CanonicalProduct.model_validate(fallback_product(raw))
    else:
        product.images_url = normalize_images(await _stage_images(product.images_url))
        for variant in product.variants:
            for opt in variant.options:
                if opt.images_url:
                    opt.images_url = await _stage_images(opt.images_url) or None

    # brands the model came up with wait for review; categories are matched, never created
    product.brand_id = await resolve_brand(
        store, product.brand_name, create=True, status="on_revision", case_insensitive=True
    )
    product.subcategory_id, _ = await resolve_category(
        store, product.category_hint, settings.CATALOG_DEFAULT_SUBCATEGORY_ID, level=2
    )

    processed = product.model_dump(
        exclude={"brand_name", "category_hint", "external_id", "source", "source_status", "category_resolved"}
    )
    return processed, warning
