# catalog_sync/importer/bulk_import.py
# =======================================================
# Bulk catalog import (no external ids):
#   - two-sheet workbook (Productos / Variantes), matched by product name
#   - save path for AI-processed products from /api/import/process
# Both go through the same reconciliation engine as the Shopify sync.
# =======================================================
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from catalog_sync.config import settings
from catalog_sync.errors import ValidationError
from catalog_sync.importer.spreadsheet import PRODUCTS_SHEET, VARIANTS_SHEET, read_workbook_sheets
from catalog_sync.mapping.canonical import CanonicalOption, CanonicalProduct, CanonicalVariant, default_variant
from catalog_sync.models.catalog import Product, ProductVariant, ProductVariantOption
from catalog_sync.storage import is_temporary_url, promote_images, stage_remote_image
from catalog_sync.store import CatalogStore
from catalog_sync.sync.components.price import to_minor_units, to_stock
from catalog_sync.sync.components.util import normalize_images, split_csv, truncate
from catalog_sync.sync.reconcile import (
    MATCH_BY_SKU_THEN_NAME,
    MIRROR,
    NameIdentity,
    StatusPolicy,
    SyncRunResult,
    reconcile_each,
    reconcile_product,
)

logger = logging.getLogger("uvicorn.error")

# ---------------------------
# key: value strings
# ---------------------------

def parse_dimensions_or_specs(text: Any) -> Optional[Dict[str, str]]:
    """'ancho: 10, altura: 5' → {'ancho': '10', 'altura': '5'}; nothing usable → None."""
    if not text:
        return None
    out: Dict[str, str] = {}
    for pair in str(text).split(","):
        key, _, value = pair.partition(":")
        key, value = key.strip(), value.strip()
        if key and value:
            out[key] = value
    return out or None


def format_dimensions_or_specs(values: Optional[Dict[str, Any]]) -> str:
    if not values:
        return ""
    return ", ".join(f"{k}: {v}" for k, v in values.items())

# ---------------------------
# Row → canonical
# ---------------------------

def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(float(str(value).strip())) if str(value or "").strip() else None
    except ValueError:
        return None


def _truthy(value: Any) -> bool:
    return str(value or "").strip().lower() in {"true", "1", "si", "sí", "yes", "x"}


async def _stage_images(cell: Any) -> List[str]:
    """Remote URLs are downloaded into temp storage; a failed download drops the image."""
    out: List[str] = []
    for url in split_csv(cell):
        if url.startswith(("http://", "https://")) and not is_temporary_url(url):
            try:
                url = await stage_remote_image(url)
            except Exception as e:
                logger.warning("[IMPORT] image download failed %s: %s", url, e)
                continue
        out.append(url)
    return out


async def _variants_from_rows(rows: List[Dict[str, str]]) -> List[CanonicalVariant]:
    groups: "OrderedDict[str, List[Dict[str, str]]]" = OrderedDict()
    for row in rows:
        groups.setdefault(row.get("variante_nombre") or "Default", []).append(row)

    variants: List[CanonicalVariant] = []
    for position, (name, options) in enumerate(groups.items()):
        display = options[0].get("variante_nombre_visualizacion") or name
        out_options: List[CanonicalOption] = []
        for i, opt in enumerate(options):
            opt_name = opt.get("opcion_nombre") or "Default"
            images = await _stage_images(opt.get("imagenes_url"))
            out_options.append(
                CanonicalOption(
                    name=opt_name,
                    display_name=opt.get("opcion_nombre_visualizacion") or opt_name,
                    price=to_minor_units(opt.get("precio")) or 0,
                    stock=to_stock(opt.get("stock")),
                    sku=opt.get("sku") or None,
                    images_url=images or None,
                    is_default=_truthy(opt.get("es_predeterminado")),
                    position=i,
                )
            )
        variants.append(CanonicalVariant(name=name, display_name=display, position=position, options=out_options))
    return variants


async def row_to_canonical(row: Dict[str, str], variant_rows: List[Dict[str, str]]) -> CanonicalProduct:
    name = (row.get("nombre") or "").strip()
    if not name:
        raise ValidationError("Row without 'nombre'")
    subcategory_id = _int_or_none(row.get("subcategoria_id"))
    return CanonicalProduct(
        name=name,
        short_name=row.get("nombre_corto") or truncate(name, 50),
        description=row.get("descripcion") or "",
        short_description=row.get("descripcion_corta") or "",
        brand_id=_int_or_none(row.get("marca_id")),
        subcategory_id=subcategory_id if subcategory_id is not None else settings.CATALOG_DEFAULT_SUBCATEGORY_ID,
        category_resolved=subcategory_id is not None,
        keywords=split_csv(row.get("palabras_clave")),
        dimensions=parse_dimensions_or_specs(row.get("dimensiones")),
        specs=parse_dimensions_or_specs(row.get("especificaciones")),
        images_url=normalize_images(await _stage_images(row.get("imagenes_url"))),
        variants=await _variants_from_rows(variant_rows),
        source="import",
    )

# ---------------------------
# Post-insert image promotion
# ---------------------------

async def promote_product_images(store: CatalogStore, product_id: int) -> None:
    """Move temp images of the product and its options under the product's folder."""
    product = await store.get(Product, product_id)
    if product and any(is_temporary_url(u) for u in product.images_url or []):
        await store.update(product, images_url=promote_images(product_id, product.images_url))

    variants = await store.find_all(ProductVariant, product_id=product_id)
    if not variants:
        return
    options = await store.find_all(ProductVariantOption, variant_id=[v.id for v in variants])
    for opt in options:
        if opt.images_url and any(is_temporary_url(u) for u in opt.images_url):
            promoted = [u for u in promote_images(product_id, opt.images_url) if u]
            await store.update(opt, images_url=promoted or None)

# ---------------------------
# Workbook import
# ---------------------------

async def import_workbook(tenant_id: str, content: bytes) -> Dict[str, Any]:
    if not tenant_id:
        raise ValidationError("businessId is required")
    sheets = read_workbook_sheets(content)
    products = sheets[PRODUCTS_SHEET]
    variant_rows = sheets[VARIANTS_SHEET]
    tenant = str(tenant_id)
    policy = StatusPolicy.from_settings()
    result = SyncRunResult(total=len(products))

    async def handle(store: CatalogStore, row: Dict[str, str]) -> str:
        # variant rows point at their product by sku, or by name when it has none
        ref = row.get("sku") or row.get("nombre")
        payload = await row_to_canonical(row, [v for v in variant_rows if v.get("producto_sku") == ref])
        identity = NameIdentity(tenant, payload.name)
        if not payload.variants and await identity.find(store) is None:
            payload.variants = [default_variant(sku=row.get("sku") or None)]
        res = await reconcile_product(
            store, payload, identity, tenant_id=tenant, policy=policy, option_match=MATCH_BY_SKU_THEN_NAME
        )
        await promote_product_images(store, res.product_id)
        return res.outcome

    await reconcile_each(products, handle, result, describe=lambda r: r.get("nombre"), label="IMPORT")
    logger.info(
        f"✅ Workbook import for tenant {tenant}: Created: {result.created} Updated: {result.updated} "
        f"Errors: {result.errors}"
    )
    return {"success": True, "created": result.created, "updated": result.updated, "errors": result.errors}

# ---------------------------
# Save processed products
# ---------------------------

async def save_processed_products(tenant_id: str, products: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Persist products coming back from the enrichment step. Matched by name
    within the tenant; new rows take the product's own status (draft when absent).
    """
    if not tenant_id:
        raise ValidationError("businessId is required")
    if not products:
        raise ValidationError("No products provided")
    tenant = str(tenant_id)
    policy = StatusPolicy(on_create=MIRROR, on_update=settings.CATALOG_RESYNC_STATUS or None)
    result = SyncRunResult(total=len(products))
    product_ids: List[int] = []

    async def handle(store: CatalogStore, item: Dict[str, Any]) -> str:
        data = dict(item or {})
        data.setdefault("source_status", data.get("status") or "draft")
        payload = CanonicalProduct.model_validate(data)
        payload.category_resolved = payload.subcategory_id is not None
        if payload.subcategory_id is None:
            payload.subcategory_id = settings.CATALOG_DEFAULT_SUBCATEGORY_ID
        if not payload.variants:
            payload.variants = [default_variant(images_url=None)]
        payload.images_url = normalize_images(payload.images_url)
        res = await reconcile_product(store, payload, NameIdentity(tenant, payload.name), tenant_id=tenant, policy=policy)
        await promote_product_images(store, res.product_id)
        product_ids.append(res.product_id)
        return res.outcome

    await reconcile_each(products, handle, result, describe=lambda p: (p or {}).get("name"), label="IMPORT")
    return {
        "success": True,
        "created": result.created,
        "updated": result.updated,
        "errors": result.errors,
        "productIds": product_ids,
    }
