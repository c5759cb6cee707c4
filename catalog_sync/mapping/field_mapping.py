# catalog_sync/mapping/field_mapping.py
# ===================================================
# Central Shopify → canonical catalog field mapping
# ===================================================
from __future__ import annotations

from typing import Any, Dict, List, Optional

from catalog_sync.config import settings
from catalog_sync.mapping.canonical import (
    CanonicalOption,
    CanonicalProduct,
    CanonicalVariant,
    default_variant,
)
from catalog_sync.store import CatalogStore
from catalog_sync.sync.components.brands import resolve_brand, resolve_category
from catalog_sync.sync.components.price import to_minor_units, to_stock
from catalog_sync.sync.components.util import (
    normalize_images,
    short_description_from,
    split_csv,
    truncate,
)

SHORT_NAME_LIMIT = 50
SHORT_DESCRIPTION_LIMIT = 150

# Shopify reports option-less products as a single "Title" axis with "Default Title"
_IMPLICIT_OPTION_NAME = "Title"
_IMPLICIT_OPTION_VALUE = "Default Title"


def _is_implicit_default(options: List[Dict[str, Any]]) -> bool:
    if not options:
        return True
    if len(options) != 1:
        return False
    only = options[0] or {}
    values = only.get("values") or []
    return only.get("name") == _IMPLICIT_OPTION_NAME and values in ([], [_IMPLICIT_OPTION_VALUE])


def _variant_meta(ext_variant: Dict[str, Any] | None) -> Optional[Dict[str, Any]]:
    if not ext_variant or ext_variant.get("id") in (None, ""):
        return None
    return {"external_id": str(ext_variant["id"]), "source": "shopify"}


def build_shopify_variants(product: Dict[str, Any]) -> List[CanonicalVariant]:
    """
    One canonical variant per declared option axis; one canonical option per
    axis value. Price/stock/SKU come from the first Shopify variant row whose
    option{i+1} equals the value. No axes → the Default/Default sentinel.
    """
    options = [o for o in (product.get("options") or []) if isinstance(o, dict)]
    ext_variants = [v for v in (product.get("variants") or []) if isinstance(v, dict)]

    if _is_implicit_default(options):
        first = ext_variants[0] if ext_variants else {}
        return [
            default_variant(
                price=to_minor_units(first.get("price")),
                stock=to_stock(first.get("inventory_quantity")),
                sku=first.get("sku") or None,
                metadata=_variant_meta(first),
            )
        ]

    variants: List[CanonicalVariant] = []
    for i, opt in enumerate(options):
        axis_key = f"option{i + 1}"
        name = str(opt.get("name") or f"Option {i + 1}")
        out_options: List[CanonicalOption] = []
        for j, value in enumerate(opt.get("values") or []):
            match = next((v for v in ext_variants if v.get(axis_key) == value), None)
            out_options.append(
                CanonicalOption(
                    name=str(value),
                    display_name=str(value),
                    price=to_minor_units(match.get("price")) if match else None,
                    stock=to_stock(match.get("inventory_quantity")) if match else None,
                    sku=(match.get("sku") or None) if match else None,
                    is_default=(j == 0),
                    position=j,
                    metadata=_variant_meta(match),
                )
            )
        variants.append(CanonicalVariant(name=name, display_name=name, position=i, options=out_options))
    return variants


def _keywords_from_tags(tags: Any) -> List[str]:
    if isinstance(tags, list):
        return [str(t).strip() for t in tags if str(t).strip()]
    return split_csv(tags)


def shopify_to_canonical(product: Dict[str, Any]) -> CanonicalProduct:
    """
    Pure conversion of one Shopify product into the canonical shape.
    Brand / category are left as names (brand_name / category_hint) for
    resolve_references() to turn into ids.
    """
    title = str(product.get("title") or "")
    body = product.get("body_html") or ""
    vendor = (product.get("vendor") or "").strip()
    product_type = (product.get("product_type") or "").strip()
    tags = product.get("tags") or ""
    images = product.get("images") or []

    return CanonicalProduct(
        name=title,
        short_name=truncate(title, SHORT_NAME_LIMIT),
        description=body,
        short_description=short_description_from(body, SHORT_DESCRIPTION_LIMIT),
        images_url=normalize_images(img.get("src") for img in images if isinstance(img, dict)),
        keywords=_keywords_from_tags(tags),
        specs={
            "shopify_handle": product.get("handle") or "",
            "shopify_tags": tags if isinstance(tags, str) else ", ".join(map(str, tags)),
            "shopify_vendor": vendor,
            "shopify_product_type": product_type,
        },
        variants=build_shopify_variants(product),
        external_id=str(product["id"]) if product.get("id") is not None else None,
        source="shopify",
        brand_name=vendor or None,
        category_hint=product_type or None,
        source_status="active" if (product.get("status") == "active" or product.get("published_at")) else "draft",
    )


async def resolve_references(
    store: CatalogStore,
    product: CanonicalProduct,
    *,
    default_subcategory_id: int | None = None,
    create_brand: bool = True,
    brand_status: str | None = None,
    case_insensitive: bool = False,
    category_level: int | None = None,
) -> CanonicalProduct:
    """Fill brand_id / subcategory_id from brand_name / category_hint."""
    if product.brand_id is None and product.brand_name:
        product.brand_id = await resolve_brand(
            store,
            product.brand_name,
            create=create_brand,
            status=brand_status or settings.CATALOG_BRAND_STATUS,
            case_insensitive=case_insensitive,
        )
    if product.subcategory_id is None:
        fallback = default_subcategory_id if default_subcategory_id is not None else settings.CATALOG_DEFAULT_SUBCATEGORY_ID
        product.subcategory_id, product.category_resolved = await resolve_category(
            store, product.category_hint, fallback, level=category_level
        )
    return product


async def map_shopify_product(
    store: CatalogStore,
    product: Dict[str, Any],
    *,
    default_subcategory_id: int | None = None,
) -> CanonicalProduct:
    return await resolve_references(
        store, shopify_to_canonical(product), default_subcategory_id=default_subcategory_id
    )
