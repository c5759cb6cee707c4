# catalog_sync/mapping/provider_mapping.py
# ===================================================
# Generic API-integration providers → canonical product.
# These catalogs are flattened to the Default/Default sentinel with the
# provider SKU as identity; brand and category are looked up, never created.
# ===================================================
from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional

from catalog_sync.db import utcnow
from catalog_sync.mapping.canonical import CanonicalProduct, default_variant
from catalog_sync.mapping.field_mapping import shopify_to_canonical
from catalog_sync.sync.components.price import to_minor_units, to_stock
from catalog_sync.sync.components.util import (
    dig,
    extract_keywords,
    normalize_images,
    strip_html,
    truncate,
)


def _shorten(short: Any, description: Any) -> str:
    if short:
        return str(short)
    text = strip_html(str(description or "")).strip()
    return text if len(text) <= 150 else text[:147] + "..."


def _pairs(value: Any) -> Optional[Dict[str, Any]]:
    """dict / list of {name,value} / label,value rows → dict, or None when empty."""
    out: Dict[str, Any] = {}
    if isinstance(value, dict):
        out = {str(k): v for k, v in value.items() if v not in (None, "")}
    elif isinstance(value, list):
        for row in value:
            if isinstance(row, dict):
                k = row.get("name") or row.get("label") or row.get("key")
                v = row.get("value")
                if k and v not in (None, ""):
                    out[str(k)] = v
    return out or None


def _base(product_id: Any, provider: str, *, name: str, description: str, short: Any,
          price: Any, stock: Any, sku: Any, images: List[str], brand: Any = None,
          category: Any = None, dimensions=None, specs=None,
          keywords: Optional[List[str]] = None) -> CanonicalProduct:
    meta = {
        "external_id": str(product_id) if product_id not in (None, "") else None,
        "source": provider,
        "last_updated": utcnow().isoformat(),
    }
    return CanonicalProduct(
        name=name,
        short_name=truncate(name, 50),
        description=description,
        short_description=_shorten(short, description),
        images_url=normalize_images(images),
        keywords=keywords if keywords is not None else extract_keywords(f"{name} {description}"),
        dimensions=dimensions,
        specs=specs,
        variants=[default_variant(price=to_minor_units(price) or 0, stock=to_stock(stock) or 0,
                                  sku=str(sku) if sku else None, metadata=meta)],
        external_id=meta["external_id"],
        source=provider,
        brand_name=str(brand).strip() if brand else None,
        category_hint=str(category).strip() if category else None,
    )


def map_woocommerce(product: Dict[str, Any], **_: Any) -> CanonicalProduct:
    attrs = [a for a in (product.get("attributes") or []) if isinstance(a, dict)]
    brand = None
    for a in attrs:
        if str(a.get("name") or "").lower() in ("brand", "marca") and a.get("options"):
            brand = a["options"][0]
            break
    cats = product.get("categories") or []
    dims_src = product.get("dimensions") or {}
    dims = {label: dims_src.get(key) for key, label in (("length", "Largo"), ("width", "Ancho"), ("height", "Alto"))
            if dims_src.get(key)}
    specs = {a["name"]: ", ".join(map(str, a.get("options") or [])) for a in attrs if a.get("name") and a.get("options")}
    return _base(
        product.get("id"), "woocommerce",
        name=product.get("name") or "",
        description=product.get("description") or "",
        short=product.get("short_description"),
        price=product.get("price"),
        stock=product.get("stock_quantity"),
        sku=product.get("sku"),
        images=[img.get("src") for img in (product.get("images") or []) if isinstance(img, dict)],
        brand=brand,
        category=cats[0].get("name") if cats and isinstance(cats[0], dict) else None,
        dimensions=dims or None,
        specs=specs or None,
    )


_MAGENTO_HANDLED = {"description", "short_description", "manufacturer", "width", "height", "depth"}


def map_magento(product: Dict[str, Any], *, api_url: str = "", **_: Any) -> CanonicalProduct:
    custom = {a.get("attribute_code"): a.get("value") for a in (product.get("custom_attributes") or [])
              if isinstance(a, dict)}
    description = custom.get("description") or ""
    dims = {label: custom.get(code) for code, label in (("width", "Ancho"), ("height", "Alto"), ("depth", "Profundidad"))
            if custom.get(code)}
    specs = {k: v for k, v in custom.items() if k and k not in _MAGENTO_HANDLED}
    media_base = re.sub(r"/rest/.*$", "", api_url.rstrip("/"))
    images = [f"{media_base}/pub/media/catalog/product{e['file']}"
              for e in (product.get("media_gallery_entries") or []) if isinstance(e, dict) and e.get("file")]
    out = _base(
        product.get("id"), "magento",
        name=product.get("name") or "",
        description=description,
        short=custom.get("short_description"),
        price=product.get("price"),
        stock=0,  # Magento keeps inventory in a separate API
        sku=product.get("sku"),
        images=images,
        brand=custom.get("manufacturer"),
        dimensions=dims or None,
        specs=specs or None,
    )
    links = (product.get("extension_attributes") or {}).get("category_links") or []
    for link in links:
        try:
            out.subcategory_id = int(link.get("category_id"))
            out.category_resolved = True
        except (TypeError, ValueError):
            continue
    return out


def map_wondersign(product: Dict[str, Any], **_: Any) -> CanonicalProduct:
    images: List[str] = []
    for img in product.get("images") or []:
        if isinstance(img, str):
            images.append(img)
        elif isinstance(img, dict) and img.get("url"):
            images.append(img["url"])
    dims = product.get("dimensions")
    dims = {"Dimensiones": dims} if isinstance(dims, str) else _pairs(dims)
    return _base(
        product.get("id"), "wondersign",
        name=product.get("name") or "Unnamed Product",
        description=product.get("description") or "",
        short=product.get("short_description"),
        price=product.get("price"),
        stock=product.get("inventory_quantity") or product.get("stock"),
        sku=product.get("sku"),
        images=images,
        brand=product.get("brand"),
        category=product.get("category"),
        dimensions=dims,
        specs=_pairs(product.get("specifications")),
    )


def map_custom(product: Dict[str, Any], *, mapping_config: Optional[Dict[str, Any]] = None,
               **_: Any) -> Optional[CanonicalProduct]:
    """Field paths come from the integration's additional_params (e.g. {"name_field": "title"})."""
    if not mapping_config:
        return None

    def get(key: str) -> Any:
        return dig(product, mapping_config.get(key))

    images = get("images_field")
    if isinstance(images, str):
        images = [images]
    name = get("name_field") or "Producto sin nombre"
    description = get("description_field") or ""
    dims = get("dimensions_field")
    specs = get("specs_field")
    return _base(
        get("id_field"), "custom",
        name=str(name),
        description=str(description),
        short=get("short_description_field"),
        price=get("price_field"),
        stock=get("stock_field"),
        sku=get("sku_field"),
        images=images if isinstance(images, list) else [],
        brand=get("brand_field"),
        category=get("category_field"),
        dimensions=_pairs(dims) if isinstance(dims, dict) else None,
        specs=_pairs(specs) if isinstance(specs, dict) else None,
    )


def map_shopify(product: Dict[str, Any], **_: Any) -> CanonicalProduct:
    return shopify_to_canonical(product)


_MAPPERS: Dict[str, Callable[..., Optional[CanonicalProduct]]] = {
    "shopify": map_shopify,
    "woocommerce": map_woocommerce,
    "magento": map_magento,
    "wondersign": map_wondersign,
    "custom": map_custom,
}


def map_provider_product(provider: str, product: Dict[str, Any], *,
                         mapping_config: Optional[Dict[str, Any]] = None,
                         api_url: str = "") -> Optional[CanonicalProduct]:
    mapper = _MAPPERS.get((provider or "").lower())
    if mapper is None:
        return None
    return mapper(product, mapping_config=mapping_config, api_url=api_url)
