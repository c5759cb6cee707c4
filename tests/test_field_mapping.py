import asyncio

from catalog_sync.mapping.canonical import DEFAULT_NAME
from catalog_sync.mapping.field_mapping import build_shopify_variants, resolve_references, shopify_to_canonical
from catalog_sync.mapping.provider_mapping import map_provider_product
from catalog_sync.models.catalog import Brand, Category
from catalog_sync.store import open_store
from catalog_sync.sync.components.price import to_minor_units, to_stock
from catalog_sync.sync.components.util import dig, extract_keywords, normalize_images


def test_price_conversion():
    assert to_minor_units("199.00") == 19900
    assert to_minor_units("19.99") == 1999
    assert to_minor_units(5) == 500
    assert to_minor_units("1,250.50") == 125050
    assert to_minor_units(None) is None
    assert to_minor_units("") is None
    assert to_minor_units("abc") is None
    assert to_stock("7") == 7
    assert to_stock(None) is None


def test_normalize_images_sentinel():
    assert normalize_images([]) == [""]
    assert normalize_images(None) == [""]
    assert normalize_images(["", "  ", "https://cdn.test/a.jpg"]) == ["https://cdn.test/a.jpg"]


def test_dig_and_keywords():
    assert dig({"a": {"b": [{"c": 3}]}}, "a.b.0.c") == 3
    assert dig({"a": 1}, "a.b") is None
    assert dig({"a": 1}, None) is None
    assert extract_keywords("<p>Silla de madera, silla</p>") == ["silla", "madera"]


def test_option_less_product_gets_default_sentinel():
    product = {
        "id": 111,
        "title": "Silla",
        "options": [{"name": "Title", "values": ["Default Title"]}],
        "variants": [{"id": 9001, "price": "199.00", "inventory_quantity": 5, "sku": "SIL-1"}],
    }
    variants = build_shopify_variants(product)
    assert len(variants) == 1
    assert variants[0].name == DEFAULT_NAME
    opt = variants[0].options[0]
    assert (opt.name, opt.display_name, opt.is_default) == (DEFAULT_NAME, DEFAULT_NAME, True)
    assert opt.price == 19900
    assert opt.stock == 5
    assert opt.sku == "SIL-1"
    assert opt.external_id == "9001"


def test_option_axes_become_variants():
    product = {
        "id": 5,
        "title": "Camiseta",
        "options": [{"name": "Color", "values": ["Rojo", "Azul"]}, {"name": "Talla", "values": ["S"]}],
        "variants": [
            {"id": 1, "option1": "Rojo", "option2": "S", "price": "10.00", "inventory_quantity": 2, "sku": "CAM-R"},
            {"id": 2, "option1": "Azul", "option2": "S", "price": "12.50", "inventory_quantity": 0, "sku": "CAM-A"},
        ],
    }
    variants = build_shopify_variants(product)
    assert [v.name for v in variants] == ["Color", "Talla"]
    assert [v.position for v in variants] == [0, 1]
    color = variants[0].options
    assert [o.name for o in color] == ["Rojo", "Azul"]
    assert [o.price for o in color] == [1000, 1250]
    assert [o.is_default for o in color] == [True, False]
    assert color[1].sku == "CAM-A"
    # first matching Shopify variant supplies the Talla values
    assert variants[1].options[0].external_id == "1"


def test_shopify_to_canonical_fields():
    body = "<p>" + "Madera maciza " * 20 + "</p>"
    product = {
        "id": 42,
        "title": "Silla de comedor extra larga para pruebas de truncado de nombre",
        "body_html": body,
        "vendor": "Acme",
        "product_type": "Sillas",
        "handle": "silla-comedor",
        "tags": "madera, comedor",
        "status": "active",
        "images": [],
        "variants": [{"id": 1, "price": "1.00"}],
    }
    out = shopify_to_canonical(product)
    assert len(out.short_name) == 50
    assert "<p>" not in out.short_description
    assert len(out.short_description) <= 150
    assert out.images_url == [""]
    assert out.keywords == ["madera", "comedor"]
    assert out.specs["shopify_handle"] == "silla-comedor"
    assert out.brand_name == "Acme"
    assert out.category_hint == "Sillas"
    assert out.external_id == "42"
    assert out.source_status == "active"

    product["status"] = "draft"
    assert shopify_to_canonical(product).source_status == "draft"


async def _resolve(product):
    async with open_store() as store:
        await store.insert(Category, name="Sillas", level=1)
        first = await resolve_references(store, shopify_to_canonical(product))
        second = await resolve_references(store, shopify_to_canonical(product))
        brands = await store.count(Brand)
        other = shopify_to_canonical({**product, "product_type": "Lamparas"})
        await resolve_references(store, other, default_subcategory_id=99)
        return first, second, brands, other


def test_resolve_references_creates_brand_once_and_matches_category():
    product = {"id": 1, "title": "Silla", "vendor": "Acme", "product_type": "Sillas"}
    first, second, brands, other = asyncio.run(_resolve(product))
    assert first.brand_id is not None
    assert first.brand_id == second.brand_id
    assert brands == 1
    assert first.category_resolved is True
    assert other.subcategory_id == 99
    assert other.category_resolved is False


def test_woocommerce_mapping():
    item = {
        "id": 7,
        "name": "Sofá",
        "description": "<p>Sofá de tres plazas</p>",
        "sku": "SOF-1",
        "price": "500.00",
        "stock_quantity": 3,
        "categories": [{"name": "Salas"}],
        "attributes": [{"name": "Marca", "options": ["Confort"]}],
        "dimensions": {"length": "200", "width": "90", "height": ""},
    }
    out = map_provider_product("woocommerce", item)
    opt = out.variants[0].options[0]
    assert (opt.price, opt.stock, opt.sku) == (50000, 3, "SOF-1")
    assert out.brand_name == "Confort"
    assert out.category_hint == "Salas"
    assert out.dimensions == {"Largo": "200", "Ancho": "90"}
    assert out.short_description == "Sofá de tres plazas"


def test_custom_mapping_needs_field_paths():
    item = {"data": {"title": "Mesa", "code": "MES-9", "cost": 12}}
    assert map_provider_product("custom", item) is None
    out = map_provider_product(
        "custom", item,
        mapping_config={"name_field": "data.title", "sku_field": "data.code", "price_field": "data.cost"},
    )
    assert out.name == "Mesa"
    assert out.first_sku() == "MES-9"
    assert out.variants[0].options[0].price == 1200
    assert map_provider_product("unknown", item) is None
