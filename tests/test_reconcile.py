import asyncio

import pytest

from catalog_sync.mapping.canonical import CanonicalOption, CanonicalProduct, CanonicalVariant, default_variant
from catalog_sync.mapping.field_mapping import map_shopify_product
from catalog_sync.models.catalog import Brand, Product, ProductVariant, ProductVariantOption
from catalog_sync.models.integrations import ExternalProductMapping
from catalog_sync.store import open_store
from catalog_sync.sync.reconcile import (
    CREATED,
    MATCH_BY_SKU_THEN_NAME,
    MIRROR,
    UPDATED,
    ExternalIdentity,
    NameIdentity,
    SkuIdentity,
    StatusPolicy,
    SyncRunResult,
    reconcile_each,
    reconcile_product,
)

SILLA = {
    "id": 111,
    "title": "Silla",
    "vendor": "Acme",
    "options": [{"name": "Title", "values": ["Default Title"]}],
    "variants": [{"id": 9001, "price": "199.00", "inventory_quantity": 5, "sku": "SIL-1"}],
}


async def _sync_shopify(product, integration_id=1, tenant="biz-1"):
    async with open_store() as store:
        payload = await map_shopify_product(store, product)
        return await reconcile_product(store, payload, ExternalIdentity(integration_id, product["id"]), tenant_id=tenant)


async def _snapshot(product_id):
    async with open_store() as store:
        product = await store.get(Product, product_id)
        variants = list(await store.find_all(ProductVariant, order_by=ProductVariant.position, product_id=product_id))
        options = list(await store.find_all(
            ProductVariantOption, order_by=ProductVariantOption.id, variant_id=[v.id for v in variants]
        ))
        brand = await store.get(Brand, product.brand_id) if product.brand_id else None
        return product, variants, options, brand


async def _counts():
    async with open_store() as store:
        return (
            await store.count(Product),
            await store.count(ProductVariant),
            await store.count(ProductVariantOption),
            await store.count(ExternalProductMapping),
        )


def test_shopify_product_lands_in_catalog():
    res = asyncio.run(_sync_shopify(SILLA))
    assert res.outcome == CREATED
    product, variants, options, brand = asyncio.run(_snapshot(res.product_id))
    assert product.name == "Silla"
    assert product.status == "draft"
    assert product.external_id == "111"
    assert product.images_url == [""]
    assert brand.name == "Acme"
    assert [(v.name, v.display_name) for v in variants] == [("Default", "Default")]
    assert len(options) == 1
    assert (options[0].price, options[0].stock, options[0].sku) == (19900, 5, "SIL-1")
    assert options[0].is_default is True


def test_resync_is_idempotent():
    first = asyncio.run(_sync_shopify(SILLA))
    before = asyncio.run(_counts())
    second = asyncio.run(_sync_shopify(SILLA))
    assert second.outcome == UPDATED
    assert second.product_id == first.product_id
    assert asyncio.run(_counts()) == before == (1, 1, 1, 1)


def test_rename_updates_same_product_and_keeps_status():
    first = asyncio.run(_sync_shopify(SILLA))

    async def publish():
        async with open_store() as store:
            await store.update_where(Product, {"status": "active"}, id=first.product_id)

    asyncio.run(publish())
    renamed = {**SILLA, "title": "Silla Roble", "variants": [{**SILLA["variants"][0], "price": "210.00"}]}
    second = asyncio.run(_sync_shopify(renamed))
    assert second.product_id == first.product_id
    product, _, options, _ = asyncio.run(_snapshot(first.product_id))
    assert product.name == "Silla Roble"
    assert product.status == "active"
    assert options[0].price == 21000


def test_missing_price_keeps_previous_value():
    res = asyncio.run(_sync_shopify(SILLA))
    no_price = {**SILLA, "variants": [{"id": 9001, "sku": "SIL-1"}]}
    asyncio.run(_sync_shopify(no_price))
    _, _, options, _ = asyncio.run(_snapshot(res.product_id))
    assert options[0].price == 19900
    assert options[0].stock == 5


def test_external_id_on_product_row_is_a_fallback_match():
    async def seed():
        async with open_store() as store:
            product = await store.insert(
                Product, tenant_id="biz-1", name="Vieja", integration_id=1, external_id="111", status="active"
            )
            return product.id

    product_id = asyncio.run(seed())
    res = asyncio.run(_sync_shopify(SILLA))
    assert res.outcome == UPDATED
    assert res.product_id == product_id
    assert asyncio.run(_counts())[3] == 1


def test_new_axis_values_append_options():
    shirt = {
        "id": 5,
        "title": "Camiseta",
        "options": [{"name": "Color", "values": ["Rojo"]}],
        "variants": [{"id": 1, "option1": "Rojo", "price": "10.00", "sku": "CAM-R"}],
    }
    res = asyncio.run(_sync_shopify(shirt))
    more = {
        **shirt,
        "options": [{"name": "Color", "values": ["Rojo", "Azul"]}],
        "variants": shirt["variants"] + [{"id": 2, "option1": "Azul", "price": "11.00", "sku": "CAM-A"}],
    }
    asyncio.run(_sync_shopify(more))
    _, variants, options, _ = asyncio.run(_snapshot(res.product_id))
    assert len(variants) == 1
    assert sorted(o.name for o in options) == ["Azul", "Rojo"]


def test_sku_identity_and_sku_first_option_match():
    def payload(option_name, price):
        return CanonicalProduct(
            name="Sofá",
            variants=[CanonicalVariant(options=[CanonicalOption(name=option_name, display_name=option_name,
                                                                price=price, sku="SOF-1", is_default=True)])],
        )

    async def run(p):
        async with open_store() as store:
            return await reconcile_product(store, p, SkuIdentity("biz-1", "SOF-1"), tenant_id="biz-1",
                                           option_match=MATCH_BY_SKU_THEN_NAME)

    first = asyncio.run(run(payload("Default", 1000)))
    second = asyncio.run(run(payload("Gris", 1500)))
    assert second.product_id == first.product_id
    _, _, options, _ = asyncio.run(_snapshot(first.product_id))
    assert len(options) == 1
    assert (options[0].name, options[0].price) == ("Gris", 1500)


def test_mirror_policy_uses_source_status():
    policy = StatusPolicy(on_create=MIRROR)
    assert policy.status_for_new(CanonicalProduct(name="a", source_status="active")) == "active"
    assert policy.status_for_new(CanonicalProduct(name="a")) == "draft"
    assert StatusPolicy().status_for_new(CanonicalProduct(name="a", source_status="active")) == "draft"


def test_update_policy_overrides_status():
    async def run(policy):
        async with open_store() as store:
            p = CanonicalProduct(name="Mesa", variants=[default_variant(price=100)])
            return await reconcile_product(store, p, NameIdentity("biz-1", "Mesa"), tenant_id="biz-1", policy=policy)

    res = asyncio.run(run(StatusPolicy()))
    asyncio.run(run(StatusPolicy(on_update="requires_verification")))
    product, _, _, _ = asyncio.run(_snapshot(res.product_id))
    assert product.status == "requires_verification"


def test_failing_item_does_not_stop_the_batch():
    async def handle(store, name):
        if name == "boom":
            raise RuntimeError("bad row")
        p = CanonicalProduct(name=name, variants=[default_variant()])
        res = await reconcile_product(store, p, NameIdentity("biz-1", name), tenant_id="biz-1")
        return res.outcome

    result = asyncio.run(reconcile_each(["Mesa", "boom", "Silla"], handle, SyncRunResult(total=3)))
    assert result.created == 2
    assert result.errors == 1
    assert result.failures == [{"item": "boom", "error": "bad row"}]
    assert result.to_stats() == {"totalProducts": 3, "created": 2, "updated": 0, "skipped": 0, "errors": 1}
    assert asyncio.run(_counts())[0] == 2


def test_failed_item_is_rolled_back():
    async def handle(store, name):
        p = CanonicalProduct(name=name, variants=[default_variant()])
        await reconcile_product(store, p, NameIdentity("biz-1", name), tenant_id="biz-1")
        raise RuntimeError("after write")

    result = asyncio.run(reconcile_each(["Mesa"], handle, SyncRunResult(total=1)))
    assert result.errors == 1
    assert asyncio.run(_counts()) == (0, 0, 0, 0)


def test_base_identity_is_abstract():
    from catalog_sync.sync.reconcile import IdentityKey

    with pytest.raises(NotImplementedError):
        asyncio.run(IdentityKey().find(None))
