# catalog_sync/sync/reconcile.py
# =======================================================
# Reconciliation engine: one canonical product payload + an identity key
# → create or update the product, then cascade the same decision to its
# variants (matched by name) and options (matched by name / external id /
# SKU, in a per-caller order).
#
# Used by every entry point: manual Shopify sync, initial sync after OAuth,
# webhook create/update, generic provider sync and the bulk importers.
# =======================================================
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select

from catalog_sync.config import settings
from catalog_sync.db import utcnow
from catalog_sync.errors import PerItemReconciliationError
from catalog_sync.mapping.canonical import CanonicalOption, CanonicalProduct, CanonicalVariant
from catalog_sync.models.catalog import Product, ProductVariant, ProductVariantOption
from catalog_sync.models.integrations import ExternalProductMapping
from catalog_sync.store import CatalogStore, open_store

logger = logging.getLogger("uvicorn.error")

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"

# option matching orders
MATCH_BY_NAME_THEN_EXTERNAL = ("name", "external_id")
MATCH_BY_SKU_THEN_NAME = ("sku", "name")

# fields refreshed on every write; tenant_id / shipping_cost are creation-only
_MUTABLE_FIELDS = ("name", "short_name", "description", "short_description", "brand_id", "images_url", "keywords")
# only overwritten when the payload actually carries them
_OPTIONAL_FIELDS = ("dimensions", "specs")

# ---------------------------
# Status policy
# ---------------------------

MIRROR = "mirror"


@dataclass(frozen=True)
class StatusPolicy:
    on_create: str = "draft"        # or "mirror": take the source's active/draft
    on_update: Optional[str] = None  # None → keep whatever the product has

    def status_for_new(self, payload: CanonicalProduct) -> str:
        if self.on_create == MIRROR:
            return payload.source_status or "draft"
        return self.on_create

    @classmethod
    def from_settings(cls) -> "StatusPolicy":
        return cls(
            on_create=settings.CATALOG_NEW_PRODUCT_STATUS or "draft",
            on_update=settings.CATALOG_RESYNC_STATUS or None,
        )

# ---------------------------
# Identity strategies
# ---------------------------

class IdentityKey:
    """How an incoming item is matched to an existing product."""

    async def find(self, store: CatalogStore) -> Optional[Product]:
        raise NotImplementedError

    def creation_fields(self) -> Dict[str, Any]:
        return {}

    async def remember(self, store: CatalogStore, product: Product, payload: CanonicalProduct) -> None:
        return None


class ExternalIdentity(IdentityKey):
    """External item id scoped to an integration (the strong key)."""

    def __init__(self, integration_id: int, external_id: Any):
        self.integration_id = integration_id
        self.external_id = str(external_id)

    def __repr__(self) -> str:
        return f"ExternalIdentity({self.integration_id}, {self.external_id!r})"

    async def find(self, store: CatalogStore) -> Optional[Product]:
        mapping = await store.find_one(
            ExternalProductMapping, integration_id=self.integration_id, external_id=self.external_id
        )
        if mapping:
            product = await store.get(Product, mapping.product_id)
            if product:
                return product
        return await store.find_one(
            Product, order_by=Product.id, integration_id=self.integration_id, external_id=self.external_id
        )

    def creation_fields(self) -> Dict[str, Any]:
        return {"integration_id": self.integration_id, "external_id": self.external_id}

    async def remember(self, store: CatalogStore, product: Product, payload: CanonicalProduct) -> None:
        mapping = await store.find_one(
            ExternalProductMapping, integration_id=self.integration_id, external_id=self.external_id
        )
        if mapping:
            await store.update(mapping, product_id=product.id, title=payload.name, synced_at=utcnow())
        else:
            await store.insert(
                ExternalProductMapping,
                integration_id=self.integration_id,
                external_id=self.external_id,
                product_id=product.id,
                title=payload.name,
            )


class NameIdentity(IdentityKey):
    """Product name within the tenant. Weaker: duplicate names collapse."""

    def __init__(self, tenant_id: str, name: str):
        self.tenant_id = tenant_id
        self.name = name

    def __repr__(self) -> str:
        return f"NameIdentity({self.tenant_id!r}, {self.name!r})"

    async def find(self, store: CatalogStore) -> Optional[Product]:
        return await store.find_one(Product, order_by=Product.id, tenant_id=self.tenant_id, name=self.name)


class SkuIdentity(IdentityKey):
    """Any option SKU of a product within the tenant."""

    def __init__(self, tenant_id: str, sku: str):
        self.tenant_id = tenant_id
        self.sku = sku

    def __repr__(self) -> str:
        return f"SkuIdentity({self.tenant_id!r}, {self.sku!r})"

    async def find(self, store: CatalogStore) -> Optional[Product]:
        stmt = (
            select(Product)
            .join(ProductVariant, ProductVariant.product_id == Product.id)
            .join(ProductVariantOption, ProductVariantOption.variant_id == ProductVariant.id)
            .where(Product.tenant_id == self.tenant_id, ProductVariantOption.sku == self.sku)
            .order_by(Product.id)
            .limit(1)
        )
        res = await store.execute(stmt)
        return res.scalars().first()

# ---------------------------
# Run bookkeeping
# ---------------------------

@dataclass
class SyncRunResult:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    def record(self, outcome: str) -> None:
        if outcome == CREATED:
            self.created += 1
        elif outcome == UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def record_error(self, err: PerItemReconciliationError) -> None:
        self.errors += 1
        self.failures.append({"item": str(err.item_ref), "error": str(err.cause)})

    def to_stats(self) -> Dict[str, int]:
        return {
            "totalProducts": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
        }


@dataclass
class ReconcileResult:
    outcome: str
    product_id: int

# ---------------------------
# Product level
# ---------------------------

async def reconcile_product(
    store: CatalogStore,
    payload: CanonicalProduct,
    identity: IdentityKey,
    *,
    tenant_id: str,
    policy: StatusPolicy | None = None,
    option_match: Sequence[str] = MATCH_BY_NAME_THEN_EXTERNAL,
) -> ReconcileResult:
    policy = policy or StatusPolicy.from_settings()
    values: Dict[str, Any] = {f: getattr(payload, f) for f in _MUTABLE_FIELDS}
    for f in _OPTIONAL_FIELDS:
        if getattr(payload, f) is not None:
            values[f] = getattr(payload, f)
    if payload.source:
        values["source"] = payload.source

    product = await identity.find(store)
    if product is not None:
        if payload.category_resolved and payload.subcategory_id is not None:
            values["subcategory_id"] = payload.subcategory_id
        if policy.on_update:
            values["status"] = policy.on_update
        await store.update(product, **values)
        outcome = UPDATED
        logger.info(f"🟠 Updating product #{product.id}: {payload.name!r} ({identity!r})")
    else:
        product = await store.insert(
            Product,
            tenant_id=tenant_id,
            subcategory_id=payload.subcategory_id,
            shipping_cost=payload.shipping_cost,
            status=policy.status_for_new(payload),
            **identity.creation_fields(),
            **values,
        )
        outcome = CREATED
        logger.info(f"🟢 Creating product #{product.id}: {payload.name!r} ({identity!r})")

    await reconcile_variants(store, product.id, payload.variants, option_match=option_match)
    await identity.remember(store, product, payload)
    return ReconcileResult(outcome, product.id)

# ---------------------------
# Variant / option level
# ---------------------------

async def reconcile_variants(
    store: CatalogStore,
    product_id: int,
    variants: Iterable[CanonicalVariant],
    *,
    option_match: Sequence[str] = MATCH_BY_NAME_THEN_EXTERNAL,
) -> None:
    existing = list(await store.find_all(ProductVariant, order_by=ProductVariant.position, product_id=product_id))
    by_name = {v.name: v for v in existing}
    had_rows = bool(existing)
    next_pos = max((v.position for v in existing), default=-1) + 1

    for incoming in variants:
        row = by_name.get(incoming.name)
        if row is None:
            position = next_pos if had_rows else incoming.position
            row = await store.insert(
                ProductVariant,
                product_id=product_id,
                name=incoming.name,
                display_name=incoming.display_name,
                position=position,
            )
            by_name[row.name] = row
            next_pos = max(next_pos, position) + 1
        elif row.display_name != incoming.display_name:
            await store.update(row, display_name=incoming.display_name)
        await _reconcile_options(store, row.id, incoming.options, option_match)


def _match_option(
    rows: List[ProductVariantOption],
    incoming: CanonicalOption,
    order: Sequence[str],
    claimed: set,
) -> Optional[ProductVariantOption]:
    for strategy in order:
        for row in rows:
            if row.id in claimed:
                continue
            if strategy == "name" and row.name == incoming.name:
                return row
            if strategy == "external_id" and incoming.external_id and \
                    str((row.meta or {}).get("external_id") or "") == incoming.external_id:
                return row
            if strategy == "sku" and incoming.sku and row.sku == incoming.sku:
                return row
    return None


async def _reconcile_options(
    store: CatalogStore,
    variant_id: int,
    options: Iterable[CanonicalOption],
    order: Sequence[str],
) -> None:
    rows = list(await store.find_all(ProductVariantOption, order_by=ProductVariantOption.position, variant_id=variant_id))
    claimed: set = set()

    for incoming in options:
        row = _match_option(rows, incoming, order, claimed)
        if row is None:
            row = await store.insert(
                ProductVariantOption,
                variant_id=variant_id,
                name=incoming.name,
                display_name=incoming.display_name,
                price=incoming.price,
                stock=incoming.stock,
                sku=incoming.sku,
                images_url=incoming.images_url,
                is_default=incoming.is_default,
                position=incoming.position,
                meta=incoming.metadata,
            )
            rows.append(row)
            claimed.add(row.id)
            continue

        claimed.add(row.id)
        values: Dict[str, Any] = {
            "name": incoming.name,
            "display_name": incoming.display_name,
            "is_default": incoming.is_default,
            "position": incoming.position,
        }
        # price / stock keep their previous value when the source has none
        if incoming.price is not None:
            values["price"] = incoming.price
        if incoming.stock is not None:
            values["stock"] = incoming.stock
        if incoming.sku:
            values["sku"] = incoming.sku
        if incoming.images_url is not None:
            values["images_url"] = incoming.images_url
        if incoming.metadata:
            values["meta"] = {**(row.meta or {}), **incoming.metadata}
        await store.update(row, **values)

# ---------------------------
# Batch driver
# ---------------------------

ItemHandler = Callable[[CatalogStore, Any], Awaitable[str]]


async def reconcile_each(
    items: Iterable[Any],
    handle: ItemHandler,
    result: SyncRunResult,
    *,
    describe: Callable[[Any], Any] = lambda item: item,
    label: str = "SYNC",
) -> SyncRunResult:
    """
    Run `handle` for every item in its own unit of work. A failing item is
    rolled back, counted in `errors` and logged; the rest still run.
    """
    for item in items:
        try:
            async with open_store() as store:
                outcome = await handle(store, item)
        except Exception as e:
            err = PerItemReconciliationError(describe(item), e)
            logger.exception("[%s] %s", label, err)
            result.record_error(err)
            continue
        result.record(outcome)
    return result
