from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy import func, select

from catalog_sync.models.catalog import Brand, Category
from catalog_sync.store import CatalogStore

logger = logging.getLogger("uvicorn.error")


async def find_brand(store: CatalogStore, name: str, *, case_insensitive: bool = False) -> Optional[Brand]:
    if case_insensitive:
        res = await store.execute(select(Brand).where(func.lower(Brand.name) == name.lower()).limit(1))
        return res.scalars().first()
    return await store.find_one(Brand, name=name)


async def resolve_brand(
    store: CatalogStore,
    name: str | None,
    *,
    create: bool = True,
    status: str = "active",
    case_insensitive: bool = False,
) -> Optional[int]:
    """
    Brand id for a vendor/brand string.
      - blank name → None
      - exact (or case-insensitive) match → existing id
      - otherwise create with `status` ("active", or "on_revision" for
        user-submitted brand requests), unless create=False
    """
    name = (name or "").strip()
    if not name:
        return None
    brand = await find_brand(store, name, case_insensitive=case_insensitive)
    if brand:
        return brand.id
    if not create:
        return None
    brand = await store.insert(Brand, name=name, status=status)
    logger.info("🟢 Created brand %r (id=%s, status=%s)", name, brand.id, status)
    return brand.id


async def resolve_category(
    store: CatalogStore,
    name: str | None,
    fallback_id: int,
    *,
    level: int | None = None,
) -> tuple[int, bool]:
    """
    (category_id, matched). Exact name among root categories by default, or
    case-insensitive among categories of a given `level`. No fuzzy matching
    and no creation: anything else gets `fallback_id`.
    """
    name = (name or "").strip()
    if not name:
        return fallback_id, False
    if level is None:
        cat = await store.find_one(Category, name=name, parent_id=None)
    else:
        res = await store.execute(
            select(Category).where(func.lower(Category.name) == name.lower(), Category.level == level).limit(1)
        )
        cat = res.scalars().first()
    if cat:
        return cat.id, True
    return fallback_id, False
