# =======================================================
# catalog_sync/store.py
# Generic query / insert / update / delete access to the relational store.
# Everything above this module talks to rows through CatalogStore, never
# through raw SQL, so the sync code reads the same against any backend.
# =======================================================
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_sync.db import Base, get_sessionmaker

logger = logging.getLogger("uvicorn.error")

M = TypeVar("M", bound=Base)


def _where(model: Type[Base], filters: dict[str, Any]) -> list:
    clauses = []
    for key, value in filters.items():
        col = getattr(model, key)
        if isinstance(value, (list, tuple, set)):
            clauses.append(col.in_(list(value)))
        elif value is None:
            clauses.append(col.is_(None))
        else:
            clauses.append(col == value)
    return clauses


class CatalogStore:
    """Thin repository over one AsyncSession (one unit of work)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, model: Type[M], pk: Any) -> Optional[M]:
        return await self.session.get(model, pk)

    async def find_one(self, model: Type[M], order_by: Any = None, **filters: Any) -> Optional[M]:
        stmt = select(model).where(*_where(model, filters))
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        res = await self.session.execute(stmt.limit(1))
        return res.scalars().first()

    async def find_all(self, model: Type[M], order_by: Any = None, **filters: Any) -> Sequence[M]:
        stmt = select(model).where(*_where(model, filters))
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        res = await self.session.execute(stmt)
        return res.scalars().all()

    async def insert(self, model: Type[M], **values: Any) -> M:
        obj = model(**values)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def update(self, obj: M, **values: Any) -> M:
        for key, value in values.items():
            setattr(obj, key, value)
        await self.session.flush()
        return obj

    async def update_where(self, model: Type[Base], values: dict[str, Any], **filters: Any) -> int:
        res = await self.session.execute(update(model).where(*_where(model, filters)).values(**values))
        return res.rowcount or 0

    async def delete_where(self, model: Type[Base], **filters: Any) -> int:
        res = await self.session.execute(delete(model).where(*_where(model, filters)))
        return res.rowcount or 0

    async def count(self, model: Type[Base], **filters: Any) -> int:
        stmt = select(func.count()).select_from(model).where(*_where(model, filters))
        res = await self.session.execute(stmt)
        return int(res.scalar_one())

    async def execute(self, stmt: Any):
        return await self.session.execute(stmt)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


@asynccontextmanager
async def open_store() -> AsyncIterator[CatalogStore]:
    """
    Session-scoped store. Commits when the block exits cleanly, rolls back
    (and re-raises) otherwise.
    """
    async with get_sessionmaker()() as session:
        store = CatalogStore(session)
        try:
            yield store
            await session.commit()
        except Exception:
            await session.rollback()
            raise
