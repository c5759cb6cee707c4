# catalog_sync/models/catalog.py
from __future__ import annotations
from datetime import datetime
from typing import Any
from sqlalchemy import String, Integer, DateTime, Text, Boolean, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db import Base, utcnow


class Brand(Base):
    __tablename__ = "catalog_brands"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[str] = mapped_column(String(32), default="active")  # active | on_revision
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Category(Base):
    __tablename__ = "catalog_collections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("catalog_collections.id"), nullable=True)
    level: Mapped[int] = mapped_column(Integer, default=1)
    status: Mapped[str] = mapped_column(String(32), default="active")


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)  # provider business / branch
    name: Mapped[str] = mapped_column(String(255), index=True)
    short_name: Mapped[str] = mapped_column(String(64), default="")
    description: Mapped[str] = mapped_column(Text, default="")
    short_description: Mapped[str] = mapped_column(String(255), default="")
    brand_id: Mapped[int | None] = mapped_column(ForeignKey("catalog_brands.id"), nullable=True)
    subcategory_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    images_url: Mapped[list[str]] = mapped_column(JSON, default=lambda: [""])
    keywords: Mapped[list[str]] = mapped_column(JSON, default=list)
    dimensions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    specs: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    shipping_cost: Mapped[int] = mapped_column(Integer, default=0)  # minor units
    status: Mapped[str] = mapped_column(String(32), default="draft", index=True)

    # set only when sourced from an external integration
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    integration_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    source: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class ProductVariant(Base):
    __tablename__ = "product_variants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    display_name: Mapped[str] = mapped_column(String(255))
    position: Mapped[int] = mapped_column(Integer, default=0)


class ProductVariantOption(Base):
    __tablename__ = "product_variant_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    variant_id: Mapped[int] = mapped_column(ForeignKey("product_variants.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    display_name: Mapped[str] = mapped_column(String(255))
    price: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minor units
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sku: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    images_url: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False)
    position: Mapped[int] = mapped_column(Integer, default=0)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
