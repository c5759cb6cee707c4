# catalog_sync/models/integrations.py
from __future__ import annotations
from datetime import datetime
from typing import Any
from sqlalchemy import String, Integer, DateTime, Text, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from catalog_sync.db import Base, utcnow


class ShopifyIntegration(Base):
    __tablename__ = "shopify_integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True)
    shop_domain: Mapped[str] = mapped_column(String(255), index=True)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)  # sealed
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True)  # pending|active|expired|disconnected
    state: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)  # single-use OAuth state
    scopes: Mapped[str | None] = mapped_column(String(255), nullable=True)

    shop_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shop_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shop_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plan_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    primary_locale: Mapped[str | None] = mapped_column(String(16), nullable=True)

    last_synced: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    product_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "businessId": self.tenant_id,
            "shop": self.shop_domain,
            "status": self.status,
            "shopName": self.shop_name,
            "lastSynced": self.last_synced.isoformat() if self.last_synced else None,
            "productCount": self.product_count,
        }


class ExternalProductMapping(Base):
    """external item id → canonical product id, per integration."""
    __tablename__ = "external_product_mappings"
    __table_args__ = (UniqueConstraint("integration_id", "external_id", name="uq_mapping_integration_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    integration_id: Mapped[int] = mapped_column(Integer, index=True)
    external_id: Mapped[str] = mapped_column(String(64))
    product_id: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ApiIntegration(Base):
    __tablename__ = "api_integrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    provider: Mapped[str] = mapped_column(String(32))  # shopify|woocommerce|magento|wondersign|custom
    api_url: Mapped[str] = mapped_column(String(512))
    api_key: Mapped[str] = mapped_column(Text)  # sealed
    api_secret: Mapped[str | None] = mapped_column(Text, nullable=True)  # sealed
    additional_params: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    sync_frequency: Mapped[str] = mapped_column(String(16), default="daily")
    auto_sync: Mapped[bool] = mapped_column(Boolean, default=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "branchId": self.tenant_id,
            "provider": self.provider,
            "apiUrl": self.api_url,
            "syncFrequency": self.sync_frequency,
            "autoSync": self.auto_sync,
            "lastSyncAt": self.last_sync_at.isoformat() if self.last_sync_at else None,
        }
