import asyncio
import os
import tempfile

# settings are read once at import time: configure the environment first
_TMP = tempfile.mkdtemp(prefix="catalog-sync-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/catalog.db"
os.environ["STORAGE_DIR"] = os.path.join(_TMP, "storage")
os.environ["STORAGE_PUBLIC_URL"] = "/storage"
os.environ["ADMIN_USER"] = "admin"
os.environ["ADMIN_PASS"] = "adminpass"
os.environ["SHOPIFY_API_KEY"] = "test-api-key"
os.environ["SHOPIFY_API_SECRET"] = "test-api-secret"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["APP_URL"] = "http://dashboard.test"
os.environ["PUBLIC_API_URL"] = "http://api.test"
os.environ["WORKER_ENABLED"] = "false"
os.environ["ENRICHMENT_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""
os.environ["CATALOG_DEFAULT_SUBCATEGORY_ID"] = "1"
os.environ["CATALOG_NEW_PRODUCT_STATUS"] = "draft"
os.environ["CATALOG_RESYNC_STATUS"] = ""

import pytest

from catalog_sync.credentials import seal_secret
from catalog_sync.db import init_db
from catalog_sync.models.integrations import ShopifyIntegration
from catalog_sync.store import open_store
from catalog_sync.sync import product_sync


@pytest.fixture(autouse=True)
def fresh_db():
    product_sync._LOCKS.clear()
    asyncio.run(init_db(drop=True))
    yield


async def _insert_integration(**values):
    async with open_store() as store:
        integ = await store.insert(ShopifyIntegration, **values)
        return integ.id


@pytest.fixture
def make_integration():
    """Insert a Shopify integration row and return its id."""
    def _make(tenant_id="biz-1", shop="acme.myshopify.com", status="active", token="shpat_testtoken"):
        return asyncio.run(_insert_integration(
            tenant_id=tenant_id,
            shop_domain=shop,
            status=status,
            access_token=seal_secret(token) if token else None,
        ))
    return _make
