import asyncio
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from catalog_sync.errors import UpstreamHttpError
from catalog_sync.main_app import app
from catalog_sync.models.catalog import Product
from catalog_sync.store import open_store
from catalog_sync.sync import connections, product_sync
from catalog_sync.workers.jobs_worker import list_jobs, run_job

client = TestClient(app)
AUTH = ("admin", "adminpass")

PRODUCTS = [
    {
        "id": 111,
        "title": "Silla",
        "vendor": "Acme",
        "status": "active",
        "variants": [{"id": 9001, "price": "199.00", "inventory_quantity": 5, "sku": "SIL-1"}],
    },
    {
        "id": 222,
        "title": "Mesa",
        "variants": [{"id": 9002, "price": "850.00", "inventory_quantity": 1, "sku": "MES-1"}],
    },
]


@pytest.fixture
def shopify_products(monkeypatch):
    calls = []

    async def fake_list_products(shop, token, limit=None):
        calls.append((shop, token))
        return list(PRODUCTS)

    monkeypatch.setattr(product_sync, "list_products", fake_list_products)
    return calls


async def _products(tenant="biz-1"):
    async with open_store() as store:
        return list(await store.find_all(Product, order_by=Product.id, tenant_id=tenant))


def test_home():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "running"


def test_manual_sync_requires_auth(make_integration):
    integration_id = make_integration()
    response = client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"})
    assert response.status_code == 401


def test_manual_sync_creates_then_updates(make_integration, shopify_products):
    integration_id = make_integration()
    url = f"/api/integrations/shopify/{integration_id}/sync"

    response = client.post(url, json={"businessId": "biz-1"}, auth=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["stats"] == {"totalProducts": 2, "created": 2, "updated": 0, "skipped": 0, "errors": 0}
    # stored token is decrypted before the upstream call
    assert shopify_products == [("acme.myshopify.com", "shpat_testtoken")]

    response = client.post(url, json={"businessId": "biz-1"}, auth=AUTH)
    assert response.json()["stats"]["updated"] == 2
    assert response.json()["stats"]["created"] == 0

    products = asyncio.run(_products())
    assert [p.name for p in products] == ["Silla", "Mesa"]
    assert all(p.status == "draft" for p in products)

    info = client.get(f"/api/integrations/shopify/{integration_id}", params={"businessId": "biz-1"}, auth=AUTH).json()
    assert info["integration"]["lastSynced"] is not None
    assert info["integration"]["productCount"] == 0


def test_product_count_tracks_active_products(make_integration, shopify_products):
    integration_id = make_integration()
    client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)

    async def publish():
        async with open_store() as store:
            await store.update_where(Product, {"status": "active"}, name="Silla")

    asyncio.run(publish())
    client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)
    info = client.get(f"/api/integrations/shopify/{integration_id}", auth=AUTH).json()
    assert info["integration"]["productCount"] == 1


def test_item_without_id_is_skipped(make_integration, monkeypatch):
    integration_id = make_integration()

    async def fake_list_products(shop, token, limit=None):
        return [{"title": "Sin id"}, PRODUCTS[0]]

    monkeypatch.setattr(product_sync, "list_products", fake_list_products)
    response = client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)
    stats = response.json()["stats"]
    assert (stats["created"], stats["skipped"], stats["errors"]) == (1, 1, 0)


def test_manual_sync_errors(make_integration, shopify_products):
    active_id = make_integration()
    pending_id = make_integration(status="pending", token=None)

    response = client.post(f"/api/integrations/shopify/{active_id}/sync", json={}, auth=AUTH)
    assert response.status_code == 400

    response = client.post(f"/api/integrations/shopify/{active_id}/sync", json={"businessId": "other"}, auth=AUTH)
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Integration not found"}

    response = client.post(f"/api/integrations/shopify/{pending_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert shopify_products == []


def test_upstream_failure_is_502(make_integration, monkeypatch):
    integration_id = make_integration()

    async def failing(shop, token, limit=None):
        raise UpstreamHttpError(401, "Unauthorized", url="https://acme.myshopify.com/admin/api/products.json")

    monkeypatch.setattr(product_sync, "list_products", failing)
    response = client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)
    assert response.status_code == 502
    body = response.json()
    assert body["success"] is False
    assert "401 Unauthorized" in body["error"]
    assert body["details"]["upstream_status"] == 401


def test_background_sync_queues_a_job(make_integration, shopify_products):
    integration_id = make_integration()
    response = client.post(
        f"/api/integrations/shopify/{integration_id}/sync",
        json={"businessId": "biz-1", "background": True},
        auth=AUTH,
    )
    assert response.status_code == 202
    job_id = response.json()["job_id"]
    assert response.headers["location"] == f"/api/sync/status/{job_id}"

    job = asyncio.run(run_job(job_id))
    assert job["status"] == "done"
    assert job["result"]["created"] == 2
    assert len(asyncio.run(_products())) == 2


@pytest.fixture
def shopify_oauth(monkeypatch):
    calls = {}

    async def fake_exchange(shop, code):
        calls["exchange"] = (shop, code)
        return "shpat_freshtoken"

    async def fake_shop_info(shop, token):
        return {"name": "Acme Store", "email": "owner@acme.test", "currency": "USD", "plan_name": "basic"}

    async def fake_register(shop, token, topics=None):
        calls["webhooks"] = shop
        return [
            {"topic": "products/create", "ok": True},
            {"topic": "products/update", "ok": True},
            {"topic": "products/delete", "ok": False},
        ]

    monkeypatch.setattr(connections, "exchange_code_for_token", fake_exchange)
    monkeypatch.setattr(connections, "get_shop_info", fake_shop_info)
    monkeypatch.setattr(connections, "register_product_webhooks", fake_register)
    return calls


def _connect(shop="acme"):
    response = client.post(
        "/api/integrations/shopify/connect", json={"businessId": "biz-1", "shop": shop}, auth=AUTH
    )
    assert response.status_code == 200
    body = response.json()
    state = parse_qs(urlparse(body["authUrl"]).query)["state"][0]
    return body["integrationId"], state, body["authUrl"]


def test_connect_builds_authorize_url():
    integration_id, state, auth_url = _connect("Acme.myshopify.com")
    parsed = urlparse(auth_url)
    assert parsed.netloc == "acme.myshopify.com"
    assert parsed.path == "/admin/oauth/authorize"
    query = parse_qs(parsed.query)
    assert query["client_id"] == ["test-api-key"]
    assert query["redirect_uri"] == ["http://api.test/api/integrations/shopify/callback"]
    assert len(state) == 32

    info = client.get(f"/api/integrations/shopify/{integration_id}", auth=AUTH).json()
    assert info["integration"]["status"] == "pending"


def test_connect_rejects_bad_input():
    response = client.post("/api/integrations/shopify/connect", json={"businessId": "biz-1", "shop": "not a shop!"}, auth=AUTH)
    assert response.status_code == 400
    response = client.post("/api/integrations/shopify/connect", json={"shop": "acme"}, auth=AUTH)
    assert response.status_code == 400


def test_oauth_callback_activates_and_queues_initial_sync(shopify_oauth):
    integration_id, state, _ = _connect()
    response = client.get(
        "/api/integrations/shopify/callback",
        params={"shop": "acme.myshopify.com", "code": "auth-code", "state": state},
        follow_redirects=False,
    )
    assert response.status_code == 307
    assert response.headers["location"] == "http://dashboard.test/dashboard/biz-1/products/shopify?success=true"
    assert shopify_oauth["exchange"] == ("acme.myshopify.com", "auth-code")

    info = client.get(f"/api/integrations/shopify/{integration_id}", auth=AUTH).json()["integration"]
    assert info["status"] == "active"
    assert info["shopName"] == "Acme Store"

    jobs = asyncio.run(list_jobs(kind="shopify.initial_sync"))
    assert len(jobs) == 1
    assert jobs[0]["request"] == {"integration_id": integration_id, "tenant_id": "biz-1"}

    # already connected
    response = client.post("/api/integrations/shopify/connect", json={"businessId": "biz-1", "shop": "acme"}, auth=AUTH)
    assert response.status_code == 400


def test_oauth_state_is_single_use(shopify_oauth):
    _, state, _ = _connect()
    params = {"shop": "acme.myshopify.com", "code": "auth-code", "state": state}
    first = client.get("/api/integrations/shopify/callback", params=params, follow_redirects=False)
    assert "success=true" in first.headers["location"]

    replay = client.get("/api/integrations/shopify/callback", params=params, follow_redirects=False)
    assert replay.status_code == 307
    assert replay.headers["location"].startswith("http://dashboard.test/error?message=")
    assert "expired" in replay.headers["location"]


def test_oauth_callback_rejects_unknown_state(shopify_oauth):
    _connect()
    response = client.get(
        "/api/integrations/shopify/callback",
        params={"shop": "acme.myshopify.com", "code": "auth-code", "state": "deadbeef"},
        follow_redirects=False,
    )
    assert response.headers["location"].startswith("http://dashboard.test/error?message=")
    assert "exchange" not in shopify_oauth

    response = client.get("/api/integrations/shopify/callback", follow_redirects=False)
    assert response.headers["location"].startswith("http://dashboard.test/error?message=")


def test_disconnect(make_integration, shopify_products):
    integration_id = make_integration()
    response = client.post(f"/api/integrations/shopify/{integration_id}/disconnect", json={"businessId": "biz-1"}, auth=AUTH)
    assert response.status_code == 200

    info = client.get(f"/api/integrations/shopify/{integration_id}", auth=AUTH).json()["integration"]
    assert info["status"] == "disconnected"

    response = client.post(f"/api/integrations/shopify/{integration_id}/sync", json={"businessId": "biz-1"}, auth=AUTH)
    assert response.status_code == 400
