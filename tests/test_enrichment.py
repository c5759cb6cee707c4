import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from catalog_sync.errors import UpstreamHttpError
from catalog_sync.importer import import_api
from catalog_sync.importer.enrichment import (
    DEFAULT_STOCK,
    WARNING_FALLBACK,
    WARNING_REPAIRED,
    ChatCompletionEnricher,
    ensure_valid_product_structure,
    process_product,
    repair_json,
)
from catalog_sync.main_app import app
from catalog_sync.models.catalog import Brand, Category
from catalog_sync.store import open_store

client = TestClient(app)
AUTH = ("admin", "adminpass")

REPLY = {
    "name": "Silla Nórdica",
    "short_name": "Silla",
    "description": "Silla de madera",
    "short_description": "Silla",
    "brand_name": "Nordik",
    "category_hint": "sillas",
    "keywords": ["silla", "madera"],
    "images_url": [],
    "shipping_cost": 0,
    "variants": [{"name": "Color", "display_name": "Color", "position": 0, "options": [
        {"name": "Blanco", "display_name": "Blanco", "price": 129900, "stock": 3, "is_default": True, "sku": "SN-B"},
    ]}],
}


def _fixed(reply):
    async def enricher(raw):
        return reply
    return enricher


def test_repair_json():
    assert repair_json('```json\n{"name": "Mesa"}\n```') == {"name": "Mesa"}
    assert repair_json('{"name": "Silla", "keywords": ["a", "b",],}') == {"name": "Silla", "keywords": ["a", "b"]}
    assert repair_json('Aquí está: {"name": "Mesa"} ¡listo!') == {"name": "Mesa"}
    assert repair_json("no json at all") is None
    assert repair_json("[1, 2]") is None
    assert repair_json("") is None


def test_ensure_valid_product_structure():
    out = ensure_valid_product_structure({"name": "Mesa", "shipping_cost": 500})
    assert len(out["variants"]) == 1
    option = out["variants"][0]["options"][0]
    assert option["name"] == "Default"
    assert option["stock"] == DEFAULT_STOCK
    assert option["price"] == 500
    assert option["sku"]

    out = ensure_valid_product_structure(
        {"variants": [{"name": "Talla", "options": [{"name": "M"}], "dimensions": {"ancho": 1}}, "junk"]}
    )
    assert len(out["variants"]) == 1
    variant = out["variants"][0]
    assert "dimensions" not in variant
    assert variant["display_name"] == "Talla"
    assert variant["options"][0]["sku"]


async def _process(raw, enricher, *, seed_category=False):
    async with open_store() as store:
        if seed_category:
            parent = await store.insert(Category, name="Muebles", level=1)
            await store.insert(Category, name="Sillas", level=2, parent_id=parent.id)
        processed, warning = await process_product(store, raw, enricher)
        brand = await store.find_one(Brand, name="Nordik")
        return processed, warning, brand


def test_process_product_with_model_reply():
    processed, warning, brand = asyncio.run(
        _process({"nombre": "silla nordica"}, _fixed(json.dumps(REPLY)), seed_category=True)
    )
    assert warning is None
    assert processed["name"] == "Silla Nórdica"
    assert processed["brand_id"] == brand.id
    assert brand.status == "on_revision"
    assert processed["subcategory_id"] != 1
    assert processed["images_url"] == [""]
    assert processed["variants"][0]["options"][0]["price"] == 129900
    assert "brand_name" not in processed
    assert "category_hint" not in processed


def test_process_product_repairs_fenced_reply():
    processed, warning, _ = asyncio.run(_process({"nombre": "x"}, _fixed("```json\n" + json.dumps(REPLY) + "\n```")))
    assert warning == WARNING_REPAIRED
    assert processed["name"] == "Silla Nórdica"
    # no level-2 "sillas" category → default subcategory
    assert processed["subcategory_id"] == 1


def test_process_product_falls_back():
    raw = {"nombre": "Biombo", "descripcion": "Biombo de bambú", "marca": ""}
    processed, warning, _ = asyncio.run(_process(raw, _fixed("lo siento, no puedo")))
    assert warning == WARNING_FALLBACK
    assert processed["name"] == "Biombo"
    assert processed["description"] == "Biombo de bambú"
    assert processed["brand_id"] is None
    assert processed["variants"][0]["options"][0]["stock"] == DEFAULT_STOCK

    async def broken(raw):
        raise UpstreamHttpError(500, "Internal Server Error")

    processed, warning, _ = asyncio.run(_process(raw, broken))
    assert warning == WARNING_FALLBACK

    processed, warning, _ = asyncio.run(_process(raw, None))
    assert warning == WARNING_FALLBACK


def test_process_endpoint(monkeypatch):
    monkeypatch.setattr(import_api, "get_enricher", lambda: _fixed(json.dumps(REPLY)))
    response = client.post("/api/import/process", json={"product": {"nombre": "silla"}}, auth=AUTH)
    assert response.status_code == 200
    body = response.json()
    assert body["processedProduct"]["name"] == "Silla Nórdica"
    assert "warning" not in body

    monkeypatch.setattr(import_api, "get_enricher", lambda: None)
    body = client.post("/api/import/process", json={"product": {"nombre": "silla"}}, auth=AUTH).json()
    assert body["warning"] == WARNING_FALLBACK
    assert body["processedProduct"]["name"] == "silla"

    response = client.post("/api/import/process", json={}, auth=AUTH)
    assert response.status_code == 400


def test_chat_completion_enricher(monkeypatch):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"name": "Mesa"}'}}]})

    enricher = ChatCompletionEnricher("https://llm.test/v1/", "sk-test", "gpt-test")
    monkeypatch.setattr(enricher, "_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    assert asyncio.run(enricher({"nombre": "mesa"})) == '{"name": "Mesa"}'
    assert str(seen[0].url) == "https://llm.test/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer sk-test"
    body = json.loads(seen[0].content)
    assert body["model"] == "gpt-test"
    assert '"nombre": "mesa"' in body["messages"][0]["content"]

    monkeypatch.setattr(
        enricher, "_client", lambda: httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    )
    with pytest.raises(UpstreamHttpError):
        asyncio.run(enricher({"nombre": "mesa"}))


def test_enricher_needs_an_api_key():
    assert ChatCompletionEnricher.from_settings() is None
