# catalog_sync/importer/import_api.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from catalog_sync.errors import ValidationError
from catalog_sync.importer.bulk_import import import_workbook, save_processed_products
from catalog_sync.importer.enrichment import ChatCompletionEnricher, Enricher, process_product
from catalog_sync.importer.spreadsheet import build_template, read_upload
from catalog_sync.routes import _safe_json, _tenant_from, verify_admin
from catalog_sync.store import open_store

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Catalog Import"], dependencies=[Depends(verify_admin)])

TEMPLATE_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def get_enricher() -> Optional[Enricher]:
    return ChatCompletionEnricher.from_settings()


async def _read_file(file: Optional[UploadFile]) -> bytes:
    if file is None:
        raise ValidationError("No file provided")
    content = await file.read()
    if not content:
        raise ValidationError("Empty file")
    return content


@router.post("/products/import")
async def api_products_import(
    file: Optional[UploadFile] = File(None),
    businessId: Optional[str] = Form(None),
    business_id: Optional[str] = Form(None),
):
    """Two-sheet workbook (Productos / Variantes) → create or update by product name."""
    content = await _read_file(file)
    tenant = businessId or business_id
    if not tenant:
        raise ValidationError("Missing file or businessId")
    logger.info("[IMPORT] workbook %r (%d bytes) for tenant %s", file.filename, len(content), tenant)
    return JSONResponse(content=await import_workbook(tenant, content))


@router.get("/import/template")
async def api_import_template():
    return Response(
        content=build_template(),
        media_type=TEMPLATE_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=plantilla_productos.xlsx"},
    )


@router.post("/import/parse")
async def api_import_parse(file: Optional[UploadFile] = File(None)):
    content = await _read_file(file)
    columns, rows = read_upload(file.filename or "", content)
    return JSONResponse(content={"success": True, "columns": columns, "rows": rows})


@router.post("/import/process")
async def api_import_process(request: Request):
    payload = await _safe_json(request)
    product = payload.get("product")
    if not isinstance(product, dict) or not product:
        raise ValidationError("No product data provided")
    async with open_store() as store:
        processed, warning = await process_product(store, product, get_enricher())
    out = {"processedProduct": processed}
    if warning:
        out["warning"] = warning
    return JSONResponse(content=out)


@router.post("/import/save")
async def api_import_save(request: Request):
    payload = await _safe_json(request)
    products = payload.get("products")
    if not isinstance(products, list) or not products:
        raise ValidationError("No products provided")
    return JSONResponse(content=await save_processed_products(_tenant_from(payload), products))
