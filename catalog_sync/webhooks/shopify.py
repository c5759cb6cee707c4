# catalog_sync/webhooks/shopify.py
import base64, hmac, hashlib, json, logging
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from catalog_sync.config import settings
from catalog_sync.errors import SignatureVerificationError
from catalog_sync.models.jobs import ProcessedDelivery
from catalog_sync.store import open_store
from catalog_sync.sync.product_sync import apply_product_delete, find_active_integration_by_shop
from catalog_sync.webhooks.shopify_models import ShopifyProductPayload
from catalog_sync.workers.jobs_worker import enqueue_job  # <- queue the work


logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/webhooks/shopify", tags=["Shopify Webhooks"])

EVENTS = ("create", "update", "delete")


def _redact(headers: dict[str, str]) -> dict[str, str]:
    out: dict[str, str] = {}
    for k, v in headers.items():
        out[k] = "<redacted>" if k.lower() == "x-shopify-hmac-sha256" else v
    return out


def _b64_hmac_sha256(secret: str, body: bytes) -> str:
    mac = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(mac).decode("utf-8")


def verify_signature(body: bytes, received: str | None, secret: str | None = None) -> bool:
    """Constant-time check of X-Shopify-Hmac-Sha256. No secret configured → reject."""
    secret = secret if secret is not None else settings.SHOPIFY_WEBHOOK_SECRET
    if not secret or not received:
        return False
    return hmac.compare_digest(received.strip(), _b64_hmac_sha256(secret, body))


@router.post("/products/{event}")
async def shopify_product_webhook(event: str, request: Request) -> Response:
    event = (event or "").lower()
    if event not in EVENTS:
        return JSONResponse(status_code=404, content={"success": False, "error": f"unsupported event: {event}"})

    if settings.SHOPIFY_WEBHOOK_DEBUG:
        logger.info("[HOOK][DEBUG] incoming headers=%s", _redact(dict(request.headers)))

    # 1) Read body ONCE
    body = await request.body()

    # 2) Verify HMAC before touching the store
    if not verify_signature(body, request.headers.get("x-shopify-hmac-sha256")):
        logger.warning("[HOOK] signature mismatch on products/%s; returning 401", event)
        raise SignatureVerificationError("invalid_signature")

    # 3) Parse and validate
    try:
        raw = json.loads(body or b"{}")
        payload = ShopifyProductPayload.model_validate(raw)
    except Exception as e:
        logger.warning(f"[HOOK] payload validation error: {e}")
        return JSONResponse(status_code=422, content={"success": False, "error": "invalid_payload", "details": str(e)})

    shop = (request.headers.get("x-shopify-shop-domain") or "").strip().lower()
    delivery_id = (request.headers.get("x-shopify-webhook-id") or "").strip() or None

    try:
        async with open_store() as store:
            integ = await find_active_integration_by_shop(store, shop)
            if integ is None:
                logger.warning("[HOOK] no active integration for shop=%r", shop)
                return JSONResponse(status_code=404, content={"success": False, "error": "integration_not_found"})
            if delivery_id and await store.find_one(ProcessedDelivery, delivery_id=delivery_id):
                logger.info("[HOOK] duplicate delivery %s acknowledged", delivery_id)
                return JSONResponse({"success": True, "duplicate": True})

        # 4) Delete inline; create/update go to the worker (fast ACK)
        if event == "delete":
            await apply_product_delete(shop, payload.id)
        else:
            await enqueue_job("shopify.webhook", {"shop": shop, "event": event, "product": raw})

        if delivery_id:
            async with open_store() as store:
                await store.insert(ProcessedDelivery, delivery_id=delivery_id)
    except Exception as e:
        logger.exception("[HOOK] products/%s failed for %s", event, shop)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return JSONResponse({"success": True})
