# ---------------------------
# catalog_sync/workers/jobs_worker.py
# ---------------------------
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from catalog_sync.config import settings
from catalog_sync.db import utcnow
from catalog_sync.errors import JobNotFoundError, ValidationError
from catalog_sync.models.jobs import SyncJob
from catalog_sync.store import open_store

logger = logging.getLogger("uvicorn.error")

# created by worker_loop so it binds to the running loop; None → no worker in this process
_QUEUE: "Optional[asyncio.Queue[str]]" = None

JOB_KINDS = ("shopify.initial_sync", "shopify.manual_sync", "shopify.webhook", "provider.sync")


def _push(job_id: str) -> None:
    if _QUEUE is None:
        return
    try:
        _QUEUE.put_nowait(job_id)
    except asyncio.QueueFull:
        logger.error("[WORKER] queue full; job %s stays queued until restart", job_id)


async def enqueue_job(kind: str, payload: Dict[str, Any]) -> str:
    """Persist a queued job row, then hand its id to the in-process worker."""
    if kind not in JOB_KINDS:
        raise ValidationError(f"Unknown job kind: {kind!r}")
    job_id = uuid.uuid4().hex
    async with open_store() as store:
        await store.insert(SyncJob, id=job_id, kind=kind, payload=json.dumps(payload, default=str), status="queued")
    _push(job_id)
    logger.info("[WORKER] enqueued job %s kind=%s", job_id, kind)
    return job_id

# ---------------------------
# Handlers
# ---------------------------

async def _handle_shopify_sync(payload: Dict[str, Any]) -> Dict[str, Any]:
    from catalog_sync.sync.product_sync import sync_shopify_integration
    res = await sync_shopify_integration(int(payload["integration_id"]), payload.get("tenant_id"))
    return res.to_stats()


async def _handle_shopify_webhook(payload: Dict[str, Any]) -> Dict[str, Any]:
    from catalog_sync.sync.product_sync import apply_product_upsert
    outcome = await apply_product_upsert(payload["shop"], payload.get("product") or {})
    return {"event": payload.get("event"), "outcome": outcome}


async def _handle_provider_sync(payload: Dict[str, Any]) -> Dict[str, Any]:
    from catalog_sync.sync.provider_sync import sync_api_integration
    res = await sync_api_integration(str(payload["tenant_id"]))
    return res.to_stats()


_HANDLERS = {
    "shopify.initial_sync": _handle_shopify_sync,
    "shopify.manual_sync": _handle_shopify_sync,
    "shopify.webhook": _handle_shopify_webhook,
    "provider.sync": _handle_provider_sync,
}

# ---------------------------
# Execution
# ---------------------------

async def run_job(job_id: str) -> Dict[str, Any]:
    """
    queued|running → running → done|failed. Failures are recorded on the
    row (never raised) so the worker loop keeps going.
    """
    async with open_store() as store:
        job = await store.get(SyncJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.status == "done":
            return job.as_dict()
        await store.update(job, status="running", attempts=job.attempts + 1, started_at=utcnow(), error=None)
        kind, payload = job.kind, json.loads(job.payload or "{}")

    logger.info("[WORKER] running job %s kind=%s", job_id, kind)
    status, result, error = "done", None, None
    try:
        handler = _HANDLERS.get(kind)
        if handler is None:
            raise ValidationError(f"Unknown job kind: {kind!r}")
        result = await handler(payload)
    except Exception as e:
        logger.exception("[WORKER] failed job %s kind=%s", job_id, kind)
        status, error = "failed", str(e) or e.__class__.__name__

    async with open_store() as store:
        job = await store.get(SyncJob, job_id)
        await store.update(
            job,
            status=status,
            result=json.dumps(result, default=str) if result is not None else None,
            error=error,
            finished_at=utcnow(),
        )
        out = job.as_dict()
    logger.info("[WORKER] job %s %s", job_id, status)
    return out


async def get_job(job_id: str) -> Dict[str, Any]:
    async with open_store() as store:
        job = await store.get(SyncJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job.as_dict()


async def list_jobs(status: Optional[str] = None, kind: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    filters: Dict[str, Any] = {}
    if status:
        filters["status"] = status
    if kind:
        filters["kind"] = kind
    async with open_store() as store:
        rows = await store.find_all(SyncJob, order_by=SyncJob.created_at.desc(), **filters)
        return [r.as_dict() for r in rows[: max(1, limit)]]


async def retry_job(job_id: str) -> Dict[str, Any]:
    async with open_store() as store:
        job = await store.get(SyncJob, job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        if job.status != "failed":
            raise ValidationError(f"Only failed jobs can be retried (status={job.status})")
        await store.update(job, status="queued", error=None, result=None, finished_at=None)
        out = job.as_dict()
    _push(job_id)
    logger.info("[WORKER] job %s re-queued", job_id)
    return out

# ---------------------------
# Loop
# ---------------------------

async def _requeue_pending() -> int:
    """Jobs left queued, or running when the previous process died."""
    async with open_store() as store:
        rows = await store.find_all(SyncJob, order_by=SyncJob.created_at, status=["queued", "running"])
        ids = [r.id for r in rows]
        await store.update_where(SyncJob, {"status": "queued"}, status="running")
    for job_id in ids:
        _push(job_id)
    return len(ids)


async def _scheduler_tick() -> None:
    from catalog_sync.sync.provider_sync import run_due_provider_syncs
    try:
        await run_due_provider_syncs()
    except Exception:
        logger.exception("[WORKER] scheduled provider sync tick failed")


async def worker_loop(stop_event: asyncio.Event) -> None:
    global _QUEUE
    _QUEUE = asyncio.Queue()
    loop = asyncio.get_running_loop()
    interval = settings.SCHEDULER_INTERVAL_SECONDS
    next_tick = loop.time() + interval if interval > 0 else None

    requeued = await _requeue_pending()
    logger.info("[WORKER] started (requeued=%d)", requeued)

    while not stop_event.is_set():
        if next_tick is not None and loop.time() >= next_tick:
            await _scheduler_tick()
            next_tick = loop.time() + interval
        try:
            job_id = await asyncio.wait_for(_QUEUE.get(), timeout=1.0)
        except asyncio.TimeoutError:
            continue

        try:
            await run_job(job_id)
        except Exception as e:
            logger.error("[WORKER] job %s could not run: %s", job_id, e)
        finally:
            _QUEUE.task_done()

    _QUEUE = None
    logger.info("[WORKER] stopped")
