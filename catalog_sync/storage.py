# catalog_sync/storage.py
# =======================================================
# Product asset storage on the local data volume.
#   STORAGE_DIR/temp/<batch>/<name>    uploads awaiting a product id
#   STORAGE_DIR/<product_id>/<name>    promoted product images
# Public URLs are STORAGE_PUBLIC_URL + "/" + key (served by the proxy).
# =======================================================
from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import Iterable, List

import httpx

from catalog_sync.config import settings
from catalog_sync.sync.components.util import basename, normalize_images

logger = logging.getLogger("uvicorn.error")

TEMP_PREFIX = "temp"


def _root() -> Path:
    return Path(settings.STORAGE_DIR)


def public_url(key: str) -> str:
    return f"{settings.STORAGE_PUBLIC_URL}/{key.lstrip('/')}"


def is_temporary_url(url: str | None) -> bool:
    return bool(url) and f"/{TEMP_PREFIX}/" in url


def _temp_key(url: str) -> str:
    return f"{TEMP_PREFIX}/" + url.split(f"/{TEMP_PREFIX}/", 1)[1].split("?", 1)[0]


def _safe_name(name: str) -> str:
    name = basename(name or "") or "image.jpg"
    return name.replace("..", "_").replace("/", "_").replace("\\", "_")


def save_temp_upload(filename: str, content: bytes, batch: str | None = None) -> str:
    key = f"{TEMP_PREFIX}/{batch or uuid.uuid4().hex}/{_safe_name(filename)}"
    path = _root() / key
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return public_url(key)


async def stage_remote_image(url: str, batch: str | None = None) -> str:
    """Download an external image into the temp area; returns its temp URL."""
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, follow_redirects=True) as client:
        resp = await client.get(url)
        resp.raise_for_status()
    return save_temp_upload(basename(url), resp.content, batch)


def promote_images(product_id: int, urls: Iterable[str] | None) -> List[str]:
    """
    Copy temp images to <product_id>/<filename> and drop the temp copy.
    Non-temp URLs pass through; a failed copy keeps the original URL.
    Empty → [""].
    """
    out: List[str] = []
    for url in urls or []:
        if not url:
            continue
        if not is_temporary_url(url):
            out.append(url)
            continue
        try:
            src = _root() / _temp_key(url)
            key = f"{product_id}/{_safe_name(src.name)}"
            dst = _root() / key
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
            out.append(public_url(key))
        except Exception as e:
            logger.warning("[IMPORT] could not promote image %s for product %s: %s", url, product_id, e)
            out.append(url)
            continue
        src.unlink(missing_ok=True)
    return normalize_images(out)
