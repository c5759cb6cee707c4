# catalog_sync/sync/components/util.py
from __future__ import annotations

import re
import os
from urllib.parse import urlparse
from typing import Any, Iterable, List

_TAG_RE = re.compile(r"<[^>]*>")
_WORD_CLEAN_RE = re.compile(r"[^\w\sáéíóúüñ]")

def strip_html(text: str | None) -> str:
    return _TAG_RE.sub("", text or "")

def truncate(text: str | None, limit: int) -> str:
    # plain character cut; may split a word
    return (text or "")[:limit]

def short_description_from(html: str | None, limit: int = 150) -> str:
    return truncate(strip_html(html), limit).strip()

def normalize_images(urls: Iterable[Any] | None) -> List[str]:
    """Non-empty URL strings; an empty result is the [""] 'no images' sentinel."""
    out = [str(u).strip() for u in (urls or []) if u and str(u).strip()]
    return out or [""]

def split_csv(text: Any, sep: str = ",") -> List[str]:
    if text is None:
        return []
    return [p.strip() for p in str(text).split(sep) if p.strip()]

def extract_keywords(text: str | None, limit: int = 20) -> List[str]:
    """Words longer than two chars, lower-cased, de-duplicated in order."""
    words = strip_html(text).lower().split()
    seen: dict[str, None] = {}
    for w in words:
        w = _WORD_CLEAN_RE.sub("", w)
        if len(w) > 2 and w not in seen:
            seen[w] = None
    return list(seen)[:limit]

def dig(obj: Any, path: str | None) -> Any:
    """Dotted-path lookup: dig({'a': {'b': 1}}, 'a.b') → 1."""
    if not path:
        return None
    cur = obj
    for key in path.split("."):
        if cur is None:
            return None
        if isinstance(cur, dict):
            cur = cur.get(key)
        elif isinstance(cur, list) and key.isdigit():
            idx = int(key)
            cur = cur[idx] if idx < len(cur) else None
        else:
            return None
    return cur

def basename(url_or_path: str) -> str:
    try:
        if url_or_path.startswith(("http://", "https://")):
            return os.path.basename(urlparse(url_or_path).path) or "image.jpg"
        return os.path.basename(url_or_path)
    except Exception:
        return "image.jpg"
