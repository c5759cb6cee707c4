# --- Global log sanitizers: HTML body spam + credential leaks ----------------------
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

# Shopify admin tokens / shared secrets, bearer headers, OAuth codes in query strings
_SECRET_RES = (
    re.compile(r'shpat_[A-Za-z0-9]{16,}'),
    re.compile(r'shpss_[A-Za-z0-9]{16,}'),
    re.compile(r'(?i)bearer\s+[A-Za-z0-9._\-]+'),
    re.compile(r'(?i)\b(access_token|client_secret|code)=([^&\s"]+)'),
)
REDACTED = "[REDACTED]"

def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def _summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def redact(s: str) -> str:
    for rx in _SECRET_RES:
        if rx.groups == 2:
            s = rx.sub(lambda m: f"{m.group(1)}={REDACTED}", s)
        else:
            s = rx.sub(REDACTED, s)
    return s

class _HtmlTrimFilter(logging.Filter):
    """If a log message contains a large HTML blob, replace it with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            if isinstance(msg, str) and len(msg) > 200 and _HTML_SIG_RE.search(msg):
                record.msg = _summarize_html(msg)
                record.args = ()
        except Exception:
            pass
        return True

class _SecretRedactFilter(logging.Filter):
    """Mask tokens that slipped into a formatted log message."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            clean = redact(msg)
            if clean != msg:
                record.msg = clean
                record.args = ()
        except Exception:
            pass
        return True

_INSTALLED = False

def install_log_filters() -> None:
    """Install once on common loggers (root + uvicorn family)."""
    global _INSTALLED
    if _INSTALLED:
        return
    for _name in ("", "uvicorn", "uvicorn.error"):
        lg = logging.getLogger(_name)
        lg.addFilter(_HtmlTrimFilter())
        lg.addFilter(_SecretRedactFilter())
    _INSTALLED = True
# --------------------------------------------------------------------------------
