# ----------------------------------------------------------------
# Import configuration variables to be used throughout the project
# ----------------------------------------------------------------
import os
from dotenv import load_dotenv

# Load .env (allow container env to override file values)
load_dotenv(override=True)


def _rstrip_slash(s: str) -> str:
    return (s or "").rstrip("/")


def _get_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        return int(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw.strip() else default
    except ValueError:
        return default


def _get_list(name: str, default: str = "") -> list[str]:
    return [p.strip() for p in os.getenv(name, default).split(",") if p.strip()]


class Settings:
    # ── Shopify app ──────────────────────────────────────────────────────────
    SHOPIFY_API_KEY: str = os.getenv("SHOPIFY_API_KEY", "")
    SHOPIFY_API_SECRET: str = os.getenv("SHOPIFY_API_SECRET", "")
    SHOPIFY_API_VERSION: str = os.getenv("SHOPIFY_API_VERSION", "2025-04")
    SHOPIFY_SCOPES: str = os.getenv("SHOPIFY_SCOPES", "read_products,write_products")
    SHOPIFY_PAGE_LIMIT: int = _get_int("SHOPIFY_PAGE_LIMIT", 250)

    # Webhook HMAC secret (Shopify signs with the app secret unless overridden)
    SHOPIFY_WEBHOOK_SECRET: str = os.getenv("SHOPIFY_WEBHOOK_SECRET", "") or os.getenv("SHOPIFY_API_SECRET", "")
    SHOPIFY_WEBHOOK_TOPICS: list[str] = _get_list(
        "SHOPIFY_WEBHOOK_TOPICS", "products/create,products/update,products/delete"
    )
    SHOPIFY_WEBHOOK_DEBUG: bool = _get_bool("SHOPIFY_WEBHOOK_DEBUG", False)

    # ── Public URLs ──────────────────────────────────────────────────────────
    # Dashboard / redirect target and the base Shopify calls back into
    APP_URL: str = _rstrip_slash(os.getenv("APP_URL", "http://localhost:3000"))
    PUBLIC_API_URL: str = _rstrip_slash(os.getenv("PUBLIC_API_URL", "") or os.getenv("APP_URL", "http://localhost:8000"))

    # ── Database ─────────────────────────────────────────────────────────────
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    # ── Catalog defaults ─────────────────────────────────────────────────────
    CATALOG_DEFAULT_SUBCATEGORY_ID: int = _get_int("CATALOG_DEFAULT_SUBCATEGORY_ID", 1)
    CATALOG_NEW_PRODUCT_STATUS: str = os.getenv("CATALOG_NEW_PRODUCT_STATUS", "draft")
    # empty → keep the current status on re-sync; e.g. "requires_verification"
    CATALOG_RESYNC_STATUS: str = os.getenv("CATALOG_RESYNC_STATUS", "")
    CATALOG_BRAND_STATUS: str = os.getenv("CATALOG_BRAND_STATUS", "active")

    # ── Asset storage ────────────────────────────────────────────────────────
    # data directory is mounted: ./data ↔ /code/data (see docker-compose)
    DATA_DIR: str = os.getenv("DATA_DIR", "./data")
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "") or os.path.join(os.getenv("DATA_DIR", "./data"), "storage")
    STORAGE_PUBLIC_URL: str = _rstrip_slash(os.getenv("STORAGE_PUBLIC_URL", "/storage"))

    # ── Credentials at rest ──────────────────────────────────────────────────
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")

    # ── AI enrichment (OpenAI-compatible chat completions) ───────────────────
    ENRICHMENT_API_URL: str = _rstrip_slash(os.getenv("ENRICHMENT_API_URL", "https://api.openai.com/v1"))
    ENRICHMENT_API_KEY: str = os.getenv("ENRICHMENT_API_KEY", "") or os.getenv("OPENAI_API_KEY", "")
    ENRICHMENT_MODEL: str = os.getenv("ENRICHMENT_MODEL", "gpt-4o")

    # ── Worker / scheduler ───────────────────────────────────────────────────
    WORKER_ENABLED: bool = _get_bool("WORKER_ENABLED", True)
    # 0 disables the periodic provider auto-sync check
    SCHEDULER_INTERVAL_SECONDS: int = _get_int("SCHEDULER_INTERVAL_SECONDS", 900)

    # ── HTTP client ──────────────────────────────────────────────────────────
    HTTP_TIMEOUT: float = _get_float("HTTP_TIMEOUT", 20.0)

    # ── Admin / operator auth ────────────────────────────────────────────────
    ADMIN_USER: str = os.getenv("ADMIN_USER", "admin")
    ADMIN_PASS: str = os.getenv("ADMIN_PASS", "changeme")

    # ── CORS ─────────────────────────────────────────────────────────────────
    # Comma-separated list in .env, e.g. "https://example.com, https://foo.bar"
    CORS_ORIGINS: list[str] = _get_list("CORS_ORIGINS", "*")


settings = Settings()
