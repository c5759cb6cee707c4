# catalog_sync/errors.py
# Exception taxonomy for catalog sync. Each class carries the HTTP status the
# API layer answers with when it escapes a route (see main_app handler).
from __future__ import annotations

from typing import Any


class CatalogSyncError(Exception):
    status_code: int = 500

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": False, "error": self.message}
        if self.details:
            out["details"] = self.details
        return out


class UpstreamHttpError(CatalogSyncError):
    """The external platform answered non-2xx (or could not be reached)."""
    status_code = 502

    def __init__(self, status: int | None, status_text: str, url: str = "", body: str = ""):
        label = f"{status} {status_text}".strip() if status else status_text
        super().__init__(f"Upstream error: {label}", upstream_status=status, url=url)
        self.status = status
        self.status_text = status_text
        self.url = url
        self.body = body


class SignatureVerificationError(CatalogSyncError):
    status_code = 401


class PerItemReconciliationError(CatalogSyncError):
    """One external item / spreadsheet row failed; the batch carries on."""

    def __init__(self, item_ref: Any, cause: BaseException):
        super().__init__(f"item {item_ref!r} failed: {cause}")
        self.item_ref = item_ref
        self.cause = cause


class ValidationError(CatalogSyncError):
    status_code = 400


class IntegrationNotFoundError(CatalogSyncError):
    status_code = 404


class IntegrationStateError(CatalogSyncError):
    status_code = 400


class EncryptionError(CatalogSyncError):
    status_code = 500


class JobNotFoundError(CatalogSyncError):
    status_code = 404
