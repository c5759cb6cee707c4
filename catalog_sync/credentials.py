# catalog_sync/credentials.py
# --------------------------------------------------------------------------------------
# At-rest encryption for integration credentials (Shopify access tokens, provider
# API keys/secrets). Fernet with a key derived from ENCRYPTION_KEY.
# --------------------------------------------------------------------------------------
import base64
import hashlib
import logging
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

from catalog_sync.config import settings
from catalog_sync.errors import EncryptionError

logger = logging.getLogger("uvicorn.error")

_SALT = b"catalog-sync-credentials"


@lru_cache(maxsize=4)
def _fernet_for(key_material: str) -> Fernet:
    derived = hashlib.pbkdf2_hmac("sha256", key_material.encode("utf-8"), _SALT, 100_000, dklen=32)
    return Fernet(base64.urlsafe_b64encode(derived))


def _fernet() -> Fernet:
    key = settings.ENCRYPTION_KEY
    if not key:
        raise EncryptionError("ENCRYPTION_KEY is not configured")
    return _fernet_for(key)


def seal_secret(plaintext: str | None) -> str:
    """Encrypt a credential for storage. Empty in → empty out."""
    if not plaintext:
        return ""
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def open_secret(ciphertext: str | None) -> str:
    if not ciphertext:
        return ""
    try:
        return _fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        logger.error("[CRED] could not decrypt stored credential (wrong ENCRYPTION_KEY?)")
        raise EncryptionError("Invalid ciphertext or wrong encryption key")
