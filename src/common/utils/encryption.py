# src/common/utils/encryption.py

import base64
import binascii
import copy
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.common.config import settings

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32
ASSOCIATED_DATA = b"healthcare-audit-log"
ENCRYPTION_VERSION = "1.0"
REDACTED = "[REDACTED]"

# Dot-notated paths encrypted at rest
SENSITIVE_FIELDS: Tuple[str, ...] = (
    "userEmail",
    "userName",
    "ipAddress",
    "userAgent",
    "details.patientName",
    "details.searchQuery",
    "details.fileName",
)

ENCRYPTION_MARKERS = ("_encrypted", "_encryptionVersion", "_encryptedAt")


class DecryptionError(Exception):
    """Ciphertext could not be authenticated or decoded."""


class FieldEncryptor:
    """AES-256-GCM encryption of individual audit log fields.

    Ciphertexts are framed as base64(nonce || tag || ciphertext) and bound to
    the ``healthcare-audit-log`` associated data.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), ASSOCIATED_DATA)
        # AESGCM appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.b64decode(token.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError, AttributeError) as e:
            raise DecryptionError("Ciphertext is not valid base64") from e
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext is too short")

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE:]
        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, ASSOCIATED_DATA)
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication") from e
        return plaintext.decode("utf-8")

    def encrypt_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of an audit document with its sensitive paths encrypted and markers set."""
        encrypted = copy.deepcopy(document)
        for path in SENSITIVE_FIELDS:
            value = _get_path(encrypted, path)
            if value is None or value == "":
                continue
            _set_path(encrypted, path, self.encrypt(str(value)))

        encrypted["_encrypted"] = True
        encrypted["_encryptionVersion"] = ENCRYPTION_VERSION
        encrypted["_encryptedAt"] = datetime.now(timezone.utc).isoformat()
        return encrypted

    def decrypt_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Return a copy of an audit document with its sensitive paths decrypted
        and the encryption markers removed. A field that fails authentication
        is replaced by "[REDACTED]".
        """
        decrypted = copy.deepcopy(document)
        if decrypted.get("_encrypted"):
            for path in SENSITIVE_FIELDS:
                value = _get_path(decrypted, path)
                if not isinstance(value, str) or value == "":
                    continue
                try:
                    _set_path(decrypted, path, self.decrypt(value))
                except DecryptionError:
                    logger.error("Failed to decrypt audit field %s", path)
                    _set_path(decrypted, path, REDACTED)

        for marker in ENCRYPTION_MARKERS:
            decrypted.pop(marker, None)
        return decrypted


def _get_path(document: Dict[str, Any], path: str) -> Any:
    current: Any = document
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _set_path(document: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = document
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


def generate_hash(data: Any) -> str:
    """SHA-256 hex digest of a payload; non-string payloads are hashed as canonical JSON."""
    if not isinstance(data, (str, bytes)):
        data = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def verify_hash(data: Any, expected_hash: Optional[str]) -> bool:
    if not expected_hash:
        return False
    return hmac.compare_digest(generate_hash(data), expected_hash)


@lru_cache
def get_field_encryptor() -> FieldEncryptor:
    """Process-wide encryptor built from ENCRYPTION_KEY."""
    return FieldEncryptor(bytes.fromhex(settings.ENCRYPTION_KEY))
