"""AES-256-GCM wrapping for per-user provider API keys."""

from __future__ import annotations

import hashlib
import os
import re
from typing import Protocol

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from garden_advisor.ai.models import ProviderName
from garden_advisor.storage.base import GardenStore
from garden_advisor.storage.models import EncryptedCredential

IV_BYTES = 12
TAG_BYTES = 16
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


class CredentialUnwrapper(Protocol):
    def unwrap(self, credential: EncryptedCredential) -> str: ...


def derive_key(secret: str) -> bytes:
    """Use a 64-hex-char secret verbatim; hash anything else down to 32 bytes."""
    if not secret:
        raise ValueError("encryption key is required")
    if _HEX_KEY_RE.match(secret):
        return bytes.fromhex(secret)
    return hashlib.sha256(secret.encode("utf-8")).digest()


class AesGcmUnwrapper:
    def __init__(self, secret: str) -> None:
        self._aead = AESGCM(derive_key(secret))

    def wrap(self, plaintext: str) -> tuple[str, str, str]:
        """Return hex ``(encrypted_key, iv, auth_tag)`` for storage."""
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return sealed[:-TAG_BYTES].hex(), iv.hex(), sealed[-TAG_BYTES:].hex()

    def unwrap(self, credential: EncryptedCredential) -> str:
        # AESGCM expects the tag appended to the ciphertext.
        sealed = bytes.fromhex(credential.encrypted_key) + bytes.fromhex(credential.auth_tag)
        plaintext = self._aead.decrypt(bytes.fromhex(credential.iv), sealed, None)
        return plaintext.decode("utf-8")


def resolve_credential(
    store: GardenStore,
    unwrapper: CredentialUnwrapper,
    user_id: str,
    provider: ProviderName,
) -> str | None:
    encrypted = store.get_encrypted_credential(user_id, provider)
    if encrypted is None:
        return None
    return unwrapper.unwrap(encrypted)
