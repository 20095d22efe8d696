"""
AES-256-GCM encryption for OAuth tokens at rest.

Stored format (hex string):

  iv (16 bytes, 32 hex chars) || auth tag (16 bytes, 32 hex chars) || ciphertext (hex)

The key is SHA-256 of the configured secret, so any secret length works and
tokens written by other services sharing the secret stay readable.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from crosspost.errors import ConfigurationError, TokenDecryptionError

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
_HEADER_HEX = (IV_LENGTH + AUTH_TAG_LENGTH) * 2


def derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


class TokenCipher:
    """Symmetric encrypt/decrypt for access and refresh tokens."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY environment variable is not set")
        self._aead = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return iv.hex() + tag.hex() + ciphertext.hex()

    def decrypt(self, encrypted: str) -> str:
        """Raises TokenDecryptionError on a bad tag, wrong key or malformed input."""
        if len(encrypted) < _HEADER_HEX:
            raise TokenDecryptionError("Encrypted token is too short")
        try:
            iv = bytes.fromhex(encrypted[: IV_LENGTH * 2])
            tag = bytes.fromhex(encrypted[IV_LENGTH * 2 : _HEADER_HEX])
            ciphertext = bytes.fromhex(encrypted[_HEADER_HEX:])
        except ValueError as exc:
            raise TokenDecryptionError("Encrypted token is not valid hex") from exc

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise TokenDecryptionError(
                "Token decryption failed: authentication tag mismatch"
            ) from exc
        return plaintext.decode("utf-8")
