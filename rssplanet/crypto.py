"""
Hashing and per-owner authenticated encryption for stored values.
"""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

CIPHER_PREFIX = "v1:"
NONCE_SIZE = 12


def md5(message: str) -> str:
    """Hex MD5 digest of a string. Used for cache keys, not for secrecy."""
    return hashlib.md5(message.encode("utf-8")).hexdigest()


class OwnerCipher:
    """
    AES-256-GCM keyed by SHA-256(secret + owner).

    Ciphertext format is "v1:" + base64(nonce || ciphertext). Values without
    the prefix are treated as legacy plaintext and passed through unchanged.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("Encryption secret must not be empty")
        self._secret = secret

    def _key(self, owner: str) -> bytes:
        return hashlib.sha256((self._secret + owner).encode("utf-8")).digest()

    def encrypt(self, plaintext: str, owner: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self._key(owner)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return CIPHER_PREFIX + base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, stored: str, owner: str) -> str | None:
        """Decrypt a stored value; None when it is ours but cannot be opened."""
        if not stored.startswith(CIPHER_PREFIX):
            return stored
        try:
            raw = base64.b64decode(stored[len(CIPHER_PREFIX):], validate=True)
            if len(raw) <= NONCE_SIZE:
                raise ValueError("Ciphertext too short")
            nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
            return AESGCM(self._key(owner)).decrypt(nonce, sealed, None).decode("utf-8")
        except (InvalidTag, ValueError, binascii.Error) as e:
            logger.error(f"Decryption failed: {type(e).__name__}")
            return None
