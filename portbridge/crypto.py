"""AES-GCM helpers and the wire encryption hook."""

from __future__ import annotations

import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class CryptoError(Exception):
    """Raised when a key is unusable or a ciphertext cannot be opened."""


def derive_key(config_key: str) -> bytes:
    """Derive a 16-byte AES key from a configuration key."""
    return hashlib.md5(config_key.encode("utf-8")).digest()


def key_and_iv(config_key: str) -> tuple[bytes, bytes]:
    """Return the derived key and a 16-byte IV derived from the same key."""
    iv = hashlib.md5((config_key + "iv").encode("utf-8")).digest()
    return derive_key(config_key), iv


class AesGcmEncryptor:
    """AES-128-GCM with a random nonce prepended to each ciphertext."""

    def __init__(self, config_key: str) -> None:
        if not config_key:
            raise CryptoError("encryption key must not be empty")
        self._aead = AESGCM(derive_key(config_key))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aead.encrypt(nonce, bytes(plaintext), None)

    def decrypt(self, ciphertext: bytes) -> bytes:
        if len(ciphertext) < NONCE_SIZE:
            raise CryptoError("ciphertext too short to hold a nonce")
        nonce, body = ciphertext[:NONCE_SIZE], ciphertext[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, bytes(body), None)
        except InvalidTag as exc:
            raise CryptoError("decryption failed") from exc


def encrypt(plaintext: bytes) -> bytes:
    """Wire encryption hook; frames currently travel unencrypted."""
    return bytes(plaintext)


def decrypt(ciphertext: bytes) -> bytes:
    """Wire decryption hook; frames currently travel unencrypted."""
    return bytes(ciphertext)