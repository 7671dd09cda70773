"""Private key sealing at rest.

Sealed values look like ``encrypted:<base64(salt || nonce || ciphertext)>``.
The AES-256-GCM key is derived from a passphrase with scrypt. Values without
the prefix are plain base64 of the raw private key.
"""

from __future__ import annotations

import os
from hashlib import scrypt

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import KeyUnsealFailed
from ..utils.encoding import b64_decode, b64_encode

SEALED_PREFIX = "encrypted:"
SALT_BYTES = 16
NONCE_BYTES = 12
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
AAD = b"proof-of-gift/private-key/v1"


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    return scrypt(passphrase.encode("utf-8"), salt=salt, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P, dklen=32)


def seal_private_key(raw_key: bytes, passphrase: str | None) -> str:
    """Encode a raw private key for storage, encrypting it when a passphrase is given."""
    if not passphrase:
        return b64_encode(raw_key)
    salt = os.urandom(SALT_BYTES)
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = AESGCM(_derive_key(passphrase, salt)).encrypt(nonce, raw_key, AAD)
    return SEALED_PREFIX + b64_encode(salt + nonce + ciphertext)


def unseal_private_key(stored: str, passphrase: str | None) -> bytes:
    """Inverse of :func:`seal_private_key`."""
    if not stored.startswith(SEALED_PREFIX):
        try:
            return b64_decode(stored)
        except ValueError as exc:
            raise KeyUnsealFailed("stored private key is not valid base64") from exc

    if not passphrase:
        raise KeyUnsealFailed("stored private key is encrypted but no passphrase is configured")
    try:
        blob = b64_decode(stored[len(SEALED_PREFIX):])
    except ValueError as exc:
        raise KeyUnsealFailed("failed to decode encrypted private key") from exc
    if len(blob) <= SALT_BYTES + NONCE_BYTES:
        raise KeyUnsealFailed("encrypted private key is truncated")

    salt = blob[:SALT_BYTES]
    nonce = blob[SALT_BYTES:SALT_BYTES + NONCE_BYTES]
    ciphertext = blob[SALT_BYTES + NONCE_BYTES:]
    try:
        return AESGCM(_derive_key(passphrase, salt)).decrypt(nonce, ciphertext, AAD)
    except InvalidTag as exc:
        raise KeyUnsealFailed("failed to decrypt private key") from exc
