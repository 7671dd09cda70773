"""Lazy creation and loading of the process-wide signing key pair."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..errors import CryptoUnavailable, KeyUnsealFailed
from ..utils.encoding import b64_decode, b64_encode
from ..utils.time import utc_now
from .sealing import seal_private_key, unseal_private_key
from .storage import KeyStore
from .types import KEY_ALGORITHM, KeyPair

logger = logging.getLogger(__name__)

KEYPAIR_NAME = "signing_keypair"


class KeyManager:
    """Owns the signing key pair; generates and persists it on first use.

    Both halves are written as one document through
    :meth:`KeyStore.set_if_absent`. When two processes boot at the same time
    each may generate a pair, but both adopt whichever document the store kept.
    """

    def __init__(self, store: KeyStore, *, passphrase: Optional[str] = None) -> None:
        self.store = store
        self._passphrase = passphrase
        self._keypair: Optional[KeyPair] = None
        self._lock = asyncio.Lock()

    async def get_or_create_keypair(self) -> KeyPair:
        if self._keypair is not None:
            return self._keypair

        async with self._lock:
            if self._keypair is not None:
                return self._keypair

            stored = await self.store.get(KEYPAIR_NAME)
            if stored is None:
                candidate = self._serialize(self._generate())
                stored = await self.store.set_if_absent(KEYPAIR_NAME, candidate)
                if stored == candidate:
                    logger.info("Generated new %s signing key pair", KEY_ALGORITHM)
                else:
                    logger.info("Signing key pair created concurrently elsewhere; using stored pair")

            self._keypair = self._deserialize(stored)
            return self._keypair

    @staticmethod
    def _generate() -> KeyPair:
        try:
            private_key = Ed25519PrivateKey.generate()
        except UnsupportedAlgorithm as exc:
            raise CryptoUnavailable("Ed25519 signing is not supported by the installed cryptography backend") from exc
        return KeyPair(private_key=private_key, public_key=private_key.public_key(), created_at=utc_now())

    def _serialize(self, keypair: KeyPair) -> str:
        if not self._passphrase:
            logger.warning("No key passphrase configured; private key is stored unencrypted")
        document = {
            "alg": KEY_ALGORITHM,
            "public_key": b64_encode(keypair.public_bytes()),
            "private_key": seal_private_key(keypair.private_bytes(), self._passphrase),
            "created_at": keypair.created_at.isoformat(),
        }
        return json.dumps(document, sort_keys=True, separators=(",", ":"))

    def _deserialize(self, stored: str) -> KeyPair:
        try:
            document = json.loads(stored)
            if document.get("alg") != KEY_ALGORITHM:
                raise KeyUnsealFailed(f"unsupported key algorithm {document.get('alg')!r}")
            raw_private = unseal_private_key(document["private_key"], self._passphrase)
            expected_public = b64_decode(document["public_key"])
            created_at = datetime.fromisoformat(document["created_at"])
        except (ValueError, KeyError, TypeError) as exc:
            raise KeyUnsealFailed("stored signing key document is corrupt") from exc

        try:
            private_key = Ed25519PrivateKey.from_private_bytes(raw_private)
        except UnsupportedAlgorithm as exc:
            raise CryptoUnavailable("Ed25519 signing is not supported by the installed cryptography backend") from exc
        except ValueError as exc:
            raise KeyUnsealFailed("stored private key has the wrong length") from exc

        keypair = KeyPair(private_key=private_key, public_key=private_key.public_key(), created_at=created_at)
        if keypair.public_bytes() != expected_public:
            raise KeyUnsealFailed("stored public key does not match the private key")
        return keypair
