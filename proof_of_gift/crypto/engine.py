"""Gift token signing and verification."""

from __future__ import annotations

import logging
import multiprocessing
import secrets
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from multiprocessing.managers import SyncManager
from typing import Optional

from ..config import GiftConfig
from ..errors import CryptoVerificationFailed, InvalidAmount, MalformedToken
from ..keys.types import KeyPair
from .scan import chunk_bounds, scan_range, scan_range_raw, signed_message
from .types import Token, VerifiedToken

logger = logging.getLogger(__name__)

SIGNATURE_BYTES = 64


class CryptoEngine:
    """Create and verify Ed25519 gift tokens that do not carry their amount.

    Verification recovers the amount by checking every candidate in
    ``[1, max_amount]`` against the signature. With ``scan_workers > 1`` the
    range is split into chunks scanned by a process pool.
    """

    def __init__(self, keypair: KeyPair, config: GiftConfig | None = None) -> None:
        self.keypair = keypair
        self.config = config or GiftConfig()
        self._executor: Optional[ProcessPoolExecutor] = None
        self._manager: Optional[SyncManager] = None
        self._pool_lock = threading.Lock()

    def validate_amount(self, amount: int) -> int:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidAmount("amount must be an integer")
        if amount <= 0:
            raise InvalidAmount("amount must be greater than zero")
        if amount > self.config.max_amount:
            raise InvalidAmount(f"amount must not exceed {self.config.max_amount}")
        return amount

    def create_token(self, amount: int) -> Token:
        amount = self.validate_amount(amount)
        nonce = secrets.token_bytes(self.config.nonce_bytes)
        signature = self.keypair.private_key.sign(signed_message(nonce, amount))
        return Token(prefix=self.config.token_prefix, nonce=nonce, signature=signature)

    def verify_token(self, token: str) -> VerifiedToken:
        parsed = Token.parse(token, prefix=self.config.token_prefix)
        if len(parsed.nonce) != self.config.nonce_bytes:
            raise MalformedToken(f"nonce must be {self.config.nonce_bytes} bytes, got {len(parsed.nonce)}")
        if len(parsed.signature) != SIGNATURE_BYTES:
            raise MalformedToken(f"signature must be {SIGNATURE_BYTES} bytes, got {len(parsed.signature)}")

        amount = self.recover_amount(parsed.nonce, parsed.signature)
        if amount is None:
            raise CryptoVerificationFailed("no amount in range verifies against the token signature")
        return VerifiedToken(token=parsed.serialize(), amount=amount, nonce=parsed.nonce)

    def recover_amount(self, nonce: bytes, signature: bytes) -> Optional[int]:
        if self.config.scan_workers <= 1:
            return scan_range(self.keypair.public_key, nonce, signature, 1, self.config.max_amount + 1)
        return self._parallel_recover(nonce, signature)

    def _pool(self) -> tuple[ProcessPoolExecutor, SyncManager]:
        # verify_token runs on several to_thread workers at once.
        with self._pool_lock:
            if self._executor is None or self._manager is None:
                self._manager = multiprocessing.Manager()
                self._executor = ProcessPoolExecutor(max_workers=self.config.scan_workers)
            return self._executor, self._manager

    def _parallel_recover(self, nonce: bytes, signature: bytes) -> Optional[int]:
        executor, manager = self._pool()
        halt = manager.Event()
        public_bytes = self.keypair.public_bytes()
        pending: set[Future] = {
            executor.submit(scan_range_raw, public_bytes, nonce, signature, start, stop, halt)
            for start, stop in chunk_bounds(self.config.max_amount, self.config.scan_workers * 4)
        }
        try:
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    found = future.result()
                    if found is not None:
                        return found
            return None
        finally:
            halt.set()
            for future in pending:
                future.cancel()

    def close(self) -> None:
        with self._pool_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None
            if self._manager is not None:
                self._manager.shutdown()
                self._manager = None
