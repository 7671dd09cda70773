"""Brute-force amount recovery.

The amount is not part of the serialized token, so a verifier tries every
candidate amount until one signature check passes. Functions here take raw
bytes so they can run in a worker process.
"""

from __future__ import annotations

import struct
from typing import Any, Iterator, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

_AMOUNT = struct.Struct(">I")

# Candidates checked between polls of the halt event.
HALT_CHECK_INTERVAL = 1024


def signed_message(nonce: bytes, amount: int) -> bytes:
    """Return ``nonce || be_uint32(amount)``."""
    return nonce + _AMOUNT.pack(amount)


def scan_range(
    public_key: Ed25519PublicKey,
    nonce: bytes,
    signature: bytes,
    start: int,
    stop: int,
    halt: Optional[Any] = None,
) -> Optional[int]:
    """Return the first amount in ``[start, stop)`` whose message verifies, or None.

    ``halt`` is any object with ``is_set()``; once it is set the scan gives up
    and returns None.
    """
    for candidate in range(start, stop):
        if halt is not None and (candidate - start) % HALT_CHECK_INTERVAL == 0 and halt.is_set():
            return None
        try:
            public_key.verify(signature, signed_message(nonce, candidate))
        except InvalidSignature:
            continue
        return candidate
    return None


def scan_range_raw(
    public_bytes: bytes,
    nonce: bytes,
    signature: bytes,
    start: int,
    stop: int,
    halt: Optional[Any] = None,
) -> Optional[int]:
    """Process-pool entry point for :func:`scan_range`."""
    public_key = Ed25519PublicKey.from_public_bytes(public_bytes)
    return scan_range(public_key, nonce, signature, start, stop, halt)


def chunk_bounds(max_amount: int, chunks: int) -> Iterator[tuple[int, int]]:
    """Split ``[1, max_amount]`` into ascending half-open ranges."""
    size = max(1, -(-max_amount // chunks))
    start = 1
    while start <= max_amount:
        stop = min(start + size, max_amount + 1)
        yield start, stop
        start = stop
