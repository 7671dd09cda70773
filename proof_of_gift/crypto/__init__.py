"""Gift token creation and verification."""

from .engine import SIGNATURE_BYTES, CryptoEngine
from .scan import signed_message
from .types import Token, VerifiedToken

__all__ = ["CryptoEngine", "SIGNATURE_BYTES", "Token", "VerifiedToken", "signed_message"]
