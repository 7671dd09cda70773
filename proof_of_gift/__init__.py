"""Proof of Gift package.

Bearer gift tokens that carry a signed monetary value, verifiable with only
the public key, plus a ledger that lets each token be redeemed once.
"""

from .config import GiftConfig, OperationalMode
from .errors import (
    AlreadyRedeemed,
    CryptoUnavailable,
    CryptoVerificationFailed,
    GiftTokenError,
    InvalidAmount,
    InvalidToken,
    KeyUnsealFailed,
    MalformedToken,
    RateUnavailable,
    SettlementIncomplete,
)
from .service import Settlement, TokenService, TokenState, TokenStatus

__all__ = [
    "GiftConfig",
    "OperationalMode",
    "TokenService",
    "TokenState",
    "TokenStatus",
    "Settlement",
    "GiftTokenError",
    "InvalidAmount",
    "InvalidToken",
    "MalformedToken",
    "CryptoVerificationFailed",
    "AlreadyRedeemed",
    "CryptoUnavailable",
    "KeyUnsealFailed",
    "RateUnavailable",
    "SettlementIncomplete",
]
