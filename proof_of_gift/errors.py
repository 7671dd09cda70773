"""Error taxonomy for gift token operations."""

from __future__ import annotations

from typing import Any


class GiftTokenError(Exception):
    """Base class for every error raised by proof_of_gift."""


class InvalidAmount(GiftTokenError, ValueError):
    """Amount is not an integer in ``[1, max_amount]``."""


class InvalidToken(GiftTokenError):
    """Token is not acceptable. Shown to end users as a single "invalid token" outcome."""

    reason = "invalid_token"


class MalformedToken(InvalidToken):
    """Token has the wrong structure, prefix or encoding."""


class CryptoVerificationFailed(InvalidToken):
    """No candidate amount produces a valid signature for the token."""


class AlreadyRedeemed(GiftTokenError):
    """The ledger already holds a redemption record for the token."""

    reason = "already_redeemed"

    def __init__(self, token: str) -> None:
        super().__init__("token has already been redeemed")
        self.token = token


class CryptoUnavailable(GiftTokenError, RuntimeError):
    """Ed25519 signing is not available in this runtime."""


class KeyUnsealFailed(GiftTokenError):
    """A stored private key could not be decoded or decrypted."""


class RateUnavailable(GiftTokenError):
    """No exchange rate could be fetched and no stored or fallback rate exists."""


class SettlementIncomplete(GiftTokenError):
    """Applying tokens failed after some of them were already redeemed.

    ``settlement`` holds the redemptions committed so far, the change amount
    owed and any change tokens minted before the failure.
    """

    reason = "settlement_incomplete"

    def __init__(self, settlement: Any) -> None:
        super().__init__(
            f"settlement stopped after {len(settlement.redemptions)} redemption(s); "
            f"{len(settlement.change_tokens)} change token(s) minted of {settlement.change_amount} owed"
        )
        self.settlement = settlement
