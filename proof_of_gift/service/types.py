"""Token service result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..config import OperationalMode
from ..ledger.types import RedemptionRecord
from ..rates.types import ExchangeRate
from ..utils.encoding import b64url_encode


class TokenStatus(str, Enum):
    """Terminal states of token verification."""

    INVALID = "invalid"
    VALID_UNREDEEMED = "valid_unredeemed"
    VALID_BUT_REDEEMED = "valid_but_redeemed"


@dataclass(frozen=True)
class TokenState:
    status: TokenStatus
    token: str
    amount: Optional[int] = None
    nonce: Optional[bytes] = None
    reason: str = "ok"

    @property
    def valid(self) -> bool:
        """True only for a genuine token that can still be redeemed."""
        return self.status is TokenStatus.VALID_UNREDEEMED

    @property
    def authentic(self) -> bool:
        return self.status is not TokenStatus.INVALID

    @property
    def redeemed(self) -> bool:
        return self.status is TokenStatus.VALID_BUT_REDEEMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "amount": self.amount,
            "redeemed": self.redeemed,
            "nonce": b64url_encode(self.nonce) if self.nonce is not None else None,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class RejectedToken:
    token: str
    reason: str


@dataclass
class Settlement:
    """Outcome of applying gift tokens against an amount owed."""

    mode: OperationalMode
    amount_owed: Decimal
    order_reference: Optional[str] = None
    total_applied: Decimal = Decimal(0)
    redemptions: list[RedemptionRecord] = field(default_factory=list)
    rejected: list[RejectedToken] = field(default_factory=list)
    change_amount: int = 0
    change_tokens: list[str] = field(default_factory=list)
    rate: Optional[ExchangeRate] = None

    @property
    def funded_by(self) -> list[str]:
        """Original tokens whose value funded the change."""
        return [record.token for record in self.redemptions] if self.change_tokens else []

    @property
    def change_token(self) -> Optional[str]:
        return self.change_tokens[0] if self.change_tokens else None

    @property
    def remaining_due(self) -> Decimal:
        return max(self.amount_owed - self.total_applied, Decimal(0))
