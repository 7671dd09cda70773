"""Redemption ledger datatypes."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class RedemptionRecord:
    token: str
    amount: int
    redeemed_at: datetime
    order_reference: Optional[str] = None
    actor_reference: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["redeemed_at"] = self.redeemed_at.isoformat()
        return payload
