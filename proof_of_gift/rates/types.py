"""Exchange rate datatypes."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RateSource(str, Enum):
    """Where a quoted exchange rate came from."""

    ORACLE = "oracle"
    STORED = "stored"
    MANUAL = "manual"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ExchangeRate:
    """Currency units per satoshi."""

    rate: float
    updated_at: datetime
    source: RateSource = RateSource.ORACLE

    @property
    def is_fallback(self) -> bool:
        return self.source is RateSource.FALLBACK
