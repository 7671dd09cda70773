"""Configuration for the gift token core."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

DEFAULT_TOKEN_PREFIX = "POG"
TOKEN_SEPARATOR = "."
MAX_AMOUNT = 1_000_000
NONCE_BYTES = 16
SATOSHIS_PER_BTC = 100_000_000


class OperationalMode(str, Enum):
    """How the integer amount carried by a token is interpreted."""

    STORE_CURRENCY = "store_currency"
    SATOSHI_CONVERSION = "satoshi_conversion"
    DIRECT_SATOSHI = "direct_satoshi"

    @property
    def mints_satoshis(self) -> bool:
        """True when newly minted tokens (including change) are denominated in satoshis."""
        return self in (OperationalMode.SATOSHI_CONVERSION, OperationalMode.DIRECT_SATOSHI)

    @classmethod
    def parse(cls, value: "str | OperationalMode") -> "OperationalMode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            expected = ", ".join(mode.value for mode in cls)
            raise ValueError(f"Unknown operational mode '{value}'. Expected one of: {expected}.") from None


@dataclass(frozen=True)
class GiftConfig:
    """Settings shared by the key manager, crypto engine and token service."""

    token_prefix: str = DEFAULT_TOKEN_PREFIX
    max_amount: int = MAX_AMOUNT
    nonce_bytes: int = NONCE_BYTES
    operational_mode: OperationalMode = OperationalMode.STORE_CURRENCY
    currency: str = "USD"
    manual_rate: Optional[float] = None
    fallback_rate: Optional[float] = None
    rate_max_age_seconds: int = 24 * 60 * 60
    rate_grace_seconds: int = 3 * 24 * 60 * 60
    scan_workers: int = 1
    key_passphrase: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "operational_mode", OperationalMode.parse(self.operational_mode))
        if not self.token_prefix or TOKEN_SEPARATOR in self.token_prefix:
            raise ValueError(f"token_prefix must be non-empty and must not contain '{TOKEN_SEPARATOR}'")
        if not 1 <= self.max_amount <= 0xFFFFFFFF:
            raise ValueError("max_amount must fit in an unsigned 32-bit integer")
        if self.nonce_bytes < 8:
            raise ValueError("nonce_bytes must be at least 8")
        if self.scan_workers < 1:
            raise ValueError("scan_workers must be at least 1")
        for name in ("manual_rate", "fallback_rate"):
            value = getattr(self, name)
            if value is not None and not value > 0:
                raise ValueError(f"{name} must be greater than zero when set")

    @classmethod
    def from_env(cls) -> "GiftConfig":
        """Build configuration from ``POG_*`` environment variables."""
        return cls(
            token_prefix=os.getenv("POG_TOKEN_PREFIX", DEFAULT_TOKEN_PREFIX),
            max_amount=int(os.getenv("POG_MAX_AMOUNT", str(MAX_AMOUNT))),
            nonce_bytes=int(os.getenv("POG_NONCE_BYTES", str(NONCE_BYTES))),
            operational_mode=OperationalMode.parse(os.getenv("POG_OPERATIONAL_MODE", "store_currency")),
            currency=os.getenv("POG_CURRENCY", "USD").upper(),
            manual_rate=_optional_float(os.getenv("POG_MANUAL_RATE")),
            fallback_rate=_optional_float(os.getenv("POG_FALLBACK_RATE")),
            rate_max_age_seconds=int(os.getenv("POG_RATE_MAX_AGE", str(24 * 60 * 60))),
            rate_grace_seconds=int(os.getenv("POG_RATE_GRACE", str(3 * 24 * 60 * 60))),
            scan_workers=int(os.getenv("POG_SCAN_WORKERS", "1")),
            key_passphrase=os.getenv("POG_KEY_PASSPHRASE") or None,
        )


def database_dsn() -> Optional[str]:
    """Return the configured Postgres DSN, if any."""
    return os.getenv("POG_PG_DSN") or os.getenv("DATABASE_URL")


def _optional_float(raw: Optional[str]) -> Optional[float]:
    if raw is None or not raw.strip():
        return None
    return float(raw)
