"""Satoshi exchange rate oracles and caching."""

from .cache import RateCache
from .oracles import (
    BTCPayRateOracle,
    ChainedRateOracle,
    CoinGeckoRateOracle,
    RateOracle,
    StaticRateOracle,
    create_rate_oracle_from_env,
)
from .types import ExchangeRate, RateSource

__all__ = [
    "RateCache",
    "RateOracle",
    "StaticRateOracle",
    "CoinGeckoRateOracle",
    "BTCPayRateOracle",
    "ChainedRateOracle",
    "create_rate_oracle_from_env",
    "ExchangeRate",
    "RateSource",
]
