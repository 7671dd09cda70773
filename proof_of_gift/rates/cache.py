"""Cached satoshi exchange rate with oracle refresh and fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from ..config import GiftConfig
from ..errors import RateUnavailable
from ..utils.time import seconds_since, utc_now
from .oracles import RateOracle
from .types import ExchangeRate, RateSource

logger = logging.getLogger(__name__)


class RateCache:
    """Holds the last known rate; refreshes it from the oracle when absent, zero, stale or forced.

    Readers may observe a stale rate. When the oracle fails the cache answers
    with the stored rate while it is younger than ``rate_grace_seconds``, then
    with ``fallback_rate`` if one is configured.
    """

    def __init__(
        self,
        oracle: RateOracle,
        config: GiftConfig | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.oracle = oracle
        self.config = config or GiftConfig()
        self._clock = clock
        self._rate: Optional[ExchangeRate] = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[ExchangeRate]:
        return self._rate

    def prime(self, rate: float, updated_at: Optional[datetime] = None) -> None:
        """Seed the cache with a previously stored rate."""
        self._rate = ExchangeRate(rate=rate, updated_at=updated_at or self._clock(), source=RateSource.STORED)

    def _age_seconds(self, rate: ExchangeRate) -> float:
        return seconds_since(rate.updated_at, self._clock())

    def _is_fresh(self, rate: Optional[ExchangeRate]) -> bool:
        return rate is not None and rate.rate > 0 and self._age_seconds(rate) <= self.config.rate_max_age_seconds

    async def get_rate(self, force_refresh: bool = False) -> ExchangeRate:
        if self.config.manual_rate is not None:
            return ExchangeRate(rate=self.config.manual_rate, updated_at=self._clock(), source=RateSource.MANUAL)

        if not force_refresh and self._is_fresh(self._rate):
            assert self._rate is not None
            return self._rate

        async with self._lock:
            if not force_refresh and self._is_fresh(self._rate):
                assert self._rate is not None
                return self._rate
            return await self._refresh()

    async def _refresh(self) -> ExchangeRate:
        currency = self.config.currency
        try:
            value = await self.oracle.fetch_rate(currency)
            if value <= 0:
                raise RateUnavailable(f"oracle returned a non-positive rate {value!r}")
        except RateUnavailable as exc:
            return self._fallback(exc)

        self._rate = ExchangeRate(rate=value, updated_at=self._clock(), source=RateSource.ORACLE)
        logger.info("Exchange rate refreshed: 1 satoshi = %s %s", value, currency)
        return self._rate

    def _fallback(self, exc: RateUnavailable) -> ExchangeRate:
        stored = self._rate
        if stored is not None and stored.rate > 0 and self._age_seconds(stored) < self.config.rate_grace_seconds:
            logger.warning(
                "Exchange rate refresh failed (%s); using stored rate from %.0fs ago",
                exc,
                self._age_seconds(stored),
            )
            return replace(stored, source=RateSource.STORED)

        if self.config.fallback_rate is not None:
            logger.warning(
                "Exchange rate refresh failed (%s); using configured FALLBACK rate %s",
                exc,
                self.config.fallback_rate,
            )
            return ExchangeRate(rate=self.config.fallback_rate, updated_at=self._clock(), source=RateSource.FALLBACK)

        logger.error("Exchange rate unavailable and no recent stored or fallback rate: %s", exc)
        raise RateUnavailable("exchange rate unavailable") from exc
