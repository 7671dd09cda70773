"""Rate oracle adapters returning currency units per satoshi."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence
from urllib import error, parse, request

from ..config import SATOSHIS_PER_BTC
from ..errors import RateUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = "proof-of-gift/0.1"


def _http_get_json(url: str, headers: dict[str, str], timeout: float) -> Any:
    req = request.Request(
        url=url,
        headers={"Accept": "application/json", "User-Agent": USER_AGENT, **headers},
        method="GET",
    )
    with request.urlopen(req, timeout=timeout) as resp:
        body = resp.read().decode("utf-8")
    return json.loads(body)


class RateOracle(ABC):
    """External price source for satoshi to currency conversion."""

    name = "oracle"

    @abstractmethod
    async def fetch_rate(self, currency: str) -> float:
        """Return currency units per satoshi, or raise RateUnavailable."""


class StaticRateOracle(RateOracle):
    """Always answers with the same rate."""

    name = "static"

    def __init__(self, rate: float) -> None:
        self.rate = rate

    async def fetch_rate(self, currency: str) -> float:
        return self.rate


class CoinGeckoRateOracle(RateOracle):
    """BTC spot price from the CoinGecko simple price API."""

    name = "coingecko"

    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 15.0,
        rate_limit_cooldown: float = 60 * 60,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.rate_limit_cooldown = rate_limit_cooldown
        self._cooldown_until = 0.0

    async def fetch_rate(self, currency: str) -> float:
        if time.monotonic() < self._cooldown_until:
            raise RateUnavailable("CoinGecko requests paused after rate limiting")

        code = currency.lower()
        query = parse.urlencode({"ids": "bitcoin", "vs_currencies": code})
        url = f"{self.base_url}/simple/price?{query}"
        try:
            data = await asyncio.to_thread(_http_get_json, url, {}, self.timeout)
        except error.HTTPError as exc:
            if exc.code == 429:
                self._cooldown_until = time.monotonic() + self.rate_limit_cooldown
                logger.warning("CoinGecko rate limited (429); pausing requests for %.0fs", self.rate_limit_cooldown)
            raise RateUnavailable(f"CoinGecko request failed with HTTP {exc.code}") from exc
        except (error.URLError, TimeoutError, ValueError) as exc:
            raise RateUnavailable(f"CoinGecko request failed: {exc}") from exc

        try:
            btc_price = float(data["bitcoin"][code])
        except (KeyError, TypeError, ValueError) as exc:
            raise RateUnavailable("CoinGecko response did not contain the expected price") from exc
        return btc_price / SATOSHIS_PER_BTC


class BTCPayRateOracle(RateOracle):
    """Store rate from a BTCPay Server Greenfield API."""

    name = "btcpay"

    def __init__(self, *, server_url: str, api_key: str, store_id: str, timeout: float = 15.0) -> None:
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.store_id = store_id
        self.timeout = timeout

    async def fetch_rate(self, currency: str) -> float:
        pair = f"BTC_{currency.upper()}"
        query = parse.urlencode({"currencyPair": pair})
        url = f"{self.server_url}/api/v1/stores/{parse.quote(self.store_id)}/rates?{query}"
        headers = {"Authorization": f"token {self.api_key}"}
        try:
            data = await asyncio.to_thread(_http_get_json, url, headers, self.timeout)
        except error.HTTPError as exc:
            raise RateUnavailable(f"BTCPay request failed with HTTP {exc.code}") from exc
        except (error.URLError, TimeoutError, ValueError) as exc:
            raise RateUnavailable(f"BTCPay request failed: {exc}") from exc

        for entry in data if isinstance(data, list) else []:
            if isinstance(entry, dict) and entry.get("currencyPair") == pair:
                try:
                    return float(entry["rate"]) / SATOSHIS_PER_BTC
                except (KeyError, TypeError, ValueError) as exc:
                    raise RateUnavailable(f"BTCPay returned an unreadable rate for {pair}") from exc
        raise RateUnavailable(f"BTCPay response did not contain {pair}")


class ChainedRateOracle(RateOracle):
    """Ask each oracle in order and return the first rate obtained."""

    name = "chained"

    def __init__(self, oracles: Sequence[RateOracle]) -> None:
        if not oracles:
            raise ValueError("ChainedRateOracle needs at least one oracle")
        self.oracles = list(oracles)

    async def fetch_rate(self, currency: str) -> float:
        failures: list[str] = []
        for oracle in self.oracles:
            try:
                rate = await oracle.fetch_rate(currency)
            except RateUnavailable as exc:
                failures.append(f"{oracle.name}: {exc}")
                continue
            logger.info("Retrieved exchange rate from %s", oracle.name)
            return rate
        raise RateUnavailable("; ".join(failures))


def create_rate_oracle_from_env() -> RateOracle:
    """BTCPay first when fully configured, CoinGecko always as the last resort."""
    oracles: list[RateOracle] = []
    server_url: Optional[str] = os.getenv("POG_BTCPAY_URL")
    api_key = os.getenv("POG_BTCPAY_API_KEY")
    store_id = os.getenv("POG_BTCPAY_STORE_ID")
    if server_url and api_key and store_id:
        oracles.append(BTCPayRateOracle(server_url=server_url, api_key=api_key, store_id=store_id))
    oracles.append(CoinGeckoRateOracle())
    return oracles[0] if len(oracles) == 1 else ChainedRateOracle(oracles)
