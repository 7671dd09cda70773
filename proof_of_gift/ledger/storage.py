"""Storage adapters for the redemption ledger.

Redemption is a single insert guarded by a uniqueness constraint on the
token. A lost race surfaces as :class:`AlreadyRedeemed`; there is no separate
existence check before the insert.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

import asyncpg

from ..config import database_dsn
from ..errors import AlreadyRedeemed
from ..utils.encoding import short_token
from ..utils.time import utc_now
from .types import RedemptionRecord

logger = logging.getLogger(__name__)

CREATE_REDEMPTIONS_SQL = """
CREATE TABLE IF NOT EXISTS gift_redemptions (
    id BIGSERIAL PRIMARY KEY,
    token TEXT NOT NULL,
    amount BIGINT NOT NULL,
    redeemed_at TIMESTAMPTZ NOT NULL,
    order_reference TEXT,
    actor_reference TEXT,
    CONSTRAINT gift_redemptions_token_key UNIQUE (token)
)
"""

INSERT_REDEMPTION_SQL = """
INSERT INTO gift_redemptions (token, amount, redeemed_at, order_reference, actor_reference)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (token) DO NOTHING
RETURNING token, amount, redeemed_at, order_reference, actor_reference
"""


class RedemptionLedger(ABC):
    """Durable store of redeemed tokens with an at-most-once guarantee."""

    @abstractmethod
    async def is_redeemed(self, token: str) -> bool:
        """Return True if a redemption record exists for the token."""

    @abstractmethod
    async def try_redeem(
        self,
        token: str,
        amount: int,
        order_reference: Optional[str] = None,
        actor_reference: Optional[str] = None,
    ) -> RedemptionRecord:
        """Atomically insert a redemption record, raising AlreadyRedeemed if one exists."""

    @abstractmethod
    async def get_record(self, token: str) -> Optional[RedemptionRecord]:
        """Fetch the redemption record for a token."""

    async def close(self) -> None:
        """Close ledger resources if needed."""


class InMemoryLedger(RedemptionLedger):
    """In-memory ledger; the insert is guarded by a lock so threads cannot interleave it."""

    def __init__(self) -> None:
        self.records: dict[str, RedemptionRecord] = {}
        self._lock = threading.Lock()

    async def is_redeemed(self, token: str) -> bool:
        return token in self.records

    async def try_redeem(
        self,
        token: str,
        amount: int,
        order_reference: Optional[str] = None,
        actor_reference: Optional[str] = None,
    ) -> RedemptionRecord:
        record = RedemptionRecord(
            token=token,
            amount=amount,
            redeemed_at=utc_now(),
            order_reference=order_reference,
            actor_reference=actor_reference,
        )
        with self._lock:
            if token in self.records:
                raise AlreadyRedeemed(token)
            self.records[token] = record
        return record

    async def get_record(self, token: str) -> Optional[RedemptionRecord]:
        return self.records.get(token)


class PostgresLedger(RedemptionLedger):
    """Postgres-backed ledger using asyncpg and ``ON CONFLICT DO NOTHING``."""

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool: Optional[asyncpg.Pool] = None,
        min_size: int = 1,
        max_size: int = 10,
    ) -> None:
        self._dsn = dsn
        self._pool = pool
        self._min_size = min_size
        self._max_size = max_size

    async def connect(self) -> None:
        """Initialize a connection pool if one was not supplied."""
        if self._pool is not None:
            return
        if not self._dsn:
            raise ValueError("Either `dsn` or `pool` must be provided for PostgresLedger.")
        self._pool = await asyncpg.create_pool(dsn=self._dsn, min_size=self._min_size, max_size=self._max_size)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        await self.connect()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            await conn.execute(CREATE_REDEMPTIONS_SQL)

    async def is_redeemed(self, token: str) -> bool:
        await self.connect()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT 1 FROM gift_redemptions WHERE token=$1", token)
            return row is not None

    async def try_redeem(
        self,
        token: str,
        amount: int,
        order_reference: Optional[str] = None,
        actor_reference: Optional[str] = None,
    ) -> RedemptionRecord:
        await self.connect()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                INSERT_REDEMPTION_SQL,
                token,
                amount,
                utc_now(),
                order_reference,
                actor_reference,
            )
        if row is None:
            logger.info("Redemption conflict for token %s", short_token(token))
            raise AlreadyRedeemed(token)
        return _record_from_row(row)

    async def get_record(self, token: str) -> Optional[RedemptionRecord]:
        await self.connect()
        assert self._pool is not None
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT token, amount, redeemed_at, order_reference, actor_reference
                FROM gift_redemptions WHERE token=$1
                """,
                token,
            )
        return _record_from_row(row) if row else None


def _record_from_row(row: asyncpg.Record) -> RedemptionRecord:
    return RedemptionRecord(
        token=row["token"],
        amount=int(row["amount"]),
        redeemed_at=row["redeemed_at"],
        order_reference=row["order_reference"],
        actor_reference=row["actor_reference"],
    )


def create_ledger_from_env() -> RedemptionLedger:
    """Create Postgres ledger if env configured, otherwise in-memory."""
    dsn = database_dsn()
    if dsn:
        return PostgresLedger(dsn=dsn)
    return InMemoryLedger()
