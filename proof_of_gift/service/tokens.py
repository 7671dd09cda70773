"""Token service: creation, verification, redemption, conversion and change issuance."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Iterable, Optional

from ..config import GiftConfig, OperationalMode
from ..crypto.engine import CryptoEngine
from ..crypto.types import Token
from ..errors import AlreadyRedeemed, InvalidAmount, InvalidToken, MalformedToken, SettlementIncomplete
from ..keys.manager import KeyManager
from ..keys.storage import create_key_store_from_env
from ..ledger.storage import RedemptionLedger, create_ledger_from_env
from ..ledger.types import RedemptionRecord
from ..rates.cache import RateCache
from ..rates.oracles import create_rate_oracle_from_env
from ..rates.types import ExchangeRate
from ..utils.encoding import short_token
from .conversion import Number, currency_to_satoshis, floor_units, satoshis_to_currency, to_decimal
from .types import RejectedToken, Settlement, TokenState, TokenStatus

logger = logging.getLogger(__name__)


class TokenService:
    """Orchestrates the crypto engine, the redemption ledger and the rate cache."""

    def __init__(
        self,
        *,
        key_manager: KeyManager,
        ledger: RedemptionLedger,
        config: GiftConfig | None = None,
        rate_cache: RateCache | None = None,
    ) -> None:
        self.key_manager = key_manager
        self.ledger = ledger
        self.config = config or GiftConfig()
        self.rate_cache = rate_cache
        self._engine: Optional[CryptoEngine] = None

    @classmethod
    def from_env(cls, config: GiftConfig | None = None) -> "TokenService":
        config = config or GiftConfig.from_env()
        return cls(
            key_manager=KeyManager(create_key_store_from_env(), passphrase=config.key_passphrase),
            ledger=create_ledger_from_env(),
            config=config,
            rate_cache=RateCache(create_rate_oracle_from_env(), config),
        )

    async def engine(self) -> CryptoEngine:
        if self._engine is None:
            keypair = await self.key_manager.get_or_create_keypair()
            self._engine = CryptoEngine(keypair, self.config)
        return self._engine

    async def close(self) -> None:
        if self._engine is not None:
            self._engine.close()
        await self.ledger.close()
        await self.key_manager.store.close()

    # -- creation -----------------------------------------------------------

    async def create_token(self, amount: int) -> str:
        engine = await self.engine()
        return engine.create_token(amount).serialize()

    async def create_tokens_batch(self, amount: int, quantity: int) -> list[str]:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError("quantity must be a positive integer")
        engine = await self.engine()
        engine.validate_amount(amount)
        return [engine.create_token(amount).serialize() for _ in range(quantity)]

    async def generate_change_token(self, amount: int) -> str:
        token = await self.create_token(amount)
        logger.info("Issued change token %s for %s", short_token(token), amount)
        return token

    # -- verification and redemption ----------------------------------------

    async def verify_token(self, token: str, check_redemption: bool = True) -> TokenState:
        engine = await self.engine()
        try:
            verified = await asyncio.to_thread(engine.verify_token, token)
        except InvalidToken as exc:
            logger.debug("Token rejected (%s): %s", type(exc).__name__, exc)
            return TokenState(status=TokenStatus.INVALID, token=token if isinstance(token, str) else "", reason=InvalidToken.reason)

        if check_redemption and await self.ledger.is_redeemed(verified.token):
            return TokenState(
                status=TokenStatus.VALID_BUT_REDEEMED,
                token=verified.token,
                amount=verified.amount,
                nonce=verified.nonce,
                reason=AlreadyRedeemed.reason,
            )
        return TokenState(
            status=TokenStatus.VALID_UNREDEEMED,
            token=verified.token,
            amount=verified.amount,
            nonce=verified.nonce,
        )

    async def redeem_token(
        self,
        token: str,
        order_reference: Optional[str] = None,
        actor_reference: Optional[str] = None,
    ) -> RedemptionRecord:
        state = await self.verify_token(token)
        if state.status is TokenStatus.INVALID:
            raise InvalidToken("invalid token")
        if state.status is TokenStatus.VALID_BUT_REDEEMED:
            raise AlreadyRedeemed(state.token)

        assert state.amount is not None
        record = await self.ledger.try_redeem(state.token, state.amount, order_reference, actor_reference)
        logger.info("Redeemed token %s for %s (order=%s)", short_token(record.token), record.amount, order_reference)
        return record

    def _ledger_key(self, token: str) -> str:
        try:
            return Token.parse(token, prefix=self.config.token_prefix).serialize()
        except MalformedToken:
            return token

    async def is_token_redeemed(self, token: str) -> bool:
        return await self.ledger.is_redeemed(self._ledger_key(token))

    async def get_redemption_data(self, token: str) -> Optional[RedemptionRecord]:
        return await self.ledger.get_record(self._ledger_key(token))

    # -- conversion -----------------------------------------------------------

    def get_operational_mode(self) -> OperationalMode:
        return self.config.operational_mode

    async def get_exchange_rate(self, force_refresh: bool = False) -> ExchangeRate:
        if self.rate_cache is None:
            raise RuntimeError("TokenService was created without a rate cache")
        return await self.rate_cache.get_rate(force_refresh=force_refresh)

    async def convert_satoshis_to_currency(self, satoshis: Number, force_refresh: bool = False) -> float:
        rate = await self.get_exchange_rate(force_refresh)
        return float(satoshis_to_currency(satoshis, rate.rate))

    async def convert_currency_to_satoshis(self, amount: Number, force_refresh: bool = False) -> int:
        rate = await self.get_exchange_rate(force_refresh)
        return currency_to_satoshis(amount, rate.rate)

    # -- settlement -------------------------------------------------------------

    async def apply_tokens(
        self,
        tokens: Iterable[str],
        amount_owed: Number,
        order_reference: Optional[str] = None,
        actor_reference: Optional[str] = None,
    ) -> Settlement:
        """Redeem ``tokens`` against ``amount_owed`` and mint change for any excess.

        ``amount_owed`` is in store currency, except in direct satoshi mode
        where it is in satoshis. Tokens that fail to redeem are listed in
        ``Settlement.rejected`` and contribute nothing. If anything else fails
        once a token has been redeemed, :class:`SettlementIncomplete` carries
        the partial settlement so the caller can reconcile it.
        """
        owed = to_decimal(amount_owed)
        if owed < 0:
            raise InvalidAmount("amount owed must not be negative")

        mode = self.get_operational_mode()
        settlement = Settlement(mode=mode, amount_owed=owed, order_reference=order_reference)
        if mode is OperationalMode.SATOSHI_CONVERSION:
            settlement.rate = await self.get_exchange_rate(force_refresh=True)

        try:
            await self._redeem_into(settlement, tokens, actor_reference)
            excess = settlement.total_applied - settlement.amount_owed
            if excess > 0:
                settlement.change_amount = self._change_units(excess, mode, settlement.rate)
                for part in self._split_change(settlement.change_amount):
                    settlement.change_tokens.append(await self.generate_change_token(part))
        except Exception as exc:
            if not settlement.redemptions:
                raise
            logger.error(
                "Settlement for order %s failed after redeeming %s: %s",
                order_reference,
                [short_token(record.token) for record in settlement.redemptions],
                exc,
            )
            raise SettlementIncomplete(settlement) from exc
        return settlement

    async def _redeem_into(self, settlement: Settlement, tokens: Iterable[str], actor_reference: Optional[str]) -> None:
        for token in tokens:
            try:
                record = await self.redeem_token(token, settlement.order_reference, actor_reference)
            except (InvalidToken, AlreadyRedeemed) as exc:
                logger.info("Token %s not applied: %s", short_token(str(token)), exc.reason)
                settlement.rejected.append(RejectedToken(token=token, reason=exc.reason))
                continue
            settlement.redemptions.append(record)
            settlement.total_applied += self._applied_value(record.amount, settlement.mode, settlement.rate)

    @staticmethod
    def _applied_value(amount: int, mode: OperationalMode, rate: Optional[ExchangeRate]) -> Decimal:
        if mode is OperationalMode.STORE_CURRENCY or mode is OperationalMode.DIRECT_SATOSHI:
            return Decimal(amount)
        if mode is OperationalMode.SATOSHI_CONVERSION:
            assert rate is not None
            return satoshis_to_currency(amount, rate.rate)
        raise ValueError(f"unhandled operational mode {mode!r}")

    @staticmethod
    def _change_units(excess: Decimal, mode: OperationalMode, rate: Optional[ExchangeRate]) -> int:
        if mode is OperationalMode.STORE_CURRENCY or mode is OperationalMode.DIRECT_SATOSHI:
            return floor_units(excess)
        if mode is OperationalMode.SATOSHI_CONVERSION:
            assert rate is not None
            return currency_to_satoshis(excess, rate.rate)
        raise ValueError(f"unhandled operational mode {mode!r}")

    def _split_change(self, amount: int) -> list[int]:
        parts: list[int] = []
        while amount > 0:
            part = min(amount, self.config.max_amount)
            parts.append(part)
            amount -= part
        return parts
