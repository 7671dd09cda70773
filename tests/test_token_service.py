import asyncio
from decimal import Decimal

import pytest

from proof_of_gift import (
    AlreadyRedeemed,
    GiftConfig,
    InvalidAmount,
    InvalidToken,
    OperationalMode,
    SettlementIncomplete,
    TokenService,
    TokenStatus,
)
from proof_of_gift.keys import InMemoryKeyStore, KeyManager
from proof_of_gift.ledger import InMemoryLedger
from proof_of_gift.rates import RateCache, StaticRateOracle
from proof_of_gift.utils.encoding import b64url_encode


def make_service(mode: OperationalMode = OperationalMode.STORE_CURRENCY, rate: float = 0.0005, **overrides) -> TokenService:
    config = GiftConfig(max_amount=overrides.pop("max_amount", 1_000), operational_mode=mode, **overrides)
    return TokenService(
        key_manager=KeyManager(InMemoryKeyStore()),
        ledger=InMemoryLedger(),
        config=config,
        rate_cache=RateCache(StaticRateOracle(rate), config),
    )


def test_verify_state_machine() -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(120)

        state = await service.verify_token(token)
        assert state.status is TokenStatus.VALID_UNREDEEMED
        assert state.valid is True
        assert state.amount == 120

        await service.redeem_token(token)
        redeemed = await service.verify_token(token)
        assert redeemed.status is TokenStatus.VALID_BUT_REDEEMED
        assert redeemed.valid is False
        assert redeemed.authentic is True
        assert redeemed.amount == 120

        unchecked = await service.verify_token(token, check_redemption=False)
        assert unchecked.status is TokenStatus.VALID_UNREDEEMED

        payload = redeemed.to_dict()
        assert payload["redeemed"] is True
        assert payload["amount"] == 120
        assert payload["nonce"] == token.split(".")[1]

    asyncio.run(run())


def test_malformed_and_forged_tokens_look_the_same() -> None:
    async def run() -> None:
        service = make_service(max_amount=50)
        token = await service.create_token(5)
        prefix, nonce_part, signature_part = token.split(".")
        forged = ".".join((prefix, b64url_encode(b"\x00" * 16), signature_part))

        for value in (forged, f"{prefix}.{nonce_part}", "POG.a.b.c", f"BAD.{nonce_part}.{signature_part}"):
            state = await service.verify_token(value)
            assert state.status is TokenStatus.INVALID
            assert state.reason == "invalid_token"
            assert state.amount is None
            with pytest.raises(InvalidToken):
                await service.redeem_token(value)

    asyncio.run(run())


def test_redeem_records_references_and_rejects_second_attempt() -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(40)

        record = await service.redeem_token(token, order_reference="order-1", actor_reference="user-9")
        assert record.amount == 40
        assert await service.is_token_redeemed(token) is True
        stored = await service.get_redemption_data(token)
        assert stored is not None
        assert stored.order_reference == "order-1"
        assert stored.actor_reference == "user-9"

        with pytest.raises(AlreadyRedeemed):
            await service.redeem_token(token, order_reference="order-2")

    asyncio.run(run())


def test_concurrent_redemption_has_exactly_one_winner() -> None:
    async def run() -> None:
        service = make_service(max_amount=200)
        token = await service.create_token(150)
        results = await asyncio.gather(*(service.redeem_token(token, order_reference=f"o{n}") for n in range(5)), return_exceptions=True)
        successes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(isinstance(f, AlreadyRedeemed) for f in failures)

    asyncio.run(run())


def test_alternate_base64_spelling_cannot_be_redeemed_twice() -> None:
    async def run() -> None:
        service = make_service(max_amount=100)
        token = await service.create_token(60)
        prefix, nonce_part, signature_part = token.split(".")
        alphabet = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"
        last = alphabet.index(nonce_part[-1])
        variant = f"{prefix}.{nonce_part[:-1]}{alphabet[last + 1]}.{signature_part}"
        assert variant != token

        await service.redeem_token(token)
        assert await service.is_token_redeemed(variant) is True
        with pytest.raises(AlreadyRedeemed):
            await service.redeem_token(variant)

    asyncio.run(run())


def test_batch_creates_independent_tokens() -> None:
    async def run() -> None:
        service = make_service(max_amount=100)
        tokens = await service.create_tokens_batch(25, 4)
        assert len(set(tokens)) == 4
        for token in tokens:
            assert (await service.verify_token(token)).amount == 25

        with pytest.raises(ValueError):
            await service.create_tokens_batch(25, 0)
        with pytest.raises(InvalidAmount):
            await service.create_tokens_batch(101, 2)

    asyncio.run(run())


def test_change_issued_for_excess_store_currency() -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(500)

        settlement = await service.apply_tokens([token], amount_owed=300, order_reference="order-1")

        assert settlement.total_applied == Decimal(500)
        assert settlement.change_amount == 200
        assert len(settlement.change_tokens) == 1
        assert settlement.funded_by == [token]
        assert await service.is_token_redeemed(token) is True

        change_state = await service.verify_token(settlement.change_token)
        assert change_state.valid is True
        assert change_state.amount == 200
        await service.redeem_token(settlement.change_token)

        replay = await service.apply_tokens([token], amount_owed=300)
        assert replay.redemptions == []
        assert [r.reason for r in replay.rejected] == ["already_redeemed"]
        assert replay.change_tokens == []
        assert replay.remaining_due == Decimal(300)

    asyncio.run(run())


def test_no_change_when_tokens_do_not_exceed_owed() -> None:
    async def run() -> None:
        service = make_service()
        tokens = [await service.create_token(100), await service.create_token(200)]
        settlement = await service.apply_tokens(tokens, amount_owed=300)
        assert settlement.total_applied == Decimal(300)
        assert settlement.change_amount == 0
        assert settlement.change_token is None
        assert settlement.funded_by == []

    asyncio.run(run())


def test_invalid_tokens_are_reported_not_counted() -> None:
    async def run() -> None:
        service = make_service()
        good = await service.create_token(50)
        settlement = await service.apply_tokens([good, "POG.bogus", good], amount_owed=20)
        assert [r.reason for r in settlement.rejected] == ["invalid_token", "already_redeemed"]
        assert settlement.total_applied == Decimal(50)
        assert settlement.change_amount == 30

    asyncio.run(run())


def test_fractional_store_currency_change_is_floored() -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(10)
        settlement = await service.apply_tokens([token], amount_owed="7.25")
        assert settlement.change_amount == 2

    asyncio.run(run())


def test_satoshi_conversion_change_is_returned_in_satoshis() -> None:
    async def run() -> None:
        service = make_service(OperationalMode.SATOSHI_CONVERSION, rate=0.0005, max_amount=5_000)
        token = await service.create_token(3_000)  # 1.5 currency units

        settlement = await service.apply_tokens([token], amount_owed=1)

        assert settlement.rate is not None
        assert settlement.total_applied == Decimal("1.5")
        assert settlement.change_amount == 1_000
        change_state = await service.verify_token(settlement.change_token)
        assert change_state.amount == 1_000

    asyncio.run(run())


def test_direct_satoshi_compares_in_satoshis() -> None:
    async def run() -> None:
        service = make_service(OperationalMode.DIRECT_SATOSHI, max_amount=5_000)
        token = await service.create_token(4_000)
        settlement = await service.apply_tokens([token], amount_owed=2_500)
        assert settlement.rate is None
        assert settlement.change_amount == 1_500

    asyncio.run(run())


def test_change_above_maximum_is_split() -> None:
    async def run() -> None:
        service = make_service(max_amount=100)
        tokens = [await service.create_token(100) for _ in range(3)]
        settlement = await service.apply_tokens(tokens, amount_owed=50)
        assert settlement.change_amount == 250
        amounts = [(await service.verify_token(t)).amount for t in settlement.change_tokens]
        assert amounts == [100, 100, 50]

    asyncio.run(run())


def test_conversion_uses_cached_rate() -> None:
    async def run() -> None:
        service = make_service(OperationalMode.SATOSHI_CONVERSION, rate=0.0005)
        assert service.get_operational_mode() is OperationalMode.SATOSHI_CONVERSION
        assert await service.convert_satoshis_to_currency(1000) == 0.5
        assert await service.convert_currency_to_satoshis(0.5) == 1000
        # Floor rounding: 0.50049 currency units is still 1000 satoshis.
        assert await service.convert_currency_to_satoshis(0.50049) == 1000

    asyncio.run(run())


def test_zero_manual_rate_cannot_burn_tokens() -> None:
    with pytest.raises(ValueError):
        make_service(OperationalMode.SATOSHI_CONVERSION, manual_rate=0.0)


def test_negative_amount_owed_is_rejected_before_redeeming() -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(10)
        with pytest.raises(InvalidAmount):
            await service.apply_tokens([token], amount_owed=-500)
        assert await service.is_token_redeemed(token) is False

    asyncio.run(run())


def test_failed_change_minting_reports_partial_settlement(monkeypatch) -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(50)

        async def broken_mint(amount: int) -> str:
            raise RuntimeError("signing backend down")

        monkeypatch.setattr(service, "generate_change_token", broken_mint)
        with pytest.raises(SettlementIncomplete) as info:
            await service.apply_tokens([token], amount_owed=10, order_reference="order-7")

        partial = info.value.settlement
        assert [record.token for record in partial.redemptions] == [token]
        assert partial.order_reference == "order-7"
        assert partial.change_amount == 40
        assert partial.change_tokens == []
        assert isinstance(info.value.__cause__, RuntimeError)

    asyncio.run(run())


def test_ledger_failure_before_any_redemption_propagates(monkeypatch) -> None:
    async def run() -> None:
        service = make_service()
        token = await service.create_token(50)

        async def broken_redeem(*args, **kwargs):
            raise ConnectionError("ledger unreachable")

        monkeypatch.setattr(service.ledger, "try_redeem", broken_redeem)
        with pytest.raises(ConnectionError):
            await service.apply_tokens([token], amount_owed=10)

    asyncio.run(run())


def test_unknown_mode_rejected_by_config() -> None:
    with pytest.raises(ValueError):
        GiftConfig(operational_mode="bitcoin_maybe")
    assert GiftConfig(operational_mode="direct_satoshi").operational_mode is OperationalMode.DIRECT_SATOSHI
