"""Apply a gift token to an order, collect change, then try to spend the token again."""

from __future__ import annotations

import asyncio

from proof_of_gift import GiftConfig, TokenService
from proof_of_gift.keys import InMemoryKeyStore, KeyManager
from proof_of_gift.ledger import InMemoryLedger


async def main() -> None:
    config = GiftConfig(max_amount=1_000)
    service = TokenService(key_manager=KeyManager(InMemoryKeyStore()), ledger=InMemoryLedger(), config=config)
    try:
        token = await service.create_token(500)
        print("ISSUED:", token)

        settlement = await service.apply_tokens([token], amount_owed=300, order_reference="order-1")
        print("APPLIED:", settlement.total_applied, "OWED:", settlement.amount_owed)
        print("CHANGE:", settlement.change_amount, settlement.change_token)

        replay = await service.apply_tokens([token], amount_owed=300, order_reference="order-2")
        print("REPLAY REJECTED:", [rejected.reason for rejected in replay.rejected])

        change_state = await service.verify_token(settlement.change_token)
        print("CHANGE TOKEN:", change_state.to_dict())
    finally:
        await service.close()


if __name__ == "__main__":
    asyncio.run(main())
