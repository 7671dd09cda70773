"""Command line entry point for issuing, checking and redeeming gift tokens."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional, Sequence

from .errors import GiftTokenError
from .service import TokenService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="proof-of-gift", description="Issue and redeem Proof of Gift tokens.")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="mint new tokens")
    create.add_argument("amount", type=int)
    create.add_argument("--quantity", type=int, default=1)

    verify = sub.add_parser("verify", help="verify a token and recover its amount")
    verify.add_argument("token")
    verify.add_argument("--no-redemption-check", action="store_true")

    redeem = sub.add_parser("redeem", help="redeem a token once")
    redeem.add_argument("token")
    redeem.add_argument("--order", default=None)
    redeem.add_argument("--actor", default=None)

    rate = sub.add_parser("rate", help="show the satoshi exchange rate")
    rate.add_argument("--refresh", action="store_true")

    sub.add_parser("init-db", help="create Postgres tables when a DSN is configured")
    return parser


async def run(args: argparse.Namespace, service: TokenService) -> dict[str, Any]:
    if args.command == "create":
        tokens = await service.create_tokens_batch(args.amount, args.quantity)
        return {"amount": args.amount, "tokens": tokens}
    if args.command == "verify":
        state = await service.verify_token(args.token, check_redemption=not args.no_redemption_check)
        return state.to_dict()
    if args.command == "redeem":
        record = await service.redeem_token(args.token, order_reference=args.order, actor_reference=args.actor)
        return {"status": "redeemed", "record": record.to_dict()}
    if args.command == "rate":
        quote = await service.get_exchange_rate(force_refresh=args.refresh)
        return {
            "currency": service.config.currency,
            "rate": quote.rate,
            "source": quote.source.value,
            "updated_at": quote.updated_at.isoformat(),
        }
    if args.command == "init-db":
        created: list[str] = []
        for component in (service.ledger, service.key_manager.store):
            ensure_schema = getattr(component, "ensure_schema", None)
            if callable(ensure_schema):
                await ensure_schema()
                created.append(type(component).__name__)
        return {"status": "ok", "initialized": created}
    raise ValueError(f"unknown command {args.command!r}")


async def _main(args: argparse.Namespace) -> int:
    service = TokenService.from_env()
    try:
        result = await run(args, service)
    except (GiftTokenError, ValueError) as exc:
        print(json.dumps({"status": "error", "error": type(exc).__name__, "message": str(exc)}))
        return 1
    finally:
        await service.close()
    print(json.dumps(result, indent=2, default=str))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return asyncio.run(_main(args))


if __name__ == "__main__":
    raise SystemExit(main())
