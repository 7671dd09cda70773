"""At-most-once redemption ledger."""

from .storage import InMemoryLedger, PostgresLedger, RedemptionLedger, create_ledger_from_env
from .types import RedemptionRecord

__all__ = ["RedemptionLedger", "RedemptionRecord", "InMemoryLedger", "PostgresLedger", "create_ledger_from_env"]
