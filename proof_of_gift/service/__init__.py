"""Token service orchestration."""

from .conversion import currency_to_satoshis, satoshis_to_currency
from .tokens import TokenService
from .types import RejectedToken, Settlement, TokenState, TokenStatus

__all__ = [
    "TokenService",
    "TokenState",
    "TokenStatus",
    "Settlement",
    "RejectedToken",
    "satoshis_to_currency",
    "currency_to_satoshis",
]
