"""Domain views representing ledger state outside a transaction."""

from .models import (
    LedgerEventRecord,
    MarketHandles,
    MarketView,
    ResolutionDecision,
    ResolutionOutcome,
    UnwrapReceipt,
    UserBetView,
)

__all__ = [
    "LedgerEventRecord",
    "MarketHandles",
    "MarketView",
    "ResolutionDecision",
    "ResolutionOutcome",
    "UnwrapReceipt",
    "UserBetView",
]
