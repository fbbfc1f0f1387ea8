"""Repository abstractions for ledger persistence."""

from .confidential_repository import ConfidentialRepository
from .event_repository import EventRepository
from .market_repository import MarketRepository
from .token_repository import TokenRepository

__all__ = [
    "ConfidentialRepository",
    "EventRepository",
    "MarketRepository",
    "TokenRepository",
]
