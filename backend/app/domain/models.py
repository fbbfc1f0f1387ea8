"""Typed projections handed to the orchestrator, the API and the indexer."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from app.models import MarketResult


class ResolutionOutcome(str, Enum):
    """Final decision produced by the resolution pipeline."""

    YES = "YES"
    NO = "NO"
    INVALID = "INVALID"

    @property
    def market_result(self) -> MarketResult:
        return MarketResult(self.value.lower())


@dataclass(slots=True)
class ResolutionDecision:
    """Hand-off from the resolution pipeline to the settlement orchestrator."""

    outcome: ResolutionOutcome
    confidence: float | None = None
    reasoning: str | None = None


@dataclass(slots=True)
class MarketView:
    """Public snapshot of a market; totals stay ``None`` until revealed."""

    market_id: int
    title: str
    metadata_uri: str
    voting_ends_at: int
    resolution_deadline: int
    status: str
    result: str
    bet_count: int
    decrypted_yes_total: int | None
    decrypted_no_total: int | None
    totals_decrypted: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class UserBetView:
    """Encrypted bet handles; only the bettor may decrypt them."""

    market_id: int
    user: str
    exists: bool
    vote_handle: str | None = None
    amount_handle: str | None = None
    payout_handle: str | None = None
    claimed: bool = False


@dataclass(slots=True)
class MarketHandles:
    market_id: int
    yes_total_handle: str
    no_total_handle: str

    def as_tuple(self) -> tuple[str, str]:
        return (self.yes_total_handle, self.no_total_handle)


@dataclass(slots=True)
class UnwrapReceipt:
    """Pending unwrap; both handles are publicly decryptable."""

    request_id: int
    owner: str
    recipient: str
    burnt_handle: str
    guard_handle: str
    status: str
    released_amount: int | None = None

    @property
    def handles(self) -> tuple[str, str]:
        return (self.burnt_handle, self.guard_handle)


@dataclass(slots=True)
class LedgerEventRecord:
    seq: int
    name: str
    emitter: str
    market_id: int | None
    payload: dict[str, Any]
    created_at: datetime | None
