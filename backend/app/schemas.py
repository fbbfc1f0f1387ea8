from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

HEX_PATTERN = r"^0x([0-9a-fA-F]{2})*$"
ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"


class Market(BaseModel):
    market_id: int
    title: str
    metadata_uri: str
    voting_ends_at: int
    resolution_deadline: int
    status: str
    result: str
    bet_count: int
    decrypted_yes_total: int | None = None
    decrypted_no_total: int | None = None
    totals_decrypted: bool

    model_config = {"from_attributes": True}


class MarketCount(BaseModel):
    count: int


class MarketHandles(BaseModel):
    market_id: int
    yes_total_handle: str
    no_total_handle: str

    model_config = {"from_attributes": True}


class UserBet(BaseModel):
    """Encrypted bet handles; decrypting them requires the bettor's key."""

    market_id: int
    user: str
    exists: bool
    vote_handle: str | None = None
    amount_handle: str | None = None
    payout_handle: str | None = None
    claimed: bool = False

    model_config = {"from_attributes": True}


class UnwrapRequest(BaseModel):
    request_id: int
    owner: str
    recipient: str
    burnt_handle: str
    guard_handle: str
    status: str
    released_amount: int | None = None

    model_config = {"from_attributes": True}


class VerifiedDecryption(BaseModel):
    """KMS output relayed by any caller; the proof carries the authority."""

    abi_encoded_clear_values: str = Field(pattern=HEX_PATTERN)
    decryption_proof: str = Field(pattern=HEX_PATTERN)

    @field_validator("abi_encoded_clear_values", "decryption_proof", mode="before")
    @classmethod
    def _prefix_hex(cls, value: Any) -> Any:
        if isinstance(value, str) and value and not value.startswith("0x"):
            return "0x" + value
        return value


class LedgerEvent(BaseModel):
    seq: int
    name: str
    emitter: str
    market_id: int | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class EventList(BaseModel):
    next_after: int
    items: list[LedgerEvent]


class ErrorResponse(BaseModel):
    error: str
    detail: str
