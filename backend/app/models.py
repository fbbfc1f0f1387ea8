from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, BigUint


class MarketStatus(str, Enum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class MarketResult(str, Enum):
    UNRESOLVED = "unresolved"
    YES = "yes"
    NO = "no"
    INVALID = "invalid"


class UnwrapStatus(str, Enum):
    PENDING = "pending"
    FINALIZED = "finalized"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ciphertext(Base):
    """Ciphertext handle with its plaintext shadow.

    The shadow value is what a real coprocessor would keep encrypted; only the
    backend and the KMS side read it.
    """

    __tablename__ = "ciphertexts"

    handle: Mapped[str] = mapped_column(String(66), primary_key=True)
    fhe_type: Mapped[str] = mapped_column(String(16), nullable=False)
    shadow_value: Mapped[int] = mapped_column(BigUint, nullable=False)
    publicly_decryptable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    input_contract: Mapped[str | None] = mapped_column(String(42), nullable=True)
    input_user: Mapped[str | None] = mapped_column(String(42), nullable=True)
    input_proof: Mapped[str | None] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class CiphertextGrant(Base):
    __tablename__ = "ciphertext_grants"
    __table_args__ = (UniqueConstraint("handle", "principal", name="uq_grant_handle_principal"),)

    grant_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False, index=True)
    principal: Mapped[str] = mapped_column(String(42), nullable=False)


class TokenBalance(Base):
    __tablename__ = "token_balances"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    balance: Mapped[int] = mapped_column(BigUint, nullable=False, default=0)


class TokenAllowance(Base):
    __tablename__ = "token_allowances"

    owner: Mapped[str] = mapped_column(String(42), primary_key=True)
    spender: Mapped[str] = mapped_column(String(42), primary_key=True)
    amount: Mapped[int] = mapped_column(BigUint, nullable=False, default=0)


class ConfidentialAccount(Base):
    __tablename__ = "confidential_accounts"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    balance_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ConfidentialAllowance(Base):
    __tablename__ = "confidential_allowances"

    owner: Mapped[str] = mapped_column(String(42), primary_key=True)
    spender: Mapped[str] = mapped_column(String(42), primary_key=True)
    allowance_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)


class ConfidentialOperator(Base):
    __tablename__ = "confidential_operators"

    holder: Mapped[str] = mapped_column(String(42), primary_key=True)
    operator: Mapped[str] = mapped_column(String(42), primary_key=True)
    until: Mapped[int] = mapped_column(BigUint, nullable=False)


class UnwrapRequest(Base):
    __tablename__ = "unwrap_requests"

    request_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    recipient: Mapped[str] = mapped_column(String(42), nullable=False)
    burnt_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    guard_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=UnwrapStatus.PENDING.value)
    released_amount: Mapped[int | None] = mapped_column(BigUint, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Market(Base):
    __tablename__ = "markets"

    market_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    metadata_uri: Mapped[str] = mapped_column(Text, nullable=False, default="")
    voting_ends_at: Mapped[int] = mapped_column(BigUint, nullable=False)
    resolution_deadline: Mapped[int] = mapped_column(BigUint, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MarketStatus.ACTIVE.value, index=True)
    result: Mapped[str] = mapped_column(String(16), nullable=False, default=MarketResult.UNRESOLVED.value)
    bet_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    yes_total_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    no_total_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    decrypted_yes_total: Mapped[int | None] = mapped_column(BigUint, nullable=True)
    decrypted_no_total: Mapped[int | None] = mapped_column(BigUint, nullable=True)
    totals_decrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Bet(Base):
    __tablename__ = "bets"

    market_id: Mapped[int] = mapped_column(Integer, ForeignKey("markets.market_id"), primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    vote_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    amount_handle: Mapped[str] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=False)
    payout_handle: Mapped[str | None] = mapped_column(String(66), ForeignKey("ciphertexts.handle"), nullable=True)
    claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class LedgerEvent(Base):
    """Append-only log of state changes consumed by the indexer."""

    __tablename__ = "ledger_events"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    emitter: Mapped[str] = mapped_column(String(42), nullable=False)
    market_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
