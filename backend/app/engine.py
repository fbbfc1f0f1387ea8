"""Single entry point binding the ledgers to the transactional store.

Every state-changing call opens exactly one ``LedgerStore.transaction()`` and
builds the three ledgers on that session, so a failure anywhere (including a
rejected decryption proof) rolls back ciphertexts, balances and events
together.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from typing import TypeVar

from loguru import logger
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.db import LedgerStore, get_store
from app.domain import LedgerEventRecord, MarketHandles, MarketView, UnwrapReceipt, UserBetView
from app.fhe import BackendFactory, EncryptedInput, FheBackend, FheType, ShadowFheBackend
from app.models import MarketResult
from app.repositories import EventRepository
from app.services.confidential_ledger import ConfidentialLedger
from app.services.decryption import KmsProofVerifier, verifier_from_settings
from app.services.market_ledger import MarketLedger
from app.services.token_ledger import TokenLedger

T = TypeVar("T")


def unix_now() -> int:
    return int(time.time())


@dataclass(slots=True)
class Ledgers:
    backend: FheBackend
    token: TokenLedger
    confidential: ConfidentialLedger
    market: MarketLedger


class SettlementEngine:
    def __init__(
        self,
        store: LedgerStore,
        settings: Settings | None = None,
        *,
        admin: str | None = None,
        verifier: KmsProofVerifier | None = None,
        clock: Callable[[], int] = unix_now,
        backend_factory: BackendFactory = ShadowFheBackend,
    ) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._admin = admin or self._settings.admin_address
        self._verifier = verifier or verifier_from_settings(self._settings)
        self._clock = clock
        self._backend_factory = backend_factory

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def admin(self) -> str:
        return self._admin

    def _bind(self, session: Session) -> Ledgers:
        backend = self._backend_factory(session)
        token = TokenLedger(session, self._settings, admin=self._admin)
        confidential = ConfidentialLedger(
            session,
            self._settings,
            backend=backend,
            token=token,
            verifier=self._verifier,
            clock=self._clock,
        )
        market = MarketLedger(
            session,
            self._settings,
            admin=self._admin,
            backend=backend,
            confidential=confidential,
            verifier=self._verifier,
            clock=self._clock,
        )
        return Ledgers(backend=backend, token=token, confidential=confidential, market=market)

    def _write(self, operation: Callable[[Ledgers], T]) -> T:
        with self._store.transaction() as session:
            return operation(self._bind(session))

    def _read(self, query: Callable[[Ledgers], T]) -> T:
        with self._store.read() as session:
            return query(self._bind(session))

    # ------------------------------------------------------------------
    # Client-side encryption and decryption

    def encrypt_input(self, contract: str, user: str, values: Sequence[tuple[FheType, int | bool]]) -> EncryptedInput:
        """Encrypt values for ``contract`` the way a wallet SDK would."""

        return self._write(lambda ledgers: ledgers.backend.create_input(contract, user, values))

    def user_decrypt(self, handle: str, principal: str) -> int | bool:
        return self._read(lambda ledgers: ledgers.backend.user_decrypt(handle, principal))

    def public_plaintexts(self, handles: Sequence[str]) -> list[int]:
        return self._read(lambda ledgers: [ledgers.backend.public_plaintext(handle) for handle in handles])

    # ------------------------------------------------------------------
    # Transparent token

    def mint(self, caller: str, to: str, amount: int) -> int:
        balance = self._write(lambda ledgers: ledgers.token.mint(caller, to, amount))
        logger.info("Minted {} token units to {}", amount, to)
        return balance

    def token_transfer(self, caller: str, to: str, amount: int) -> None:
        self._write(lambda ledgers: ledgers.token.transfer(caller, to, amount))
        logger.info("Token transfer {} -> {} ({})", caller, to, amount)

    def token_approve(self, owner: str, spender: str, amount: int) -> None:
        self._write(lambda ledgers: ledgers.token.approve(owner, spender, amount))
        logger.info("Token approval {} -> {} ({})", owner, spender, amount)

    def token_transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        self._write(lambda ledgers: ledgers.token.transfer_from(spender, owner, to, amount))
        logger.info("Token transfer {} -> {} by {} ({})", owner, to, spender, amount)

    def token_balance_of(self, address: str) -> int:
        return self._read(lambda ledgers: ledgers.token.balance_of(address))

    def token_allowance(self, owner: str, spender: str) -> int:
        return self._read(lambda ledgers: ledgers.token.allowance(owner, spender))

    def token_total_supply(self) -> int:
        return self._read(lambda ledgers: ledgers.token.total_supply())

    # ------------------------------------------------------------------
    # Confidential ledger

    def wrap(self, caller: str, to: str, amount: int) -> str:
        handle = self._write(lambda ledgers: ledgers.confidential.wrap(caller, to, amount))
        logger.info("Wrapped {} token units from {} for {}", amount, caller, to)
        return handle

    def unwrap(self, caller: str, recipient: str, handle: str, proof: str | None = None) -> UnwrapReceipt:
        receipt = self._write(lambda ledgers: ledgers.confidential.unwrap(caller, recipient, handle, proof))
        logger.info("Unwrap request {} opened by {}", receipt.request_id, caller)
        return receipt

    def finalize_unwrap(
        self, request_id: int, abi_encoded_clear_values: bytes | str, decryption_proof: bytes | str
    ) -> UnwrapReceipt:
        receipt = self._write(
            lambda ledgers: ledgers.confidential.finalize_unwrap(
                request_id, abi_encoded_clear_values, decryption_proof
            )
        )
        logger.info(
            "Unwrap request {} released {} token units to {}",
            request_id,
            receipt.released_amount,
            receipt.recipient,
        )
        return receipt

    def get_unwrap_request(self, request_id: int) -> UnwrapReceipt:
        return self._read(lambda ledgers: ledgers.confidential.get_unwrap_request(request_id))

    def confidential_transfer(self, caller: str, to: str, handle: str, proof: str | None = None) -> str:
        transferred = self._write(lambda ledgers: ledgers.confidential.confidential_transfer(caller, to, handle, proof))
        logger.info("Confidential transfer {} -> {}", caller, to)
        return transferred

    def confidential_transfer_from(
        self, spender: str, owner: str, to: str, handle: str, proof: str | None = None
    ) -> str:
        transferred = self._write(
            lambda ledgers: ledgers.confidential.confidential_transfer_from(spender, owner, to, handle, proof)
        )
        logger.info("Confidential transfer {} -> {} by {}", owner, to, spender)
        return transferred

    def confidential_approve(self, owner: str, spender: str, handle: str, proof: str | None = None) -> str:
        allowance = self._write(lambda ledgers: ledgers.confidential.approve(owner, spender, handle, proof))
        logger.info("Confidential approval {} -> {}", owner, spender)
        return allowance

    def set_operator(self, holder: str, operator: str, until: int) -> None:
        self._write(lambda ledgers: ledgers.confidential.set_operator(holder, operator, until))
        logger.info("Operator {} set for {} until {}", operator, holder, until)

    def is_operator(self, holder: str, operator: str) -> bool:
        return self._read(lambda ledgers: ledgers.confidential.is_operator(holder, operator))

    def confidential_balance_of(self, address: str) -> str | None:
        return self._read(lambda ledgers: ledgers.confidential.confidential_balance_of(address))

    def confidential_allowance(self, owner: str, spender: str) -> str | None:
        return self._read(lambda ledgers: ledgers.confidential.allowance_of(owner, spender))

    def total_locked(self) -> int:
        return self._read(lambda ledgers: ledgers.confidential.total_locked())

    def confidential_supply(self) -> int:
        """Sum of all plaintext-shadow balances; conservation probe for tests."""

        def _sum(ledgers: Ledgers) -> int:
            backend = ledgers.backend
            if not isinstance(backend, ShadowFheBackend):
                raise NotImplementedError("confidential supply needs the plaintext-shadow backend")
            total = 0
            for holder in ledgers.confidential.balance_holders():
                total += backend.peek(ledgers.confidential.confidential_balance_of(holder))
            return total

        return self._read(_sum)

    # ------------------------------------------------------------------
    # Markets

    def create_market(
        self,
        caller: str,
        title: str,
        metadata_uri: str,
        voting_ends_at: int,
        resolution_deadline: int,
    ) -> int:
        market_id = self._write(
            lambda ledgers: ledgers.market.create_market(
                caller, title, metadata_uri, voting_ends_at, resolution_deadline
            )
        )
        logger.info("Created market {} ({})", market_id, title)
        return market_id

    def place_bet(
        self,
        caller: str,
        market_id: int,
        encrypted_vote: str,
        encrypted_amount: str,
        input_proof: str,
    ) -> UserBetView:
        bet = self._write(
            lambda ledgers: ledgers.market.place_bet(
                caller, market_id, encrypted_vote, encrypted_amount, input_proof
            )
        )
        logger.info("Bet placed on market {} by {}", market_id, caller)
        return bet

    def resolve_market(self, caller: str, market_id: int, result: MarketResult | str) -> None:
        self._write(lambda ledgers: ledgers.market.resolve_market(caller, market_id, result))
        logger.info("Resolved market {} as {}", market_id, result)

    def submit_verified_totals(
        self,
        market_id: int,
        abi_encoded_clear_values: bytes | str,
        decryption_proof: bytes | str,
    ) -> tuple[int, int]:
        totals = self._write(
            lambda ledgers: ledgers.market.submit_verified_totals(
                market_id, abi_encoded_clear_values, decryption_proof
            )
        )
        logger.info("Recorded totals for market {}: yes={} no={}", market_id, totals[0], totals[1])
        return totals

    def claim_payout(self, caller: str, market_id: int) -> str:
        payout = self._write(lambda ledgers: ledgers.market.claim_payout(caller, market_id))
        logger.info("Payout claimed on market {} by {}", market_id, caller)
        return payout

    def get_market(self, market_id: int) -> MarketView:
        return self._read(lambda ledgers: ledgers.market.get_market(market_id))

    def get_user_bet(self, market_id: int, user: str) -> UserBetView:
        return self._read(lambda ledgers: ledgers.market.get_user_bet(market_id, user))

    def get_market_handles(self, market_id: int) -> MarketHandles:
        return self._read(lambda ledgers: ledgers.market.get_market_handles(market_id))

    def get_market_count(self) -> int:
        return self._read(lambda ledgers: ledgers.market.get_market_count())

    # ------------------------------------------------------------------
    # Events

    def list_events(
        self,
        after_seq: int = 0,
        limit: int = 100,
        *,
        market_id: int | None = None,
        name: str | None = None,
    ) -> list[LedgerEventRecord]:
        with self._store.read() as session:
            events = EventRepository(session).list_after(after_seq, limit=limit, market_id=market_id, name=name)
            return [
                LedgerEventRecord(
                    seq=event.seq,
                    name=event.name,
                    emitter=event.emitter,
                    market_id=event.market_id,
                    payload=dict(event.payload or {}),
                    created_at=event.created_at,
                )
                for event in events
            ]


@lru_cache
def get_engine() -> SettlementEngine:
    return SettlementEngine(get_store(), get_settings())


__all__ = ["Ledgers", "SettlementEngine", "get_engine", "unix_now"]
