"""Pari-mutuel markets over confidential stakes.

Votes, stakes and running totals stay encrypted until the admin resolves a
market. Resolution opens the two totals to public decryption; once the KMS
proof for them is submitted every bettor can claim an encrypted payout of
``stake * pool / winning_total``.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import (
    AlreadyBet,
    AlreadyClaimed,
    InvalidResult,
    MarketNotActive,
    MarketNotFound,
    MarketNotResolved,
    NoBet,
    OnlyAdmin,
    TotalsAlreadyDecrypted,
    TotalsNotDecrypted,
    VotingClosed,
)
from app.domain import MarketHandles, MarketView, UserBetView
from app.fhe import FheBackend, FheType
from app.models import Bet, Market, MarketResult, MarketStatus
from app.repositories import EventRepository, MarketRepository
from app.services.confidential_ledger import ConfidentialLedger
from app.services.decryption import KmsProofVerifier
from app.services.token_ledger import same_principal


def to_market_view(market: Market) -> MarketView:
    return MarketView(
        market_id=market.market_id,
        title=market.title,
        metadata_uri=market.metadata_uri,
        voting_ends_at=market.voting_ends_at,
        resolution_deadline=market.resolution_deadline,
        status=market.status,
        result=market.result,
        bet_count=market.bet_count,
        decrypted_yes_total=market.decrypted_yes_total,
        decrypted_no_total=market.decrypted_no_total,
        totals_decrypted=market.totals_decrypted,
    )


def to_bet_view(bet: Bet) -> UserBetView:
    return UserBetView(
        market_id=bet.market_id,
        user=bet.user_address,
        exists=True,
        vote_handle=bet.vote_handle,
        amount_handle=bet.amount_handle,
        payout_handle=bet.payout_handle,
        claimed=bet.claimed,
    )


class MarketLedger:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        *,
        admin: str,
        backend: FheBackend,
        confidential: ConfidentialLedger,
        verifier: KmsProofVerifier,
        clock: Callable[[], int],
    ) -> None:
        self._session = session
        self._settings = settings
        self._admin = admin
        self._fhe = backend
        self._confidential = confidential
        self._verifier = verifier
        self._clock = clock
        self._repo = MarketRepository(session)
        self._events = EventRepository(session)

    @property
    def address(self) -> str:
        return self._settings.market_ledger_address

    # ------------------------------------------------------------------
    # Lifecycle

    def create_market(
        self,
        caller: str,
        title: str,
        metadata_uri: str,
        voting_ends_at: int,
        resolution_deadline: int,
    ) -> int:
        self._require_admin(caller)
        market_id = self._repo.next_market_id()
        yes_total = self._fhe.allow_all(self._fhe.trivial_encrypt(0), self.address)
        no_total = self._fhe.allow_all(self._fhe.trivial_encrypt(0), self.address)
        self._repo.add_market(
            Market(
                market_id=market_id,
                title=title,
                metadata_uri=metadata_uri,
                voting_ends_at=voting_ends_at,
                resolution_deadline=resolution_deadline,
                status=MarketStatus.ACTIVE.value,
                result=MarketResult.UNRESOLVED.value,
                bet_count=0,
                yes_total_handle=yes_total,
                no_total_handle=no_total,
                totals_decrypted=False,
            )
        )
        self._events.emit(
            "MarketCreated",
            emitter=self.address,
            market_id=market_id,
            title=title,
            metadata_uri=metadata_uri,
            voting_ends_at=voting_ends_at,
            resolution_deadline=resolution_deadline,
        )
        return market_id

    def place_bet(
        self,
        caller: str,
        market_id: int,
        encrypted_vote: str,
        encrypted_amount: str,
        input_proof: str,
    ) -> UserBetView:
        """Stake an encrypted amount on an encrypted side.

        The stake is pulled through ``confidential_transfer_from``, so the
        market must be an operator of (or approved by) the caller. An
        uncovered stake moves zero and is recorded as a zero bet.
        """

        market = self._require_market(market_id)
        if market.status != MarketStatus.ACTIVE.value:
            raise MarketNotActive(f"market {market_id} is {market.status}")
        if self._settings.enforce_voting_window and self._clock() >= market.voting_ends_at:
            raise VotingClosed(f"voting on market {market_id} closed at {market.voting_ends_at}")
        if self._repo.get_bet(market_id, caller) is not None:
            raise AlreadyBet(f"{caller} already bet on market {market_id}")

        vote = self._fhe.verify_input(
            encrypted_vote, input_proof, contract=self.address, user=caller, fhe_type=FheType.EBOOL
        )
        amount = self._fhe.verify_input(
            encrypted_amount, input_proof, contract=self.address, user=caller, fhe_type=FheType.EUINT64
        )
        self._fhe.allow(amount, self._confidential.address)
        staked = self._confidential.confidential_transfer_from(self.address, caller, self.address, amount)

        zero = self._fhe.trivial_encrypt(0)
        yes_total = self._fhe.add(market.yes_total_handle, self._fhe.select(vote, staked, zero))
        no_total = self._fhe.add(market.no_total_handle, self._fhe.select(vote, zero, staked))
        market.yes_total_handle = self._fhe.allow_all(yes_total, self.address)
        market.no_total_handle = self._fhe.allow_all(no_total, self.address)
        market.bet_count += 1

        self._fhe.allow_all(vote, self.address, caller)
        self._fhe.allow_all(staked, self.address, caller)
        bet = self._repo.add_bet(
            Bet(
                market_id=market_id,
                user_address=caller.lower(),
                vote_handle=vote,
                amount_handle=staked,
                claimed=False,
            )
        )
        self._events.emit(
            "BetPlaced",
            emitter=self.address,
            market_id=market_id,
            user=caller.lower(),
            vote_handle=vote,
            amount_handle=staked,
        )
        return to_bet_view(bet)

    def resolve_market(self, caller: str, market_id: int, result: MarketResult | str) -> None:
        self._require_admin(caller)
        market = self._require_market(market_id)
        if market.status != MarketStatus.ACTIVE.value:
            raise MarketNotActive(f"market {market_id} is already {market.status}")
        try:
            result = MarketResult(result.lower() if isinstance(result, str) else result)
        except ValueError as exc:
            raise InvalidResult(f"unknown market result {result!r}") from exc
        if result is MarketResult.UNRESOLVED:
            raise InvalidResult("a market cannot be resolved to unresolved")

        if result is MarketResult.INVALID:
            market.status = MarketStatus.CANCELLED.value
        else:
            market.status = MarketStatus.RESOLVED.value
            self._fhe.make_publicly_decryptable(market.yes_total_handle)
            self._fhe.make_publicly_decryptable(market.no_total_handle)
        market.result = result.value
        market.resolved_at = datetime.now(timezone.utc)
        self._events.emit(
            "MarketResolved",
            emitter=self.address,
            market_id=market_id,
            result=result.value,
            status=market.status,
        )

    def submit_verified_totals(
        self,
        market_id: int,
        abi_encoded_clear_values: bytes | str,
        decryption_proof: bytes | str,
    ) -> tuple[int, int]:
        """Record the revealed totals; anyone may relay a valid proof."""

        market = self._require_market(market_id)
        if market.status != MarketStatus.RESOLVED.value:
            raise MarketNotResolved(f"market {market_id} is {market.status}")
        if market.totals_decrypted:
            raise TotalsAlreadyDecrypted(f"totals of market {market_id} are already recorded")

        yes_total, no_total = self._verifier.verify(
            [market.yes_total_handle, market.no_total_handle], abi_encoded_clear_values, decryption_proof
        )
        market.decrypted_yes_total = yes_total
        market.decrypted_no_total = no_total
        market.totals_decrypted = True
        self._events.emit(
            "TotalsDecrypted",
            emitter=self.address,
            market_id=market_id,
            yes_total=yes_total,
            no_total=no_total,
        )
        return yes_total, no_total

    def claim_payout(self, caller: str, market_id: int) -> str:
        market = self._require_market(market_id)
        bet = self._repo.get_bet(market_id, caller)
        if bet is None:
            raise NoBet(f"{caller} has no bet on market {market_id}")
        if bet.claimed:
            raise AlreadyClaimed(f"{caller} already claimed market {market_id}")

        if market.status == MarketStatus.CANCELLED.value:
            payout = bet.amount_handle
        elif market.status == MarketStatus.RESOLVED.value:
            if not market.totals_decrypted:
                raise TotalsNotDecrypted(f"totals of market {market_id} are not revealed yet")
            payout = self._winning_share(market, bet)
        else:
            raise MarketNotResolved(f"market {market_id} is {market.status}")

        self._fhe.allow(payout, self.address)
        paid = self._confidential.confidential_transfer(self.address, caller, payout)
        self._fhe.allow_all(paid, caller)
        bet.payout_handle = paid
        bet.claimed = True
        bet.claimed_at = datetime.now(timezone.utc)
        self._events.emit(
            "PayoutClaimed",
            emitter=self.address,
            market_id=market_id,
            user=caller.lower(),
            payout_handle=paid,
        )
        return paid

    # ------------------------------------------------------------------
    # Read models

    def get_market(self, market_id: int) -> MarketView:
        return to_market_view(self._require_market(market_id))

    def get_user_bet(self, market_id: int, user: str) -> UserBetView:
        self._require_market(market_id)
        bet = self._repo.get_bet(market_id, user)
        if bet is None:
            return UserBetView(market_id=market_id, user=user.lower(), exists=False)
        return to_bet_view(bet)

    def get_market_handles(self, market_id: int) -> MarketHandles:
        market = self._require_market(market_id)
        return MarketHandles(
            market_id=market_id,
            yes_total_handle=market.yes_total_handle,
            no_total_handle=market.no_total_handle,
        )

    def get_market_count(self) -> int:
        return self._repo.count_markets()

    # ------------------------------------------------------------------

    def _winning_share(self, market: Market, bet: Bet) -> str:
        winning = market.decrypted_yes_total if market.result == MarketResult.YES.value else market.decrypted_no_total
        if not winning:
            # Nobody backed the outcome; the pool stays with the market.
            return self._fhe.trivial_encrypt(0)
        pool = market.decrypted_yes_total + market.decrypted_no_total
        won = self._fhe.eq_public(bet.vote_handle, market.result == MarketResult.YES.value)
        wide = self._fhe.mul_public(self._fhe.cast(bet.amount_handle, FheType.EUINT128), pool)
        share = self._fhe.cast(self._fhe.div_public(wide, winning), FheType.EUINT64)
        return self._fhe.select(won, share, self._fhe.trivial_encrypt(0))

    def _require_admin(self, caller: str) -> None:
        if not same_principal(caller, self._admin):
            raise OnlyAdmin(f"{caller} is not the market admin")

    def _require_market(self, market_id: int) -> Market:
        market = self._repo.get_market(market_id)
        if market is None:
            raise MarketNotFound(f"market {market_id} does not exist")
        return market


__all__ = ["MarketLedger", "to_bet_view", "to_market_view"]
