"""Confidential balances wrapping the transparent token.

Balances, allowances and transfer amounts only ever exist as ciphertext
handles. Shortfalls are never revealed: a transfer the sender cannot cover
moves an encrypted zero instead of failing.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import (
    AccessDenied,
    InsufficientAllowance,
    InsufficientEncryptedBalance,
    InvalidAmount,
    InvalidInputProof,
    UnwrapAlreadyFinalized,
    UnwrapRequestNotFound,
)
from app.domain import UnwrapReceipt
from app.fhe import FheBackend, FheType
from app.models import UnwrapRequest, UnwrapStatus
from app.repositories import ConfidentialRepository, EventRepository
from app.services.decryption import KmsProofVerifier
from app.services.token_ledger import TokenLedger, same_principal


def to_receipt(request: UnwrapRequest) -> UnwrapReceipt:
    return UnwrapReceipt(
        request_id=request.request_id,
        owner=request.owner,
        recipient=request.recipient,
        burnt_handle=request.burnt_handle,
        guard_handle=request.guard_handle,
        status=request.status,
        released_amount=request.released_amount,
    )


class ConfidentialLedger:
    def __init__(
        self,
        session: Session,
        settings: Settings,
        *,
        backend: FheBackend,
        token: TokenLedger,
        verifier: KmsProofVerifier,
        clock: Callable[[], int],
    ) -> None:
        self._session = session
        self._settings = settings
        self._fhe = backend
        self._token = token
        self._verifier = verifier
        self._clock = clock
        self._repo = ConfidentialRepository(session)
        self._events = EventRepository(session)

    @property
    def address(self) -> str:
        return self._settings.confidential_ledger_address

    @property
    def rate(self) -> int:
        return self._settings.wrap_rate

    # ------------------------------------------------------------------
    # Wrapping

    def wrap(self, caller: str, to: str, amount: int) -> str:
        """Lock transparent tokens and credit ``to`` with confidential units.

        Sub-unit remainders are left with the caller. The locked backing
        bounds the confidential supply, so capping it at the euint64 range
        also keeps every balance and market total from wrapping around.
        """

        if isinstance(amount, bool) or not isinstance(amount, int) or amount < self.rate:
            raise InvalidAmount(f"wrap requires at least {self.rate} token units, got {amount!r}")
        units = amount // self.rate
        limit = FheType.EUINT64.max_value
        if units > limit:
            raise InvalidAmount(f"wrap of {units} units exceeds the euint64 range")
        backed = self.total_locked() // self.rate
        if backed + units > limit:
            raise InvalidAmount(f"wrap of {units} units would push confidential supply past {limit}")
        locked = units * self.rate
        self._token.transfer_from(self.address, caller, self.address, locked)

        balance = self._fhe.add_public(self._balance_or_zero(to), units)
        self._set_balance(to, balance)
        self._events.emit(
            "Wrapped",
            emitter=self.address,
            sender=caller.lower(),
            to=to.lower(),
            amount=str(locked),
            balance_handle=balance,
        )
        return balance

    def unwrap(self, caller: str, recipient: str, handle: str, proof: str | None = None) -> UnwrapReceipt:
        """Burn up to ``handle`` from the caller and queue the release.

        The burnt amount and the sufficiency guard become publicly
        decryptable; ``finalize_unwrap`` pays out once the KMS has revealed
        them.
        """

        amount = self._import(handle, proof, caller)
        balance = self._balance_or_zero(caller)
        guard = self._fhe.le(amount, balance)
        burnt = self._fhe.select(guard, amount, self._fhe.trivial_encrypt(0))
        self._set_balance(caller, self._fhe.sub(balance, burnt))

        for public in (burnt, guard):
            self._fhe.allow_all(public, self.address, caller)
            self._fhe.make_publicly_decryptable(public)

        request = self._repo.add_unwrap_request(
            UnwrapRequest(
                owner=caller.lower(),
                recipient=recipient.lower(),
                burnt_handle=burnt,
                guard_handle=guard,
                status=UnwrapStatus.PENDING.value,
            )
        )
        self._events.emit(
            "UnwrapRequested",
            emitter=self.address,
            request_id=request.request_id,
            owner=caller.lower(),
            recipient=recipient.lower(),
            burnt_handle=burnt,
            guard_handle=guard,
        )
        return to_receipt(request)

    def finalize_unwrap(self, request_id: int, abi_encoded_clear_values: bytes | str, decryption_proof: bytes | str) -> UnwrapReceipt:
        request = self._repo.get_unwrap_request(request_id)
        if request is None:
            raise UnwrapRequestNotFound(f"unwrap request {request_id} does not exist")
        if request.status == UnwrapStatus.FINALIZED.value:
            raise UnwrapAlreadyFinalized(f"unwrap request {request_id} was already finalized")

        burnt, ok = self._verifier.verify(
            [request.burnt_handle, request.guard_handle], abi_encoded_clear_values, decryption_proof
        )
        if not ok:
            raise InsufficientEncryptedBalance(f"unwrap request {request_id} exceeded the encrypted balance")

        released = burnt * self.rate
        if released:
            self._token.transfer(self.address, request.recipient, released)
        request.status = UnwrapStatus.FINALIZED.value
        request.released_amount = released
        request.finalized_at = datetime.now(timezone.utc)
        self._events.emit(
            "UnwrapFinalized",
            emitter=self.address,
            request_id=request.request_id,
            recipient=request.recipient,
            amount=str(released),
        )
        return to_receipt(request)

    def get_unwrap_request(self, request_id: int) -> UnwrapReceipt:
        request = self._repo.get_unwrap_request(request_id)
        if request is None:
            raise UnwrapRequestNotFound(f"unwrap request {request_id} does not exist")
        return to_receipt(request)

    # ------------------------------------------------------------------
    # Transfers

    def confidential_transfer(self, caller: str, to: str, handle: str, proof: str | None = None) -> str:
        amount = self._import(handle, proof, caller)
        return self._transfer(caller, to, amount)

    def confidential_transfer_from(
        self, spender: str, owner: str, to: str, handle: str, proof: str | None = None
    ) -> str:
        """Move up to ``handle`` from ``owner`` on behalf of ``spender``.

        Operators spend freely until their grant expires; everyone else is
        capped by an encrypted allowance that shrinks by what actually moved.
        """

        amount = self._import(handle, proof, spender)
        if self.is_operator(owner, spender):
            return self._transfer(owner, to, amount)

        record = self._repo.get_allowance(owner, spender)
        if record is None:
            raise InsufficientAllowance(f"{spender} is neither operator nor approved spender of {owner}")
        allowance = record.allowance_handle
        transferred = self._transfer(owner, to, amount, guard=self._fhe.le(amount, allowance))
        remaining = self._fhe.sub(allowance, transferred)
        self._fhe.allow_all(remaining, self.address, owner, spender)
        self._repo.set_allowance_handle(owner, spender, remaining)
        return transferred

    def approve(self, owner: str, spender: str, handle: str, proof: str | None = None) -> str:
        amount = self._import(handle, proof, owner)
        self._fhe.allow_all(amount, self.address, owner, spender)
        self._repo.set_allowance_handle(owner, spender, amount)
        self._events.emit(
            "ConfidentialApproval",
            emitter=self.address,
            owner=owner.lower(),
            spender=spender.lower(),
            allowance_handle=amount,
        )
        return amount

    def set_operator(self, holder: str, operator: str, until: int) -> None:
        if until < 0:
            raise InvalidAmount("operator expiry must be a unix timestamp")
        self._repo.set_operator(holder, operator, until)
        self._events.emit(
            "OperatorSet", emitter=self.address, holder=holder.lower(), operator=operator.lower(), until=until
        )

    def is_operator(self, holder: str, operator: str) -> bool:
        if same_principal(holder, operator):
            return True
        record = self._repo.get_operator(holder, operator)
        return record is not None and self._clock() <= record.until

    # ------------------------------------------------------------------
    # Views

    def confidential_balance_of(self, address: str) -> str | None:
        account = self._repo.get_account(address)
        return account.balance_handle if account else None

    def allowance_of(self, owner: str, spender: str) -> str | None:
        record = self._repo.get_allowance(owner, spender)
        return record.allowance_handle if record else None

    def total_locked(self) -> int:
        return self._token.balance_of(self.address)

    def balance_holders(self) -> list[str]:
        return [account.address for account in self._repo.list_accounts()]

    # ------------------------------------------------------------------

    def _import(self, handle: str, proof: str | None, user: str) -> str:
        if proof is not None:
            self._fhe.verify_input(handle, proof, contract=self.address, user=user, fhe_type=FheType.EUINT64)
        elif not self._fhe.is_allowed(handle, user):
            raise AccessDenied(f"{user} has no access to {handle}")
        elif self._fhe.fhe_type_of(handle) is not FheType.EUINT64:
            raise InvalidInputProof(f"{handle} is not an euint64 amount")
        self._fhe.allow(handle, self.address)
        return handle

    def _balance_or_zero(self, address: str) -> str:
        account = self._repo.get_account(address)
        if account is not None:
            return account.balance_handle
        return self._fhe.trivial_encrypt(0)

    def _set_balance(self, address: str, handle: str) -> None:
        self._fhe.allow_all(handle, self.address, address)
        self._repo.set_balance_handle(address, handle)

    def _transfer(self, sender: str, to: str, amount: str, *, guard: str | None = None) -> str:
        balance = self._balance_or_zero(sender)
        ok = self._fhe.le(amount, balance)
        if guard is not None:
            ok = self._fhe.and_(ok, guard)
        transferred = self._fhe.select(ok, amount, self._fhe.trivial_encrypt(0))

        self._set_balance(sender, self._fhe.sub(balance, transferred))
        # Read the recipient after the debit so a self-transfer nets to zero.
        self._set_balance(to, self._fhe.add(self._balance_or_zero(to), transferred))
        self._fhe.allow_all(transferred, self.address, sender, to)
        self._events.emit(
            "ConfidentialTransfer",
            emitter=self.address,
            sender=sender.lower(),
            to=to.lower(),
            amount_handle=transferred,
        )
        return transferred


__all__ = ["ConfidentialLedger", "to_receipt"]
