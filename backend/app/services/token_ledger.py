"""Transparent fungible token backing the confidential ledger."""

from __future__ import annotations

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.errors import InsufficientAllowance, InsufficientBalance, InvalidAmount, OnlyAdmin
from app.repositories import EventRepository, TokenRepository

ZERO_ADDRESS = "0x" + "0" * 40


def same_principal(lhs: str, rhs: str) -> bool:
    return lhs.lower() == rhs.lower()


class TokenLedger:
    """Plain balances and allowances; amounts are public."""

    def __init__(self, session: Session, settings: Settings, *, admin: str) -> None:
        self._session = session
        self._settings = settings
        self._admin = admin
        self._repo = TokenRepository(session)
        self._events = EventRepository(session)

    @property
    def address(self) -> str:
        return self._settings.token_address

    def mint(self, caller: str, to: str, amount: int) -> int:
        if not same_principal(caller, self._admin):
            raise OnlyAdmin(f"{caller} may not mint")
        self._check_amount(amount)
        self._check_recipient(to)
        balance = self._repo.balance_of(to) + amount
        self._repo.set_balance(to, balance)
        self._events.emit("Transfer", emitter=self.address, sender=ZERO_ADDRESS, to=to.lower(), amount=str(amount))
        return balance

    def transfer(self, caller: str, to: str, amount: int) -> None:
        self._check_amount(amount)
        self._check_recipient(to)
        self._move(caller, to, amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._check_amount(amount)
        self._repo.set_allowance(owner, spender, amount)
        self._events.emit(
            "Approval", emitter=self.address, owner=owner.lower(), spender=spender.lower(), amount=str(amount)
        )

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> None:
        self._check_amount(amount)
        self._check_recipient(to)
        allowed = self._repo.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowance(f"{spender} may spend {allowed} of {owner}, needs {amount}")
        self._repo.set_allowance(owner, spender, allowed - amount)
        self._move(owner, to, amount)

    def balance_of(self, address: str) -> int:
        return self._repo.balance_of(address)

    def allowance(self, owner: str, spender: str) -> int:
        return self._repo.allowance(owner, spender)

    def total_supply(self) -> int:
        return self._repo.total_supply()

    # ------------------------------------------------------------------

    def _move(self, sender: str, to: str, amount: int) -> None:
        balance = self._repo.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(f"{sender} holds {balance}, needs {amount}")
        self._repo.set_balance(sender, balance - amount)
        self._repo.set_balance(to, self._repo.balance_of(to) + amount)
        self._events.emit(
            "Transfer", emitter=self.address, sender=sender.lower(), to=to.lower(), amount=str(amount)
        )

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise InvalidAmount(f"token amounts must be non-negative integers, got {amount!r}")

    @staticmethod
    def _check_recipient(to: str) -> None:
        if same_principal(to, ZERO_ADDRESS):
            raise InvalidAmount("cannot transfer to the zero address")


__all__ = ["TokenLedger", "ZERO_ADDRESS", "same_principal"]
