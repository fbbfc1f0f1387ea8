"""Transparent token balances and allowances."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import TokenAllowance, TokenBalance


class TokenRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def balance_of(self, address: str) -> int:
        record = self._session.get(TokenBalance, address.lower())
        return record.balance if record else 0

    def set_balance(self, address: str, balance: int) -> None:
        record = self._session.get(TokenBalance, address.lower())
        if record is None:
            record = TokenBalance(address=address.lower(), balance=balance)
            self._session.add(record)
        else:
            record.balance = balance

    def allowance(self, owner: str, spender: str) -> int:
        record = self._session.get(TokenAllowance, (owner.lower(), spender.lower()))
        return record.amount if record else 0

    def set_allowance(self, owner: str, spender: str, amount: int) -> None:
        record = self._session.get(TokenAllowance, (owner.lower(), spender.lower()))
        if record is None:
            self._session.add(
                TokenAllowance(owner=owner.lower(), spender=spender.lower(), amount=amount)
            )
        else:
            record.amount = amount

    def total_supply(self) -> int:
        # BigUint columns are text, so the sum happens in Python.
        balances = self._session.execute(select(TokenBalance.balance)).scalars().all()
        return sum(balances)


__all__ = ["TokenRepository"]
