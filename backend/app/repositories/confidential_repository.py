"""Confidential accounts, allowances, operators and unwrap requests."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import (
    ConfidentialAccount,
    ConfidentialAllowance,
    ConfidentialOperator,
    UnwrapRequest,
)


class ConfidentialRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Balances

    def get_account(self, address: str) -> ConfidentialAccount | None:
        return self._session.get(ConfidentialAccount, address.lower())

    def set_balance_handle(self, address: str, handle: str) -> ConfidentialAccount:
        account = self.get_account(address)
        if account is None:
            account = ConfidentialAccount(address=address.lower(), balance_handle=handle)
            self._session.add(account)
        else:
            account.balance_handle = handle
        self._session.flush()
        return account

    def list_accounts(self) -> Sequence[ConfidentialAccount]:
        query = select(ConfidentialAccount).order_by(ConfidentialAccount.address.asc())
        return self._session.execute(query).scalars().all()

    # ------------------------------------------------------------------
    # Allowances and operators

    def get_allowance(self, owner: str, spender: str) -> ConfidentialAllowance | None:
        return self._session.get(ConfidentialAllowance, (owner.lower(), spender.lower()))

    def set_allowance_handle(self, owner: str, spender: str, handle: str) -> None:
        record = self.get_allowance(owner, spender)
        if record is None:
            self._session.add(
                ConfidentialAllowance(
                    owner=owner.lower(), spender=spender.lower(), allowance_handle=handle
                )
            )
        else:
            record.allowance_handle = handle

    def get_operator(self, holder: str, operator: str) -> ConfidentialOperator | None:
        return self._session.get(ConfidentialOperator, (holder.lower(), operator.lower()))

    def set_operator(self, holder: str, operator: str, until: int) -> None:
        record = self.get_operator(holder, operator)
        if record is None:
            self._session.add(
                ConfidentialOperator(holder=holder.lower(), operator=operator.lower(), until=until)
            )
        else:
            record.until = until

    # ------------------------------------------------------------------
    # Unwrap requests

    def add_unwrap_request(self, request: UnwrapRequest) -> UnwrapRequest:
        self._session.add(request)
        self._session.flush()
        return request

    def get_unwrap_request(self, request_id: int) -> UnwrapRequest | None:
        return self._session.get(UnwrapRequest, request_id)


__all__ = ["ConfidentialRepository"]
