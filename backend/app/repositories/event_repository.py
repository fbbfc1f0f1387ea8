"""Append-only ledger event log."""

from __future__ import annotations

from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import LedgerEvent


class EventRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def emit(
        self,
        name: str,
        *,
        emitter: str,
        market_id: int | None = None,
        **payload: Any,
    ) -> LedgerEvent:
        event = LedgerEvent(
            name=name,
            emitter=emitter.lower(),
            market_id=market_id,
            payload=payload,
        )
        self._session.add(event)
        self._session.flush()
        return event

    def list_after(
        self,
        after_seq: int = 0,
        *,
        limit: int = 100,
        market_id: int | None = None,
        name: str | None = None,
    ) -> Sequence[LedgerEvent]:
        query = select(LedgerEvent).where(LedgerEvent.seq > after_seq)
        if market_id is not None:
            query = query.where(LedgerEvent.market_id == market_id)
        if name:
            query = query.where(LedgerEvent.name == name)
        query = query.order_by(LedgerEvent.seq.asc()).limit(limit)
        return self._session.execute(query).scalars().all()


__all__ = ["EventRepository"]
