"""Market and bet persistence helpers."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import Bet, Market


class MarketRepository:
    """Encapsulate market and bet lookups for the market ledger."""

    def __init__(self, session: Session) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Markets

    def count_markets(self) -> int:
        return self._session.execute(select(func.count(Market.market_id))).scalar_one()

    def next_market_id(self) -> int:
        # Ids are dense and start at zero; the single writer makes max+1 safe.
        current = self._session.execute(select(func.max(Market.market_id))).scalar_one()
        return 0 if current is None else current + 1

    def add_market(self, market: Market) -> Market:
        self._session.add(market)
        self._session.flush()
        return market

    def get_market(self, market_id: int) -> Market | None:
        return self._session.get(Market, market_id)

    # ------------------------------------------------------------------
    # Bets

    def get_bet(self, market_id: int, user_address: str) -> Bet | None:
        return self._session.get(Bet, (market_id, user_address.lower()))

    def add_bet(self, bet: Bet) -> Bet:
        self._session.add(bet)
        self._session.flush()
        return bet


__all__ = ["MarketRepository"]
