"""Drive a market from the resolution decision to revealed totals.

The orchestrator holds no authority beyond the admin principal it is given.
It re-reads ledger state before every call so a retried run never issues a
resolution or a totals submission that has already been applied.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from app.core.config import Settings, get_settings
from app.core.errors import InvalidDecryptionProof, MarketNotActive, MarketNotResolved, TotalsAlreadyDecrypted
from app.db import get_store
from app.domain import MarketView, ResolutionDecision, ResolutionOutcome
from app.engine import SettlementEngine
from app.models import MarketResult, MarketStatus
from oracle.client import DecryptionOracle, HttpDecryptionOracle
from oracle.errors import OracleError
from oracle.kms import LocalKmsOracle


class ResolutionConflict(Exception):
    """The market was already resolved to a different outcome."""


@dataclass(slots=True)
class SettlementSummary:
    market_id: int
    outcome: str
    resolved: bool = False
    already_resolved: bool = False
    decryption_skipped: bool = False
    totals_revealed: bool = False
    attempts: int = 0
    yes_total: int | None = None
    no_total: int | None = None
    failures: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "market_id": self.market_id,
            "outcome": self.outcome,
            "resolved": self.resolved,
            "already_resolved": self.already_resolved,
            "decryption_skipped": self.decryption_skipped,
            "totals_revealed": self.totals_revealed,
            "attempts": self.attempts,
            "yes_total": self.yes_total,
            "no_total": self.no_total,
            "failures": self.failures,
        }


class SettlementOrchestrator:
    """Sequence resolve, public decryption and totals submission."""

    def __init__(
        self,
        engine: SettlementEngine,
        oracle: DecryptionOracle,
        *,
        admin: str | None = None,
        settings: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or engine.settings
        self._engine = engine
        self._oracle = oracle
        self._admin = admin or engine.admin
        self._sleep = sleep

    async def settle(self, market_id: int, decision: ResolutionDecision) -> SettlementSummary:
        target = decision.outcome.market_result
        summary = SettlementSummary(market_id=market_id, outcome=decision.outcome.value)
        logger.info(
            "Settling market {} as {} (confidence={})",
            market_id,
            decision.outcome.value,
            decision.confidence,
        )

        market = self._engine.get_market(market_id)
        if market.status == MarketStatus.ACTIVE.value:
            try:
                self._engine.resolve_market(self._admin, market_id, target)
                summary.resolved = True
            except MarketNotActive:
                # Someone else resolved it between our read and our call.
                self._ensure_consistent(self._engine.get_market(market_id), target)
                summary.already_resolved = True
        else:
            self._ensure_consistent(market, target)
            summary.already_resolved = True

        if target is MarketResult.INVALID:
            summary.decryption_skipped = True
            logger.info("Market {} cancelled; stakes are refundable without decryption", market_id)
            return summary

        return await self.reveal_totals(market_id, summary=summary)

    async def reveal_totals(self, market_id: int, *, summary: SettlementSummary | None = None) -> SettlementSummary:
        """Obtain and submit the KMS decryption of the market totals.

        Oracle failures, timeouts and rejected proofs are retried with the
        configured backoff until ``settlement_max_attempts`` is spent.
        """

        if summary is None:
            summary = SettlementSummary(market_id=market_id, outcome=self._engine.get_market(market_id).result.upper())
        max_attempts = self.settings.settlement_max_attempts

        for attempt in range(1, max_attempts + 1):
            summary.attempts = attempt
            market = self._engine.get_market(market_id)
            if market.totals_decrypted:
                return self._record_totals(summary, market)
            if market.status != MarketStatus.RESOLVED.value:
                raise MarketNotResolved(f"market {market_id} is {market.status}; nothing to reveal")

            handles = self._engine.get_market_handles(market_id).as_tuple()
            try:
                response = await asyncio.wait_for(
                    self._oracle.public_decrypt(handles), timeout=self.settings.oracle_timeout_seconds
                )
                self._engine.submit_verified_totals(
                    market_id, response.abi_encoded_clear_values, response.decryption_proof
                )
            except TotalsAlreadyDecrypted:
                logger.info("Totals of market {} were submitted concurrently", market_id)
                return self._record_totals(summary, self._engine.get_market(market_id))
            except (OracleError, asyncio.TimeoutError, InvalidDecryptionProof) as exc:
                reason = str(exc) or type(exc).__name__
                summary.failures.append({"attempt": attempt, "reason": reason})
                logger.warning(
                    "Decryption attempt {}/{} for market {} failed: {}",
                    attempt,
                    max_attempts,
                    market_id,
                    reason,
                )
                if attempt < max_attempts:
                    await self._sleep(self._backoff(attempt))
                continue

            return self._record_totals(summary, self._engine.get_market(market_id))

        logger.error("Giving up on market {} totals after {} attempts", market_id, max_attempts)
        return summary

    def _backoff(self, attempt: int) -> float:
        schedule = self.settings.settlement_backoff_schedule
        return schedule[min(attempt - 1, len(schedule) - 1)]

    @staticmethod
    def _ensure_consistent(market: MarketView, target: MarketResult) -> None:
        if market.result != target.value:
            raise ResolutionConflict(
                f"market {market.market_id} is already {market.result}, refusing to settle as {target.value}"
            )

    @staticmethod
    def _record_totals(summary: SettlementSummary, market: MarketView) -> SettlementSummary:
        summary.totals_revealed = True
        summary.yes_total = market.decrypted_yes_total
        summary.no_total = market.decrypted_no_total
        logger.info(
            "Market {} totals revealed: yes={} no={}",
            market.market_id,
            market.decrypted_yes_total,
            market.decrypted_no_total,
        )
        return summary


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve a confidential market and reveal its totals",
    )
    parser.add_argument("--market-id", type=int, required=True, help="Market to settle")
    parser.add_argument(
        "--decision",
        type=str.upper,
        choices=[outcome.value for outcome in ResolutionOutcome],
        required=True,
        help="Final outcome handed over by the resolution pipeline",
    )
    parser.add_argument("--confidence", type=float, default=None, help="Confidence attached to the decision")
    parser.add_argument("--reasoning", type=str, default=None, help="Free-form rationale recorded in the logs")
    parser.add_argument(
        "--summary-path",
        type=Path,
        default=None,
        help="Optional path where a JSON summary report will be written",
    )
    return parser.parse_args(argv)


def _write_summary(summary: SettlementSummary, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(summary.to_dict(), default=str, indent=2))
    logger.info("Settlement summary written to {}", path)


def _build_oracle(engine: SettlementEngine, settings: Settings) -> DecryptionOracle:
    if settings.oracle_base_url:
        return HttpDecryptionOracle()
    logger.info("ORACLE_BASE_URL unset; decrypting with the local KMS")
    return LocalKmsOracle.from_settings(engine, settings)


async def _run(args: argparse.Namespace, settings: Settings) -> SettlementSummary:
    engine = SettlementEngine(get_store(), settings)
    oracle = _build_oracle(engine, settings)
    decision = ResolutionDecision(
        outcome=ResolutionOutcome(args.decision),
        confidence=args.confidence,
        reasoning=args.reasoning,
    )
    try:
        return await SettlementOrchestrator(engine, oracle, settings=settings).settle(args.market_id, decision)
    finally:
        if isinstance(oracle, HttpDecryptionOracle):
            await oracle.aclose()


def main(argv: list[str] | None = None) -> SettlementSummary:
    args = _parse_args(argv)
    settings = get_settings()
    summary = asyncio.run(_run(args, settings))
    if args.summary_path:
        _write_summary(summary, args.summary_path)
    return summary


if __name__ == "__main__":
    main()
