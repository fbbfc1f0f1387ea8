from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from app.core.errors import MarketNotResolved
from app.domain import ResolutionDecision, ResolutionOutcome
from oracle.errors import OracleError, OracleTimeout
from pipelines.settlement_run import (
    ResolutionConflict,
    SettlementOrchestrator,
    SettlementSummary,
    _parse_args,
    _write_summary,
)

from conftest import ADMIN, ALICE, BOB, balance


class FlakyOracle:
    """Fail a fixed number of times, then delegate to the local KMS."""

    def __init__(self, kms, failures: list[Exception]) -> None:
        self._kms = kms
        self._failures = list(failures)
        self.calls = 0

    async def public_decrypt(self, handles):
        self.calls += 1
        if self._failures:
            raise self._failures.pop(0)
        return self._kms.decrypt(handles)


class SlowOracle:
    async def public_decrypt(self, handles):
        await asyncio.sleep(5)


async def _no_sleep(_: float) -> None:
    return None


def _orchestrator(engine, oracle):
    return SettlementOrchestrator(engine, oracle, sleep=_no_sleep)


def test_settle_yes_resolves_and_reveals(engine, fund, bet, market, kms):
    fund(ALICE, 50)
    fund(BOB, 50)
    bet(ALICE, market, True, 30)
    bet(BOB, market, False, 20)

    summary = asyncio.run(_orchestrator(engine, kms).settle(market, ResolutionDecision(ResolutionOutcome.YES, 0.9)))

    assert summary.resolved is True
    assert summary.totals_revealed is True
    assert (summary.yes_total, summary.no_total) == (30, 20)
    assert summary.attempts == 1
    engine.claim_payout(ALICE, market)
    assert balance(engine, ALICE) == 70


def test_settle_invalid_skips_decryption(engine, market):
    oracle = MagicMock()

    summary = asyncio.run(_orchestrator(engine, oracle).settle(market, ResolutionDecision(ResolutionOutcome.INVALID)))

    assert summary.decryption_skipped is True
    assert summary.totals_revealed is False
    assert engine.get_market(market).status == "cancelled"
    oracle.public_decrypt.assert_not_called()


def test_retryable_failures_are_retried(engine, fund, bet, market, kms):
    fund(ALICE, 10)
    bet(ALICE, market, True, 10)
    oracle = FlakyOracle(kms, [OracleTimeout("slow relayer"), OracleError("HTTP 502")])

    summary = asyncio.run(_orchestrator(engine, oracle).settle(market, ResolutionDecision(ResolutionOutcome.YES)))

    assert summary.totals_revealed is True
    assert summary.attempts == 3
    assert [failure["reason"] for failure in summary.failures] == ["slow relayer", "HTTP 502"]
    assert oracle.calls == 3


def test_oracle_timeout_is_enforced(engine, market):
    engine.resolve_market(ADMIN, market, "no")

    summary = asyncio.run(_orchestrator(engine, SlowOracle()).reveal_totals(market))

    assert summary.totals_revealed is False
    assert summary.attempts == 3
    assert engine.get_market(market).totals_decrypted is False


def test_rerun_reconciles_instead_of_resubmitting(engine, fund, bet, market, kms):
    fund(ALICE, 10)
    bet(ALICE, market, False, 10)
    decision = ResolutionDecision(ResolutionOutcome.NO)
    asyncio.run(_orchestrator(engine, kms).settle(market, decision))

    oracle = MagicMock()
    summary = asyncio.run(_orchestrator(engine, oracle).settle(market, decision))

    assert summary.resolved is False
    assert summary.already_resolved is True
    assert summary.totals_revealed is True
    assert summary.no_total == 10
    oracle.public_decrypt.assert_not_called()


def test_conflicting_decision_is_refused(engine, market):
    engine.resolve_market(ADMIN, market, "yes")

    with pytest.raises(ResolutionConflict):
        asyncio.run(_orchestrator(engine, MagicMock()).settle(market, ResolutionDecision(ResolutionOutcome.NO)))
    assert engine.get_market(market).result == "yes"


def test_reveal_requires_resolved_market(engine, market, kms):
    with pytest.raises(MarketNotResolved):
        asyncio.run(_orchestrator(engine, kms).reveal_totals(market))


def test_summary_written_as_json(tmp_path):
    args = _parse_args(["--market-id", "3", "--decision", "yes", "--summary-path", str(tmp_path / "out.json")])
    assert args.decision == "YES"

    _write_summary(SettlementSummary(market_id=3, outcome="YES", totals_revealed=True), args.summary_path)
    payload = json.loads(args.summary_path.read_text())
    assert payload["market_id"] == 3
    assert payload["totals_revealed"] is True
    assert payload["failures"] == []
