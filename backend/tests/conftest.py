from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.db import LedgerStore
from app.engine import SettlementEngine
from app.fhe import FheType
from oracle.kms import LocalKmsOracle

KMS_KEYS = ["0x" + "11" * 32, "0x" + "22" * 32]


def address(suffix: str) -> str:
    return "0x" + suffix.rjust(40, "0")


ADMIN = address("a1")
ALICE = address("a11ce")
BOB = address("b0b")
CHARLIE = address("c4a41e")


class FakeClock:
    def __init__(self, now: int = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def test_settings(tmp_path, monkeypatch) -> Settings:
    settings = Settings(
        database_url=f"sqlite:///{tmp_path/'settlement.db'}",
        admin_address=ADMIN,
        local_kms_private_keys=KMS_KEYS,
        kms_threshold=2,
        settlement_max_attempts=3,
        settlement_retry_backoff_seconds=[0.0],
        oracle_timeout_seconds=1.0,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings


@pytest.fixture
def store(test_settings) -> LedgerStore:
    return LedgerStore.from_url(test_settings.resolved_database_url)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def engine(store, test_settings, clock) -> SettlementEngine:
    return SettlementEngine(store, test_settings, clock=clock)


@pytest.fixture
def kms(engine, test_settings) -> LocalKmsOracle:
    return LocalKmsOracle.from_settings(engine, test_settings)


@pytest.fixture
def fund(engine, test_settings):
    """Mint transparent tokens and wrap them into ``units`` confidential units."""

    def _fund(user: str, units: int) -> int:
        amount = units * test_settings.wrap_rate
        engine.mint(ADMIN, user, amount)
        engine.token_approve(user, test_settings.confidential_ledger_address, amount)
        engine.wrap(user, user, amount)
        return amount

    return _fund


@pytest.fixture
def bet(engine, test_settings, clock):
    """Authorise the market ledger as operator and place an encrypted bet."""

    def _bet(user: str, market_id: int, vote: bool, units: int):
        market_address = test_settings.market_ledger_address
        engine.set_operator(user, market_address, clock() + 3600)
        encrypted = engine.encrypt_input(market_address, user, [(FheType.EBOOL, vote), (FheType.EUINT64, units)])
        return engine.place_bet(user, market_id, encrypted[0], encrypted[1], encrypted.proof)

    return _bet


@pytest.fixture
def market(engine, clock) -> int:
    return engine.create_market(ADMIN, "Will it rain?", "ipfs://rain", clock() + 86_400, clock() + 172_800)


def balance(engine: SettlementEngine, user: str) -> int:
    handle = engine.confidential_balance_of(user)
    return 0 if handle is None else engine.user_decrypt(handle, user)
