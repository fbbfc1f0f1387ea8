from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.errors import InvalidDecryptionProof, MarketNotFound, OnlyAdmin
from app.domain import MarketView
from app.engine import get_engine
from app.fhe import FheType
from app.main import app

from conftest import ADMIN, ALICE


@pytest.fixture
def client():
    """Test client that cleans up dependency overrides after each test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def live_client(client, engine):
    app.dependency_overrides[get_engine] = lambda: engine
    return client


def test_healthcheck(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_market_projection_round_trip(live_client, engine, fund, bet, market):
    fund(ALICE, 20)
    bet(ALICE, market, True, 5)

    assert live_client.get("/markets/count").json() == {"count": 1}

    payload = live_client.get(f"/markets/{market}").json()
    assert payload["title"] == "Will it rain?"
    assert payload["bet_count"] == 1
    assert payload["totals_decrypted"] is False
    assert payload["decrypted_yes_total"] is None

    handles = live_client.get(f"/markets/{market}/handles").json()
    assert handles["yes_total_handle"] == engine.get_market_handles(market).yes_total_handle

    user_bet = live_client.get(f"/markets/{market}/bets/{ALICE}").json()
    assert user_bet["exists"] is True
    assert user_bet["vote_handle"].startswith("0x")
    assert "vote" not in user_bet


def test_verified_totals_relay(live_client, engine, fund, bet, market, kms):
    fund(ALICE, 20)
    bet(ALICE, market, False, 5)
    engine.resolve_market(ADMIN, market, "no")
    response = kms.decrypt(engine.get_market_handles(market).as_tuple())

    body = response.to_payload()
    result = live_client.post(
        f"/markets/{market}/verified-totals",
        json={
            "abi_encoded_clear_values": body["abi_encoded_clear_values"],
            "decryption_proof": body["decryption_proof"],
        },
    )
    assert result.status_code == 200
    assert result.json()["decrypted_no_total"] == 5

    replay = live_client.post(
        f"/markets/{market}/verified-totals",
        json={
            "abi_encoded_clear_values": body["abi_encoded_clear_values"],
            "decryption_proof": body["decryption_proof"],
        },
    )
    assert replay.status_code == 409
    assert replay.json()["error"] == "totals_already_decrypted"


def test_unwrap_relay(live_client, engine, test_settings, fund, kms):
    fund(ALICE, 8)
    encrypted = engine.encrypt_input(test_settings.confidential_ledger_address, ALICE, [(FheType.EUINT64, 8)])
    receipt = engine.unwrap(ALICE, ALICE, encrypted[0], encrypted.proof)
    body = kms.decrypt(receipt.handles).to_payload()

    assert live_client.get(f"/unwraps/{receipt.request_id}").json()["status"] == "pending"
    result = live_client.post(
        f"/unwraps/{receipt.request_id}/finalize",
        json={
            "abi_encoded_clear_values": body["abi_encoded_clear_values"],
            "decryption_proof": body["decryption_proof"],
        },
    )
    assert result.status_code == 200
    assert result.json()["released_amount"] == 8 * test_settings.wrap_rate


def test_events_are_paged_by_sequence(live_client, engine, market):
    first = live_client.get("/events", params={"limit": 1}).json()
    assert [item["name"] for item in first["items"]] == ["MarketCreated"]

    rest = live_client.get("/events", params={"after": first["next_after"]}).json()
    assert rest["items"] == []
    assert rest["next_after"] == first["next_after"]


@pytest.mark.parametrize(
    ("error", "status_code", "code"),
    [
        (MarketNotFound("market 7 does not exist"), 404, "market_not_found"),
        (OnlyAdmin("nope"), 403, "only_admin"),
        (InvalidDecryptionProof("bad"), 409, "invalid_decryption_proof"),
    ],
)
def test_ledger_errors_map_to_status_codes(client, error, status_code, code):
    mock_engine = MagicMock()
    mock_engine.get_market.side_effect = error
    app.dependency_overrides[get_engine] = lambda: mock_engine

    response = client.get("/markets/7")
    assert response.status_code == status_code
    assert response.json() == {"error": code, "detail": str(error)}


def test_market_route_uses_engine_projection(client):
    mock_engine = MagicMock()
    mock_engine.get_market.return_value = MarketView(
        market_id=0,
        title="Test",
        metadata_uri="",
        voting_ends_at=1,
        resolution_deadline=2,
        status="resolved",
        result="yes",
        bet_count=3,
        decrypted_yes_total=10,
        decrypted_no_total=5,
        totals_decrypted=True,
    )
    app.dependency_overrides[get_engine] = lambda: mock_engine

    response = client.get("/markets/0")
    assert response.status_code == 200
    assert response.json()["decrypted_yes_total"] == 10
    mock_engine.get_market.assert_called_once_with(0)


def test_malformed_addresses_and_payloads_are_rejected(client):
    app.dependency_overrides[get_engine] = lambda: MagicMock()

    assert client.get("/markets/0/bets/not-an-address").status_code == 422
    response = client.post(
        "/markets/0/verified-totals",
        json={"abi_encoded_clear_values": "0xzz", "decryption_proof": "0x00"},
    )
    assert response.status_code == 422
