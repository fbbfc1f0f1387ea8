from __future__ import annotations

import pytest

from app.core.errors import (
    AccessDenied,
    InsufficientAllowance,
    InsufficientEncryptedBalance,
    InvalidAmount,
    InvalidDecryptionProof,
    UnwrapAlreadyFinalized,
    UnwrapRequestNotFound,
)
from app.fhe import FheType

from conftest import ADMIN, ALICE, BOB, CHARLIE, balance


def _amount(engine, settings, user: str, units: int):
    return engine.encrypt_input(settings.confidential_ledger_address, user, [(FheType.EUINT64, units)])


def test_wrap_scales_by_decimal_difference(engine, test_settings, fund):
    fund(ALICE, 200)

    assert test_settings.wrap_rate == 10**12
    assert balance(engine, ALICE) == 200
    assert engine.token_balance_of(ALICE) == 0
    assert engine.total_locked() == 200 * 10**12


def test_wrap_leaves_sub_unit_dust_with_the_caller(engine, test_settings):
    rate = test_settings.wrap_rate
    engine.mint(ADMIN, ALICE, 3 * rate + 5)
    engine.token_approve(ALICE, test_settings.confidential_ledger_address, 3 * rate + 5)
    engine.wrap(ALICE, ALICE, 3 * rate + 5)

    assert balance(engine, ALICE) == 3
    assert engine.token_balance_of(ALICE) == 5
    assert engine.total_locked() == 3 * rate


def test_wrap_below_one_unit_is_rejected(engine, test_settings):
    engine.mint(ADMIN, ALICE, 10)
    engine.token_approve(ALICE, test_settings.confidential_ledger_address, 10)

    with pytest.raises(InvalidAmount):
        engine.wrap(ALICE, ALICE, 10)
    assert engine.confidential_balance_of(ALICE) is None


def test_wrap_beyond_euint64_range_is_rejected(engine, test_settings):
    amount = (FheType.EUINT64.max_value + 1) * test_settings.wrap_rate
    engine.mint(ADMIN, ALICE, amount)
    engine.token_approve(ALICE, test_settings.confidential_ledger_address, amount)

    with pytest.raises(InvalidAmount):
        engine.wrap(ALICE, ALICE, amount)
    assert engine.confidential_balance_of(ALICE) is None
    assert engine.token_balance_of(ALICE) == amount
    assert engine.total_locked() == 0


def test_wrap_cannot_push_supply_past_euint64_range(engine, test_settings, fund):
    half = 2**63
    fund(ALICE, half)
    amount = half * test_settings.wrap_rate
    engine.mint(ADMIN, BOB, amount)
    engine.token_approve(BOB, test_settings.confidential_ledger_address, amount)

    with pytest.raises(InvalidAmount):
        engine.wrap(BOB, BOB, amount)
    assert balance(engine, ALICE) == half
    assert engine.confidential_balance_of(BOB) is None
    assert engine.total_locked() == amount

    fund(CHARLIE, half - 1)
    assert engine.confidential_supply() == FheType.EUINT64.max_value
    assert engine.confidential_supply() * test_settings.wrap_rate == engine.total_locked()


def test_unwrap_round_trip_restores_transparent_balance(engine, test_settings, fund, kms):
    minted = fund(ALICE, 500)
    encrypted = _amount(engine, test_settings, ALICE, 500)

    receipt = engine.unwrap(ALICE, ALICE, encrypted[0], encrypted.proof)
    assert receipt.status == "pending"
    assert balance(engine, ALICE) == 0
    assert engine.token_balance_of(ALICE) == 0

    response = kms.decrypt(receipt.handles)
    assert response.clear_values == [500, 1]
    finalized = engine.finalize_unwrap(
        receipt.request_id, response.abi_encoded_clear_values, response.decryption_proof
    )

    assert finalized.status == "finalized"
    assert finalized.released_amount == minted
    assert engine.token_balance_of(ALICE) == minted
    assert engine.total_locked() == 0

    with pytest.raises(UnwrapAlreadyFinalized):
        engine.finalize_unwrap(receipt.request_id, response.abi_encoded_clear_values, response.decryption_proof)
    assert engine.token_balance_of(ALICE) == minted


def test_unwrap_beyond_balance_burns_nothing_and_cannot_finalize(engine, test_settings, fund, kms):
    fund(ALICE, 10)
    encrypted = _amount(engine, test_settings, ALICE, 11)

    receipt = engine.unwrap(ALICE, BOB, encrypted[0], encrypted.proof)
    assert balance(engine, ALICE) == 10

    response = kms.decrypt(receipt.handles)
    assert response.clear_values == [0, 0]
    with pytest.raises(InsufficientEncryptedBalance):
        engine.finalize_unwrap(receipt.request_id, response.abi_encoded_clear_values, response.decryption_proof)

    assert engine.get_unwrap_request(receipt.request_id).status == "pending"
    assert engine.token_balance_of(BOB) == 0
    assert engine.total_locked() == 10 * test_settings.wrap_rate


def test_finalize_rejects_proof_below_threshold(engine, test_settings, fund, kms):
    fund(ALICE, 10)
    encrypted = _amount(engine, test_settings, ALICE, 4)
    receipt = engine.unwrap(ALICE, ALICE, encrypted[0], encrypted.proof)

    weak = kms.decrypt(receipt.handles, signers=1)
    with pytest.raises(InvalidDecryptionProof):
        engine.finalize_unwrap(receipt.request_id, weak.abi_encoded_clear_values, weak.decryption_proof)
    assert engine.token_balance_of(ALICE) == 0

    with pytest.raises(UnwrapRequestNotFound):
        engine.get_unwrap_request(receipt.request_id + 1)


def test_insufficient_transfer_moves_an_encrypted_zero(engine, test_settings, fund):
    fund(ALICE, 10)

    too_much = _amount(engine, test_settings, ALICE, 50)
    moved = engine.confidential_transfer(ALICE, BOB, too_much[0], too_much.proof)
    assert engine.user_decrypt(moved, ALICE) == 0
    assert balance(engine, ALICE) == 10
    assert balance(engine, BOB) == 0

    enough = _amount(engine, test_settings, ALICE, 4)
    engine.confidential_transfer(ALICE, BOB, enough[0], enough.proof)
    assert balance(engine, ALICE) == 6
    assert balance(engine, BOB) == 4


def test_foreign_handles_cannot_be_spent(engine, test_settings, fund):
    fund(ALICE, 10)
    alice_input = _amount(engine, test_settings, ALICE, 5)

    with pytest.raises(AccessDenied):
        engine.confidential_transfer(BOB, BOB, alice_input[0])


def test_transfer_from_is_capped_by_encrypted_allowance(engine, test_settings, fund):
    fund(ALICE, 10)
    spend = _amount(engine, test_settings, BOB, 3)
    with pytest.raises(InsufficientAllowance):
        engine.confidential_transfer_from(BOB, ALICE, BOB, spend[0], spend.proof)

    allowance = _amount(engine, test_settings, ALICE, 5)
    engine.confidential_approve(ALICE, BOB, allowance[0], allowance.proof)

    spend = _amount(engine, test_settings, BOB, 3)
    moved = engine.confidential_transfer_from(BOB, ALICE, BOB, spend[0], spend.proof)
    assert engine.user_decrypt(moved, BOB) == 3
    assert engine.user_decrypt(engine.confidential_allowance(ALICE, BOB), ALICE) == 2

    spend = _amount(engine, test_settings, BOB, 3)
    moved = engine.confidential_transfer_from(BOB, ALICE, BOB, spend[0], spend.proof)
    assert engine.user_decrypt(moved, BOB) == 0
    assert engine.user_decrypt(engine.confidential_allowance(ALICE, BOB), BOB) == 2
    assert balance(engine, ALICE) == 7
    assert balance(engine, BOB) == 3


def test_operator_grant_expires(engine, test_settings, fund, clock):
    fund(ALICE, 10)
    engine.set_operator(ALICE, BOB, clock() + 10)
    assert engine.is_operator(ALICE, BOB)

    spend = _amount(engine, test_settings, BOB, 4)
    engine.confidential_transfer_from(BOB, ALICE, BOB, spend[0], spend.proof)
    assert balance(engine, BOB) == 4

    clock.advance(11)
    assert not engine.is_operator(ALICE, BOB)
    spend = _amount(engine, test_settings, BOB, 1)
    with pytest.raises(InsufficientAllowance):
        engine.confidential_transfer_from(BOB, ALICE, BOB, spend[0], spend.proof)


def test_conservation_across_wraps_transfers_and_unwraps(engine, test_settings, fund, kms):
    rate = test_settings.wrap_rate
    fund(ALICE, 120)
    fund(BOB, 30)
    assert engine.confidential_supply() * rate == engine.total_locked()

    transfer = _amount(engine, test_settings, ALICE, 20)
    engine.confidential_transfer(ALICE, BOB, transfer[0], transfer.proof)
    assert engine.confidential_supply() * rate == engine.total_locked()

    withdrawal = _amount(engine, test_settings, BOB, 50)
    receipt = engine.unwrap(BOB, BOB, withdrawal[0], withdrawal.proof)
    assert engine.confidential_supply() == 100
    response = kms.decrypt(receipt.handles)
    engine.finalize_unwrap(receipt.request_id, response.abi_encoded_clear_values, response.decryption_proof)
    assert engine.confidential_supply() * rate == engine.total_locked()
    assert engine.token_balance_of(BOB) == 50 * rate


def test_transfer_events_carry_handles_only(engine, test_settings, fund):
    fund(ALICE, 10)
    transfer = _amount(engine, test_settings, ALICE, 4)
    moved = engine.confidential_transfer(ALICE, BOB, transfer[0], transfer.proof)

    event = engine.list_events(name="ConfidentialTransfer")[-1]
    assert event.payload == {"sender": ALICE, "to": BOB, "amount_handle": moved}
